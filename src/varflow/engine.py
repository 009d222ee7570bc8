"""Engine: wires store, evaluator, commands and propagation per page.

Example:
    engine = Engine(load_config("sheet.yaml"), integrations=[dice])
    await engine.load()
    await engine.resolve_page("fighter")
    result = await engine.run_command("fighter", 'addValue("hp", -Dice.roll("1d6"))')
    await engine.render("fighter", "HP: {hp}/{max_hp}")
"""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from .commands import CommandExecutor, CommandResult, join_commands
from .config import EngineConfig, load_config, parse_config
from .evaluator import Evaluator
from .events import EventBus
from .graph import DependencyGraph, GraphCache
from .integrations import Integration, IntegrationRegistry, local_integration
from .persistence import MemoryPersistence, Persistence
from .propagation import propagate
from .resolver import resolve_variables
from .store import GLOBAL_SCOPE, Scope, VariableStore
from .templates import render_text

logger = logging.getLogger(__name__)


class Engine:
    """Resolves page variables and runs commands against them.

    Command runs on one page are serialised: each holds the page lock for
    the run and the propagation that follows it.
    """

    def __init__(
        self,
        config: EngineConfig | Mapping[str, Any],
        integrations: Iterable[Integration] = (),
        persistence: Persistence | None = None,
        events: EventBus | None = None,
    ):
        self.config = config if isinstance(config, EngineConfig) else parse_config(config)
        self.registry = IntegrationRegistry(integrations)
        if self.registry.get("Local") is None:
            self.registry.register(local_integration())
        self.persistence = persistence if persistence is not None else MemoryPersistence()
        self.events = events if events is not None else EventBus()
        self.evaluator = Evaluator(self.registry)
        self.store = VariableStore()
        self._graphs = GraphCache()
        self._locks: dict[str, asyncio.Lock] = {}
        self._global_lock = asyncio.Lock()
        self._loaded: set[str] = set()
        self._build_store()

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> "Engine":
        return cls(load_config(path), **kwargs)

    def _build_store(self) -> None:
        self.store = VariableStore()
        self.store.set_global(self.config.global_.definitions())
        for page in self.config.pages:
            self.store.add_page(page.id, page.definitions(), title=page.title)
        self._loaded.clear()
        self._global_loaded = False

    def graph(self, scope: Scope) -> DependencyGraph:
        """Dependency graph of `scope`, rebuilt when its definitions change."""
        return self._graphs.get(scope.scope_id, list(scope.definitions.values()), scope.fingerprint())

    def page_ids(self) -> list[str]:
        return list(self.store.pages)

    def _lock(self, page_id: str) -> asyncio.Lock:
        if page_id not in self._locks:
            self._locks[page_id] = asyncio.Lock()
        return self._locks[page_id]

    def _notifier(self, scope_id: str):
        async def on_resolved(name: str, value: Any) -> None:
            await self.events.resolved(scope_id, name, value)

        return on_resolved

    async def _on_modified(self, scope_id: str, name: str, value: Any) -> None:
        await self.persistence.persist(scope_id, name, value)
        await self.events.modified(scope_id, name, value)

    async def load(self) -> dict[str, Any]:
        """Resolve the global scope; pages are resolved on demand."""
        scope = self.store.global_scope
        resolved = await resolve_variables(
            scope.definitions.values(),
            {},
            self._notifier(GLOBAL_SCOPE),
            evaluator=self.evaluator,
            graph=self.graph(scope),
        )
        scope.reseed(resolved)
        self._loaded.clear()
        self._global_loaded = True
        logger.info("loaded %d global variables, %d pages", len(resolved), len(self.store.pages))
        return dict(resolved)

    async def resolve_page(self, page_id: str) -> dict[str, Any]:
        """Full pass over one page, seeded from the global scope and persisted values."""
        async with self._lock(page_id):
            return await self._resolve_page(page_id)

    async def _resolve_page(self, page_id: str) -> dict[str, Any]:
        # Caller holds the page lock.
        if not self._global_loaded:
            async with self._global_lock:
                if not self._global_loaded:
                    await self.load()
        scope = self.store.page(page_id)
        persisted = await self.persistence.load_all(page_id)
        for name, value in persisted.items():
            if scope.declared(name):
                scope.definitions[name].freeze(value)
            else:
                logger.debug("%s: ignoring persisted value for undeclared %s", page_id, name)

        resolved = await resolve_variables(
            scope.definitions.values(),
            self.store.global_scope.resolved,
            self._notifier(page_id),
            evaluator=self.evaluator,
            graph=self.graph(scope),
        )
        scope.reseed(resolved)
        self._loaded.add(page_id)
        return dict(resolved)

    async def page_scope(self, page_id: str) -> dict[str, Any]:
        """Resolved values of a page, resolving it first if needed."""
        if page_id not in self._loaded:
            async with self._lock(page_id):
                if page_id not in self._loaded:
                    await self._resolve_page(page_id)
        return self.store.page(page_id).resolved

    async def run_command(self, page_id: str, commands: str | Iterable[str]) -> CommandResult:
        """Run one command (or several, joined into one script) and propagate.

        Propagation runs even when the command fails partway, so values
        written before the failure still reach their dependents.
        """
        script = commands if isinstance(commands, str) else join_commands(commands)
        scope = self.store.page(page_id)

        async with self._lock(page_id):
            if page_id not in self._loaded:
                await self._resolve_page(page_id)
            executor = CommandExecutor(self.evaluator, self._on_modified, self._notifier(page_id))
            try:
                result = await executor.run(script, scope)
                if not result.ok:
                    await self.events.command_failed(page_id, result.error)
            finally:
                await propagate(
                    script,
                    scope,
                    self.graph(scope),
                    evaluator=self.evaluator,
                    on_resolved=self._notifier(page_id),
                )
        return result

    def declared_names(self, page_id: str) -> set[str]:
        return set(self.store.global_scope.definitions) | set(self.store.page(page_id).definitions)

    async def render(self, page_id: str, template: str) -> str:
        """Render `{name}` / `{expr}` placeholders against a page."""
        scope = await self.page_scope(page_id)
        return await render_text(template, scope, self.evaluator, self.declared_names(page_id))

    async def page_title(self, page_id: str) -> str:
        return await self.render(page_id, self.store.page(page_id).title)

    async def reload(self, config: EngineConfig | Mapping[str, Any]) -> dict[str, Any]:
        """Replace the configuration and reseed every scope wholesale."""
        self.config = config if isinstance(config, EngineConfig) else parse_config(config)
        self._graphs.clear()
        self.evaluator.clear_caches()
        self._build_store()
        return await self.load()
