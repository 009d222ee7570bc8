"""Command executor: runs action scripts that mutate page variables.

A command is a small script, statements separated by `;` or newlines:

    addValue("hp", -roll)
    let dmg = Dice.roll("1d6"); addValue("hp", -dmg)

Scripts get two mutation primitives on top of the normal expression scope:

    setValue(name, value)   clamp, freeze, store and persist a value
    addValue(name, delta)   setValue(name, current + delta)

Both are treated as asynchronous, so calls are awaited in source order.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .errors import EvaluationError, VarflowError
from .evaluator import Evaluator, is_number, to_number
from .store import Scope

logger = logging.getLogger(__name__)

OnModified = Callable[[str, str, Any], Awaitable[None] | None]
OnRender = Callable[[str, Any], Awaitable[None] | None]

MUTATION_PRIMITIVES = ("setValue", "addValue")


@dataclass
class CommandResult:
    """Outcome of one command run."""

    ok: bool
    value: Any = None
    error: VarflowError | None = None
    modified: set[str] = field(default_factory=set)


async def _call(hook: Callable[..., Any] | None, *args: Any) -> None:
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


def join_commands(commands: Iterable[str]) -> str:
    """Join command strings into one script, skipping blank ones."""
    return "; ".join(c.strip().rstrip(";") for c in commands if c and c.strip())


class CommandExecutor:
    """Runs command scripts against a page scope.

    Args:
        evaluator: Shared expression evaluator
        on_modified: Called with (scope_id, name, value) after each mutation;
            the engine uses it for persistence and change notifications
        on_render: Called with (name, value) after each mutation
    """

    def __init__(
        self,
        evaluator: Evaluator,
        on_modified: OnModified | None = None,
        on_render: OnRender | None = None,
    ):
        self.evaluator = evaluator
        self.on_modified = on_modified
        self.on_render = on_render

    def primitives(self, scope: Scope) -> dict[str, Callable[..., Any]]:
        """`setValue` / `addValue` bound to `scope`."""

        async def set_value(name: str, value: Any) -> Any:
            definition = scope.definition(name)
            value = definition.clamp(value)
            definition.freeze(value)
            scope.resolved[name] = value
            scope.modified.add(name)
            logger.debug("%s: %s <- %r", scope.scope_id, name, value)
            await _call(self.on_modified, scope.scope_id, name, value)
            await _call(self.on_render, name, value)
            return value

        async def add_value(name: str, delta: Any) -> Any:
            scope.definition(name)
            current = scope.resolved.get(name)
            try:
                current = to_number(current)
            except EvaluationError:
                current = 0
            if not is_number(current) or current != current:
                current = 0
            return await set_value(name, current + to_number(delta))

        return {"setValue": set_value, "addValue": add_value}

    async def run(self, script: str, scope: Scope) -> CommandResult:
        """Run a script. The Modified-Set is cleared first; failures never roll back."""
        scope.modified.clear()
        try:
            value = await self.evaluator.run_script(script, scope.resolved, self.primitives(scope))
        except VarflowError as exc:
            logger.warning("command failed in %s (%r): %s", scope.scope_id, script, exc)
            return CommandResult(ok=False, error=exc, modified=set(scope.modified))
        return CommandResult(ok=True, value=value, modified=set(scope.modified))

    async def run_many(self, commands: Iterable[str], scope: Scope) -> CommandResult:
        """Run several commands as one script so later ones see earlier writes."""
        return await self.run(join_commands(commands), scope)
