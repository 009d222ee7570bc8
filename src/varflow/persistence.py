"""Persistence of values written by commands, keyed by scope id and name."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Persistence(Protocol):
    async def persist(self, scope_id: str, name: str, value: Any) -> None: ...

    async def load_all(self, scope_id: str) -> dict[str, Any]: ...


class MemoryPersistence:
    """Keeps persisted values in a dict; the default for an engine."""

    def __init__(self, data: dict[str, dict[str, Any]] | None = None):
        self.data: dict[str, dict[str, Any]] = {k: dict(v) for k, v in (data or {}).items()}

    async def persist(self, scope_id: str, name: str, value: Any) -> None:
        self.data.setdefault(scope_id, {})[name] = value

    async def load_all(self, scope_id: str) -> dict[str, Any]:
        return dict(self.data.get(scope_id, {}))

    async def clear(self, scope_id: str | None = None) -> None:
        if scope_id is None:
            self.data.clear()
        else:
            self.data.pop(scope_id, None)


class JsonFilePersistence:
    """One JSON file holding `{scope_id: {name: value}}`.

    The file is read once on first access and rewritten on every persist.
    A missing or corrupt file starts empty. File I/O runs in a worker
    thread so the event loop keeps serving other pages.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._data: dict[str, dict[str, Any]] | None = None
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, dict[str, Any]]:
        try:
            return json.loads(self.path.read_text())
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("could not read %s, starting empty: %s", self.path, exc)
            return {}

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(text)
        tmp.replace(self.path)

    async def _load(self) -> dict[str, dict[str, Any]]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read)
        return self._data

    async def _flush(self) -> None:
        # Serialised on the loop thread; only the write itself is offloaded.
        text = json.dumps(self._data, indent=2, sort_keys=True)
        await asyncio.to_thread(self._write, text)

    async def persist(self, scope_id: str, name: str, value: Any) -> None:
        async with self._lock:
            (await self._load()).setdefault(scope_id, {})[name] = value
            await self._flush()
        logger.debug("persisted %s.%s to %s", scope_id, name, self.path)

    async def load_all(self, scope_id: str) -> dict[str, Any]:
        async with self._lock:
            return dict((await self._load()).get(scope_id, {}))

    async def clear(self, scope_id: str | None = None) -> None:
        async with self._lock:
            data = await self._load()
            if scope_id is None:
                data.clear()
            else:
                data.pop(scope_id, None)
            await self._flush()
