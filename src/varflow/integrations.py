"""Integration namespaces: named operations callable from expressions.

Each operation declares at registration whether it is asynchronous. The
evaluator uses that flag (never the implementation's source) to decide which
call sites must be awaited.

Example:
    dice = Integration("Dice")

    @dice.operation(is_async=True)
    async def roll(formula):
        ...

    registry = IntegrationRegistry([dice, local_integration()])
    registry.async_operations()  # frozenset({"Dice.roll"})
"""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import IntegrationError, VarflowError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Operation:
    """A callable exposed as `<namespace>.<name>` to expressions."""

    namespace: str
    name: str
    func: Callable[..., Any]
    is_async: bool

    @property
    def qualname(self) -> str:
        return f"{self.namespace}.{self.name}"

    def __call__(self, *args: Any) -> Any:
        try:
            result = self.func(*args)
        except VarflowError:
            raise
        except Exception as exc:
            raise IntegrationError(self.qualname, str(exc)) from exc
        if inspect.isawaitable(result):
            return self._settle(result)
        return result

    async def _settle(self, pending: Awaitable[Any]) -> Any:
        try:
            return await pending
        except VarflowError:
            raise
        except Exception as exc:
            raise IntegrationError(self.qualname, str(exc)) from exc


class Integration:
    """A namespace of operations (e.g. `Sheets`, `Dice`, `Local`)."""

    def __init__(
        self,
        name: str,
        operations: Mapping[str, Callable[..., Any]] | None = None,
        async_operations: Iterable[str] = (),
    ):
        self.name = name
        self.version = 0
        self._operations: dict[str, Operation] = {}
        forced_async = set(async_operations)
        for op_name, func in (operations or {}).items():
            self.add(op_name, func, is_async=True if op_name in forced_async else None)

    def add(self, name: str, func: Callable[..., Any], *, is_async: bool | None = None) -> Operation:
        """Register an operation. `is_async` defaults to whether `func` is a coroutine function."""
        if is_async is None:
            is_async = inspect.iscoroutinefunction(func)
        op = Operation(self.name, name, func, is_async)
        self._operations[name] = op
        self.version += 1
        logger.debug("registered %s (async=%s)", op.qualname, is_async)
        return op

    def operation(self, name: str | None = None, *, is_async: bool | None = None):
        """Decorator form of `add`."""

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self.add(name or func.__name__, func, is_async=is_async)
            return func

        return decorator

    def get(self, name: str) -> Operation | None:
        return self._operations.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._operations

    @property
    def operations(self) -> dict[str, Operation]:
        return dict(self._operations)

    def async_operations(self) -> set[str]:
        return {op.qualname for op in self._operations.values() if op.is_async}

    def __repr__(self) -> str:
        return f"Integration({self.name!r}, {sorted(self._operations)})"


class IntegrationRegistry:
    """The set of integration namespaces visible to expressions."""

    def __init__(self, integrations: Iterable[Integration] = ()):
        self._integrations: dict[str, Integration] = {}
        self._version = 0
        for integration in integrations:
            self.register(integration)

    @property
    def version(self) -> int:
        """Bumps on any (un)registration, including operations added later."""
        return self._version + sum(i.version for i in self._integrations.values())

    def register(self, integration: Integration) -> None:
        self._integrations[integration.name] = integration
        self._version += 1

    def unregister(self, name: str) -> None:
        if self._integrations.pop(name, None) is not None:
            self._version += 1

    def get(self, name: str) -> Integration | None:
        return self._integrations.get(name)

    def names(self) -> list[str]:
        return list(self._integrations)

    def namespaces(self) -> dict[str, Integration]:
        return dict(self._integrations)

    def async_operations(self) -> frozenset[str]:
        ops: set[str] = set()
        for integration in self._integrations.values():
            ops |= integration.async_operations()
        return frozenset(ops)


class AsyncOperationCache:
    """Memoised async-operation names, keyed by registry version.

    Owned by one evaluator; a version change (re-registration or a new
    operation) recomputes the set on next access.
    """

    def __init__(self, registry: IntegrationRegistry):
        self.registry = registry
        self._version: int | None = None
        self._names: frozenset[str] = frozenset()

    def get(self) -> frozenset[str]:
        version = self.registry.version
        if version != self._version:
            self._names = self.registry.async_operations()
            self._version = version
            logger.debug("async operations (v%d): %s", version, sorted(self._names))
        return self._names

    def invalidate(self) -> None:
        self._version = None


class LocalStore:
    """In-memory key/value store exposed as the `Local` namespace."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self.storage: dict[str, Any] = dict(initial or {})

    def value(self, key: str, default: Any = None) -> Any:
        result = self.storage.get(key)
        return default if result is None else result

    def set(self, key: str, value: Any) -> Any:
        self.storage[key] = value
        return value

    def clear(self) -> None:
        self.storage.clear()

    def keys(self) -> list[str]:
        return list(self.storage)


def local_integration(store: LocalStore | None = None, name: str = "Local") -> Integration:
    """Build the synchronous `Local` key/value integration."""
    store = store or LocalStore()
    return Integration(
        name,
        {
            "value": store.value,
            "set": store.set,
            "clear": store.clear,
            "keys": store.keys,
        },
    )
