"""Resolution driver: evaluates definitions in dependency order."""

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from .evaluator import Evaluator
from .graph import DependencyGraph, build_dependency_graph
from .store import VariableDefinition

logger = logging.getLogger(__name__)

OnResolved = Callable[[str, Any], Awaitable[None] | None]


async def resolve_variables(
    definitions: Iterable[VariableDefinition],
    seed: Mapping[str, Any],
    on_resolved: OnResolved | None = None,
    only: Iterable[str] | None = None,
    *,
    evaluator: Evaluator,
    graph: DependencyGraph | None = None,
) -> dict[str, Any]:
    """Resolve variables, dependencies first.

    Args:
        definitions: Declared variables of one scope
        seed: Values visible before the pass (global scope, previous values)
        on_resolved: Called with (name, value) right after each variable
        only: Restrict the pass to these names and their dependencies
        evaluator: Evaluates expression text
        graph: Prebuilt dependency graph for `definitions`

    Returns:
        The seed overlaid with every value resolved in this pass. `seed`
        itself is left untouched.
    """
    by_name = {d.name: d for d in definitions}
    if graph is None:
        graph = build_dependency_graph(by_name.values())

    scope = dict(seed)
    for name in graph.order(only):
        definition = by_name[name]
        if definition.is_expression:
            value = await evaluator.evaluate_safely(name, definition.raw_expression, scope)
        else:
            value = definition.literal_value
        scope[name] = value
        logger.debug("resolved %s = %r", name, value)
        if on_resolved is not None:
            result = on_resolved(name, value)
            if inspect.isawaitable(result):
                await result
    return scope
