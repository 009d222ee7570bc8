"""Change propagation after a command run.

A run can change state in two ways: it writes variables directly
(`setValue`/`addValue`, collected in the Modified-Set), or it calls an
integration whose backing data any expression touching `Namespace.` may read.
Only those variables, and whatever transitively reads them, are recomputed.
"""

import logging
from collections.abc import Collection, Iterable
from typing import Any

from .evaluator import Evaluator
from .graph import DependencyGraph
from .resolver import OnResolved, resolve_variables
from .sequencing import invoked_namespaces, referenced_namespaces
from .store import Scope, VariableDefinition

logger = logging.getLogger(__name__)


def integration_readers(
    definitions: Iterable[VariableDefinition], namespaces: Collection[str]
) -> set[str]:
    """Expression variables that reference any member of `namespaces`."""
    if not namespaces:
        return set()
    return {
        d.name
        for d in definitions
        if d.is_expression and referenced_namespaces(d.raw_expression, namespaces)
    }


def affected_variables(
    script: str,
    scope: Scope,
    graph: DependencyGraph,
    namespaces: Collection[str],
) -> set[str]:
    """Variables to recompute after running `script` against `scope`."""
    touched = invoked_namespaces(script, namespaces)
    affected = integration_readers(scope.definitions.values(), touched) | scope.modified
    return graph.affected(affected)


async def propagate(
    script: str,
    scope: Scope,
    graph: DependencyGraph,
    *,
    evaluator: Evaluator,
    on_resolved: OnResolved | None = None,
) -> set[str]:
    """Recompute what `script` may have changed, then clear the Modified-Set.

    Returns the affected closure that was re-resolved.
    """
    namespaces = evaluator.registry.names()
    all_affected = affected_variables(script, scope, graph, namespaces)
    if all_affected:
        logger.debug("%s: propagating to %s", scope.scope_id, sorted(all_affected))
        resolved: dict[str, Any] = await resolve_variables(
            scope.definitions.values(),
            scope.resolved,
            on_resolved,
            only=all_affected,
            evaluator=evaluator,
            graph=graph,
        )
        scope.resolved.update(resolved)
    scope.modified.clear()
    return all_affected
