"""Dependency graph over variable definitions, and evaluation order.

Edges are found by scanning expression text at token level:

    hp_pct = this.hp / max_hp * 100     # hp_pct -> {hp, max_hp}

A bare identifier naming a declared variable is an edge, as is `this.<name>`.
The member part of any other `X.<name>` is not, nor is text inside string
literals (except `{name}` placeholders, which are inlined before evaluation).

Example:
    graph = build_dependency_graph(definitions)
    graph.order()                 # every name, dependencies first
    graph.order(only={"hp_pct"})  # hp_pct and what it needs
    graph.affected({"hp"})        # hp and everything reading it
"""

import logging
import re
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field

from .parser import Lexer, ParseError
from .store import VariableDefinition

logger = logging.getLogger(__name__)

WORD = re.compile(r"[A-Za-z_$][\w$]*")
BRACED = re.compile(r"\{\s*([A-Za-z_$][\w$]*)")


def scan_references(text: str, names: Collection[str]) -> list[str]:
    """Declared names referenced by expression text, in first-seen order."""
    found: list[str] = []

    def add(name: str) -> None:
        if name in names and name not in found:
            found.append(name)

    try:
        tokens = Lexer(text).significant()
    except ParseError:
        for word in WORD.findall(text):
            add(word)
        return found

    for i, tok in enumerate(tokens):
        if tok.type == "STRING":
            for name in BRACED.findall(tok.value):
                add(name)
        elif tok.type == "IDENT":
            prev = tokens[i - 1] if i > 0 else None
            if prev is not None and prev.type == "DOT":
                if i > 1 and tokens[i - 2].type == "THIS":
                    add(tok.value)
                continue
            add(tok.value)
    return found


@dataclass
class DependencyGraph:
    """Forward edges (name -> what it reads) and their transpose."""

    names: list[str] = field(default_factory=list)
    _adjacency: dict[str, list[str]] = field(default_factory=dict)
    _reverse: dict[str, list[str]] = field(default_factory=dict)
    broken_edges: list[tuple[str, str]] = field(default_factory=list)

    def add_variable(self, name: str, dependencies: list[str]) -> None:
        if name not in self._adjacency:
            self.names.append(name)
        self._adjacency[name] = [d for d in dependencies if d != name]
        self._reverse.setdefault(name, [])
        for dep in self._adjacency[name]:
            dependents = self._reverse.setdefault(dep, [])
            if name not in dependents:
                dependents.append(name)

    def dependencies(self, name: str) -> list[str]:
        return list(self._adjacency.get(name, []))

    def dependents(self, name: str) -> list[str]:
        return list(self._reverse.get(name, []))

    def closure(self, start: Iterable[str], reverse: bool = False) -> set[str]:
        """Transitive closure of `start` over forward (or reverse) edges."""
        edges = self._reverse if reverse else self._adjacency
        seen: set[str] = set()
        stack = [n for n in start if n in self._adjacency]
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(d for d in edges.get(node, []) if d not in seen)
        return seen

    def affected(self, changed: Iterable[str]) -> set[str]:
        """`changed` plus every variable that transitively reads one of them."""
        return self.closure(changed, reverse=True)

    def order(self, only: Iterable[str] | None = None) -> list[str]:
        """Evaluation order, dependencies first.

        With `only`, the working set is `only` and everything it transitively
        depends on. A dependency reached while still in progress closes a
        cycle: that edge is dropped, logged and recorded in `broken_edges`.
        """
        if only is None:
            working = self.names
        else:
            members = self.closure(only)
            working = [n for n in self.names if n in members]

        visited: set[str] = set()
        temp: set[str] = set()
        order: list[str] = []
        self.broken_edges = []

        def visit(name: str) -> None:
            temp.add(name)
            for dep in self._adjacency.get(name, []):
                if dep in visited:
                    continue
                if dep in temp:
                    logger.warning("cycle detected: dropping edge %s -> %s", name, dep)
                    self.broken_edges.append((name, dep))
                    continue
                visit(dep)
            temp.remove(name)
            visited.add(name)
            order.append(name)

        for name in working:
            if name not in visited:
                visit(name)
        return order


def build_dependency_graph(definitions: Iterable[VariableDefinition]) -> DependencyGraph:
    """Scan every expression definition for references to declared names."""
    definitions = list(definitions)
    names = {d.name for d in definitions}
    graph = DependencyGraph()
    for d in definitions:
        deps = scan_references(d.raw_expression, names) if d.is_expression else []
        graph.add_variable(d.name, deps)
    logger.debug("dependency graph: %s", {n: graph.dependencies(n) for n in graph.names})
    return graph


class GraphCache:
    """Graphs keyed by scope id and definition fingerprint."""

    def __init__(self):
        self._graphs: dict[str, tuple[str, DependencyGraph]] = {}

    def get(self, scope_id: str, definitions: Collection[VariableDefinition], key: str) -> DependencyGraph:
        cached = self._graphs.get(scope_id)
        if cached is not None and cached[0] == key:
            return cached[1]
        graph = build_dependency_graph(definitions)
        self._graphs[scope_id] = (key, graph)
        return graph

    def clear(self) -> None:
        self._graphs.clear()
