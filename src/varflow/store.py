"""Variable definitions and per-scope resolved values.

A scope is either the global scope or one page. Each scope owns its
declarations (in declaration order), its resolved values and the set of
variables modified by the command run in progress.
"""

import hashlib
import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, model_validator

from .errors import UnknownVariable

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"


class VariableDefinition(BaseModel):
    """A declared variable: a fixed literal or an expression, with optional bounds."""

    name: str
    kind: Literal["literal", "expression"] = "literal"
    literal_value: Any = None
    raw_expression: str | None = None
    min: int | float | None = None
    max: int | float | None = None

    @model_validator(mode="after")
    def _check_kind(self) -> "VariableDefinition":
        if self.kind == "expression":
            if not self.raw_expression or not self.raw_expression.strip():
                raise ValueError(f"{self.name}: expression definition without text")
            self.literal_value = None
        else:
            self.raw_expression = None
        return self

    @classmethod
    def literal(cls, name: str, value: Any, min=None, max=None) -> "VariableDefinition":
        return cls(name=name, kind="literal", literal_value=value, min=min, max=max)

    @classmethod
    def expression(cls, name: str, text: str, min=None, max=None) -> "VariableDefinition":
        return cls(name=name, kind="expression", raw_expression=text, min=min, max=max)

    @property
    def is_expression(self) -> bool:
        return self.kind == "expression"

    def clamp(self, value: Any) -> Any:
        """Clamp numeric values into [min, max]; non-numbers pass through."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return value
        if self.min is not None and value < self.min:
            return self.min
        if self.max is not None and value > self.max:
            return self.max
        return value

    def freeze(self, value: Any) -> None:
        """Convert to a literal holding `value`; the expression is discarded."""
        self.kind = "literal"
        self.literal_value = value
        self.raw_expression = None


def fingerprint(definitions: Iterable[VariableDefinition]) -> str:
    """Stable digest of the expression structure of a definition set."""
    parts = [[d.name, d.kind, d.raw_expression] for d in definitions]
    return hashlib.sha1(json.dumps(parts).encode()).hexdigest()


@dataclass
class Scope:
    """Declarations and resolved values of one scope."""

    scope_id: str
    definitions: dict[str, VariableDefinition] = field(default_factory=dict)
    resolved: dict[str, Any] = field(default_factory=dict)
    modified: set[str] = field(default_factory=set)
    title: str = ""

    @classmethod
    def from_definitions(
        cls, scope_id: str, definitions: Iterable[VariableDefinition], title: str = ""
    ) -> "Scope":
        defs: dict[str, VariableDefinition] = {}
        for d in definitions:
            if d.name in defs:
                logger.warning("duplicate variable %s in scope %s; last one wins", d.name, scope_id)
            defs[d.name] = d
        return cls(scope_id=scope_id, definitions=defs, title=title)

    def definition(self, name: str) -> VariableDefinition:
        try:
            return self.definitions[name]
        except KeyError:
            raise UnknownVariable(name, self.scope_id) from None

    def declared(self, name: str) -> bool:
        return name in self.definitions

    def fingerprint(self) -> str:
        return fingerprint(self.definitions.values())

    def reseed(self, values: Mapping[str, Any]) -> None:
        """Replace the resolved values wholesale."""
        self.resolved = dict(values)
        self.modified.clear()


class VariableStore:
    """All scopes: the global one plus one per page, in configuration order."""

    def __init__(self):
        self.global_scope = Scope(GLOBAL_SCOPE)
        self.pages: dict[str, Scope] = {}

    def set_global(self, definitions: Iterable[VariableDefinition]) -> Scope:
        self.global_scope = Scope.from_definitions(GLOBAL_SCOPE, definitions)
        return self.global_scope

    def add_page(
        self, page_id: str, definitions: Iterable[VariableDefinition], title: str = ""
    ) -> Scope:
        scope = Scope.from_definitions(page_id, definitions, title=title)
        self.pages[page_id] = scope
        return scope

    def page(self, page_id: str) -> Scope:
        try:
            return self.pages[page_id]
        except KeyError:
            raise KeyError(f"unknown page: {page_id}") from None
