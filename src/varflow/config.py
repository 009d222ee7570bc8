"""Configuration loading.

A configuration declares global variables and pages of variables:

    global:
      variables:
        max_hp: 50
    pages:
      - id: fighter
        title: "Fighter ({hp}/{max_hp})"
        variables:
          hp: {value: 40, min: 0, max: 50}
          hp_pct: {eval: "round(this.hp / max_hp * 100)"}

A variable entry is `{value: ...}` or `{eval: "..."}` (`expression` is
accepted for `eval`) with optional `min`/`max`; a bare scalar or list is a
literal. When both `value` and `eval` are given, `value` wins.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError
from .store import VariableDefinition

logger = logging.getLogger(__name__)


class VariableConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    value: Any = None
    eval_: str | None = Field(default=None, validation_alias=AliasChoices("eval", "expression", "eval_"))
    min: int | float | None = None
    max: int | float | None = None

    @field_validator("eval_", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v) if isinstance(v, (list, dict, bool)) else str(v)

    def to_definition(self, name: str) -> VariableDefinition:
        if "value" in self.model_fields_set or self.eval_ is None or not self.eval_.strip():
            return VariableDefinition.literal(name, self.value, min=self.min, max=self.max)
        return VariableDefinition.expression(name, self.eval_, min=self.min, max=self.max)


def _wrap_bare(variables: Any) -> Any:
    if variables is None:
        return {}
    if not isinstance(variables, dict):
        return variables
    return {
        str(name): entry if isinstance(entry, dict) else {"value": entry}
        for name, entry in variables.items()
    }


class ScopeConfig(BaseModel):
    variables: dict[str, VariableConfig] = {}

    @field_validator("variables", mode="before")
    @classmethod
    def _bare_literals(cls, v: Any) -> Any:
        return _wrap_bare(v)

    def definitions(self) -> list[VariableDefinition]:
        return [entry.to_definition(name) for name, entry in self.variables.items()]


class PageConfig(ScopeConfig):
    id: str | None = None
    title: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_text(cls, v: Any) -> Any:
        return v if v is None else str(v)


class EngineConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    global_: ScopeConfig = Field(default_factory=ScopeConfig, alias="global")
    pages: list[PageConfig] = []

    @field_validator("global_", "pages", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any, info) -> Any:
        if v is None:
            return {} if info.field_name == "global_" else []
        return v

    @model_validator(mode="after")
    def _page_ids(self) -> "EngineConfig":
        seen: set[str] = set()
        for index, page in enumerate(self.pages):
            if page.id is None:
                page.id = f"page-{index}"
            if page.id in seen:
                raise ValueError(f"duplicate page id: {page.id}")
            seen.add(page.id)
        return self

    def page(self, page_id: str) -> PageConfig:
        for page in self.pages:
            if page.id == page_id:
                return page
        raise ConfigError(f"unknown page: {page_id}")


def parse_config(data: Any) -> EngineConfig:
    """Validate a configuration mapping."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"configuration must be a mapping, got {type(data).__name__}")
    try:
        return EngineConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc


def load_config(path: str | Path) -> EngineConfig:
    """Load a YAML or JSON configuration file (JSON is read as YAML)."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse {path}: {exc}") from exc
    logger.debug("loaded configuration from %s", path)
    return parse_config(data)
