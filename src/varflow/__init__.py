"""varflow: resolve interdependent variables and propagate command changes.

Pipeline: declare variables -> build dependency graph -> resolve in order ->
run commands -> recompute only what they affected.

Example:
    from varflow import Engine

    engine = Engine({
        "pages": [{
            "id": "fighter",
            "variables": {
                "hp": {"value": 40, "min": 0, "max": 50},
                "hp_pct": {"eval": "round(this.hp / 50 * 100)"},
            },
        }]
    })
    await engine.resolve_page("fighter")          # {"hp": 40, "hp_pct": 80}
    await engine.run_command("fighter", 'addValue("hp", -10)')
    await engine.render("fighter", "{hp} HP ({hp_pct}%)")   # "30 HP (60%)"
"""

__version__ = "0.1.0"

from .commands import CommandExecutor, CommandResult
from .config import EngineConfig, PageConfig, VariableConfig, load_config, parse_config
from .engine import Engine
from .errors import ConfigError, EvaluationError, IntegrationError, UnknownVariable, VarflowError
from .evaluator import BUILTINS, Diagnostic, EvaluationContext, Evaluator
from .events import Event, EventBus, EventType
from .graph import DependencyGraph, build_dependency_graph, scan_references
from .integrations import (
    AsyncOperationCache,
    Integration,
    IntegrationRegistry,
    LocalStore,
    Operation,
    local_integration,
)
from .parser import Lexer, ParseError, Parser, parse_expression, parse_script
from .persistence import JsonFilePersistence, MemoryPersistence, Persistence
from .propagation import affected_variables, propagate
from .resolver import resolve_variables
from .sequencing import find_call_sites, sequence_awaits
from .store import Scope, VariableDefinition, VariableStore
from .templates import format_value, render_text, substitute_placeholders

__all__ = [
    # Engine
    "Engine",
    "load_config",
    "parse_config",
    "EngineConfig",
    "PageConfig",
    "VariableConfig",
    # Definitions and scopes
    "VariableDefinition",
    "Scope",
    "VariableStore",
    # Graph and resolution
    "DependencyGraph",
    "build_dependency_graph",
    "scan_references",
    "resolve_variables",
    # Evaluation
    "Evaluator",
    "EvaluationContext",
    "Diagnostic",
    "BUILTINS",
    "Lexer",
    "Parser",
    "ParseError",
    "parse_expression",
    "parse_script",
    "find_call_sites",
    "sequence_awaits",
    "format_value",
    "render_text",
    "substitute_placeholders",
    # Commands
    "CommandExecutor",
    "CommandResult",
    "affected_variables",
    "propagate",
    # Integrations
    "Integration",
    "IntegrationRegistry",
    "Operation",
    "AsyncOperationCache",
    "LocalStore",
    "local_integration",
    # Events and persistence
    "Event",
    "EventBus",
    "EventType",
    "Persistence",
    "MemoryPersistence",
    "JsonFilePersistence",
    # Errors
    "VarflowError",
    "ConfigError",
    "EvaluationError",
    "UnknownVariable",
    "IntegrationError",
]
