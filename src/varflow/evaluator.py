"""Evaluator: executes expression text against a composed scope.

The scope for one evaluation is the union of
    - resolved variables (also reachable as `this.<name>`),
    - integration namespaces (`Sheets.get(...)`),
    - the math/conversion builtins (`floor`, `Math.max`, `String`, ...),
    - for command scripts only, mutation primitives and script locals.

Evaluation is async: calls to asynchronous integration operations are
awaited in source order after `sequence_awaits` has rewritten the text.
"""

import inspect
import logging
import math
import random
from functools import lru_cache
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field
from typing import Any

from . import ast
from .errors import EvaluationError, VarflowError
from .integrations import AsyncOperationCache, Integration, IntegrationRegistry
from .parser import parse_expression, parse_script
from .sequencing import sequence_awaits
from .templates import format_value, substitute_placeholders

logger = logging.getLogger(__name__)

PARSE_CACHE_SIZE = 256
MAX_DIAGNOSTICS = 100


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> int | float:
    """Number(...) conversion. Raises EvaluationError for non-numeric text."""
    if isinstance(value, bool):
        return int(value)
    if is_number(value):
        return value
    if value is None or value == "":
        return 0
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            pass
    raise EvaluationError(f"not a number: {value!r}")


def truthy(value: Any) -> bool:
    if isinstance(value, (list, dict)):
        return True
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def to_text(value: Any) -> str:
    """String(...) conversion."""
    return "null" if value is None else format_value(value)


def normalize(value: Any) -> Any:
    """Collapse integral floats to int and tuples to lists."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, tuple):
        return list(value)
    return value


def js_round(x: float) -> int:
    return math.floor(x + 0.5)


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


MATH_FUNCTIONS = {
    "floor": math.floor,
    "ceil": math.ceil,
    "round": js_round,
    "abs": abs,
    "min": min,
    "max": max,
    "sqrt": math.sqrt,
    "pow": pow,
    "trunc": math.trunc,
    "sign": lambda x: (x > 0) - (x < 0),
    "clamp": clamp,
    "random": random.random,
}

BUILTINS: dict[str, Any] = {
    **MATH_FUNCTIONS,
    "Math": {**MATH_FUNCTIONS, "PI": math.pi, "E": math.e},
    "String": to_text,
    "Number": to_number,
    "Boolean": truthy,
}


@dataclass
class Diagnostic:
    """A recorded evaluation failure."""

    name: str | None
    expression: str
    message: str


@dataclass
class EvaluationContext:
    """Runtime scope for one evaluation. Built fresh, never persisted."""

    variables: Mapping[str, Any]
    namespaces: Mapping[str, Integration] = field(default_factory=dict)
    builtins: Mapping[str, Any] = field(default_factory=lambda: BUILTINS)
    helpers: Mapping[str, Callable[..., Any]] = field(default_factory=dict)
    locals: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        for layer in (self.locals, self.helpers, self.variables, self.namespaces, self.builtins):
            if name in layer:
                return layer[name]
        raise EvaluationError(f"undefined: {name}")


def _settled(value: Any) -> Any:
    if inspect.isawaitable(value):
        if inspect.iscoroutine(value):
            value.close()
        raise EvaluationError("deferred result used without await")
    return value


def _loose_equals(left: Any, right: Any) -> bool:
    if isinstance(left, str) and is_number(right) or is_number(left) and isinstance(right, str):
        try:
            return to_number(left) == to_number(right)
        except EvaluationError:
            return False
    return left == right


def _strict_equals(left: Any, right: Any) -> bool:
    if is_number(left) and is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _arith(op: str, left: Any, right: Any) -> Any:
    if op == "+" and (isinstance(left, str) or isinstance(right, str)):
        return to_text(left) + to_text(right)
    if left is None or right is None:
        raise EvaluationError(f"cannot apply {op} to null")
    try:
        match op:
            case "+":
                return left + right
            case "-":
                return left - right
            case "*":
                return left * right
            case "/":
                if right == 0:
                    raise EvaluationError("division by zero")
                return normalize(left / right)
            case "%":
                if right == 0:
                    raise EvaluationError("division by zero")
                result = math.fmod(left, right)
                return normalize(result) if isinstance(left, int) and isinstance(right, int) else result
            case "<":
                return left < right
            case ">":
                return left > right
            case "<=":
                return left <= right
            case ">=":
                return left >= right
    except TypeError as exc:
        raise EvaluationError(f"unsupported operands for {op}: {left!r}, {right!r}") from exc
    raise EvaluationError(f"unknown op: {op}")


def _member(obj: Any, attr: str) -> Any:
    if obj is None:
        raise EvaluationError(f"cannot read property {attr!r} of null")
    if isinstance(obj, Integration):
        op = obj.get(attr)
        if op is None:
            raise EvaluationError(f"unknown operation: {obj.name}.{attr}")
        return op
    if isinstance(obj, Mapping):
        return obj.get(attr)
    if attr == "length" and isinstance(obj, (list, str)):
        return len(obj)
    if attr.startswith("_"):
        raise EvaluationError(f"cannot read private property {attr!r}")
    return None


def _subscript(obj: Any, index: Any) -> Any:
    if obj is None:
        raise EvaluationError("cannot index null")
    if isinstance(obj, Mapping):
        return obj.get(index, obj.get(str(index)))
    if isinstance(obj, (list, str)):
        if isinstance(index, float) and index.is_integer():
            index = int(index)
        if not isinstance(index, int) or isinstance(index, bool):
            raise EvaluationError(f"invalid index: {index!r}")
        return obj[index] if 0 <= index < len(obj) else None
    raise EvaluationError(f"cannot index {type(obj).__name__}")


async def evaluate(expr: ast.Expr, ctx: EvaluationContext) -> Any:
    """Evaluate an expression node in context."""
    match expr:
        case ast.Literal(value=v):
            return v

        case ast.Name(id=name):
            return ctx.get(name)

        case ast.This():
            return ctx.variables

        case ast.Array(items=items):
            return [_settled(await evaluate(item, ctx)) for item in items]

        case ast.Attribute(obj=obj, attr=attr):
            return _member(_settled(await evaluate(obj, ctx)), attr)

        case ast.Index(obj=obj, index=index):
            target = _settled(await evaluate(obj, ctx))
            return _subscript(target, _settled(await evaluate(index, ctx)))

        case ast.Call(func=func, args=args):
            fn = await evaluate(func, ctx)
            arg_vals = [_settled(await evaluate(a, ctx)) for a in args]
            if not callable(fn):
                raise EvaluationError(f"not a function: {format_value(fn) or 'null'}")
            try:
                return fn(*arg_vals)
            except VarflowError:
                raise
            except (TypeError, ValueError, ArithmeticError) as exc:
                raise EvaluationError(f"call failed: {exc}") from exc

        case ast.Await(value=value):
            result = await evaluate(value, ctx)
            if inspect.isawaitable(result):
                result = await result
            return result

        case ast.UnaryOp(op=op, operand=operand):
            v = _settled(await evaluate(operand, ctx))
            match op:
                case "-":
                    return -to_number(v)
                case "+":
                    return to_number(v)
                case "!":
                    return not truthy(v)
                case _:
                    raise EvaluationError(f"unknown unary op: {op}")

        case ast.BinOp(op=op, left=left, right=right):
            left_val = _settled(await evaluate(left, ctx))
            match op:
                case "&&":
                    return _settled(await evaluate(right, ctx)) if truthy(left_val) else left_val
                case "||":
                    return left_val if truthy(left_val) else _settled(await evaluate(right, ctx))
                case "??":
                    return left_val if left_val is not None else _settled(await evaluate(right, ctx))
            right_val = _settled(await evaluate(right, ctx))
            match op:
                case "==":
                    return _loose_equals(left_val, right_val)
                case "!=":
                    return not _loose_equals(left_val, right_val)
                case "===":
                    return _strict_equals(left_val, right_val)
                case "!==":
                    return not _strict_equals(left_val, right_val)
                case _:
                    return _arith(op, left_val, right_val)

        case ast.Cond(condition=cond, then_expr=then_e, else_expr=else_e):
            if truthy(_settled(await evaluate(cond, ctx))):
                return await evaluate(then_e, ctx)
            return await evaluate(else_e, ctx)

        case _:
            raise EvaluationError(f"unknown expr type: {type(expr)}")


async def execute(script: ast.Script, ctx: EvaluationContext) -> Any:
    """Run script statements in order; returns the last expression's value."""
    result = None
    for stmt in script.statements:
        match stmt:
            case ast.Let(name=name, value=value):
                ctx.locals[name] = await _finish(await evaluate(value, ctx))
            case ast.ExprStmt(expr=expr):
                result = await _finish(await evaluate(expr, ctx))
    return result


async def _finish(value: Any) -> Any:
    if inspect.isawaitable(value):
        value = await value
    return normalize(value)


class Evaluator:
    """Evaluates expression text. One instance per engine.

    Owns the async-operation cache and the parse cache, so several engines
    (or tests) never share state. Parsed text is kept in LRU caches of
    `parse_cache_size` entries; only the newest `max_diagnostics`
    diagnostics are kept.
    """

    def __init__(
        self,
        registry: IntegrationRegistry | None = None,
        builtins: Mapping[str, Any] | None = None,
        parse_cache_size: int = PARSE_CACHE_SIZE,
        max_diagnostics: int = MAX_DIAGNOSTICS,
    ):
        self.registry = registry or IntegrationRegistry()
        self.builtins = dict(BUILTINS if builtins is None else builtins)
        self.async_cache = AsyncOperationCache(self.registry)
        self.diagnostics: list[Diagnostic] = []
        self.max_diagnostics = max_diagnostics
        self.parse = lru_cache(maxsize=parse_cache_size)(parse_expression)
        self.parse_script = lru_cache(maxsize=parse_cache_size)(parse_script)

    def context(
        self,
        scope: Mapping[str, Any],
        helpers: Mapping[str, Callable[..., Any]] | None = None,
    ) -> EvaluationContext:
        return EvaluationContext(
            variables=scope,
            namespaces=self.registry.namespaces(),
            builtins=self.builtins,
            helpers=dict(helpers or {}),
        )

    def prepare(
        self,
        text: str,
        scope: Mapping[str, Any],
        extra_async: Collection[str] = (),
    ) -> str:
        """Inline placeholders, then await-sequence async call sites."""
        text = substitute_placeholders(text, scope)
        async_ops = self.async_cache.get()
        if extra_async:
            async_ops = async_ops | frozenset(extra_async)
        return sequence_awaits(text, async_ops)

    def clear_caches(self) -> None:
        self.parse.cache_clear()
        self.parse_script.cache_clear()
        self.async_cache.invalidate()

    async def evaluate(self, text: str, scope: Mapping[str, Any]) -> Any:
        """Evaluate expression text. Raises EvaluationError (or a subclass)."""
        try:
            prepared = self.prepare(text, scope)
            expr = self.parse(prepared)
            return await _finish(await evaluate(expr, self.context(scope)))
        except EvaluationError:
            raise
        except VarflowError as exc:
            raise EvaluationError(str(exc)) from exc
        except (TypeError, ValueError, ArithmeticError, LookupError) as exc:
            raise EvaluationError(f"{type(exc).__name__}: {exc}") from exc

    async def run_script(
        self,
        text: str,
        scope: Mapping[str, Any],
        helpers: Mapping[str, Callable[..., Any]],
    ) -> Any:
        """Run a command script; `helpers` are awaited like async operations.

        Statements run in order against one context and the first failure
        propagates, leaving the remaining statements unexecuted. Whatever a
        helper raises (a failing persistence backend, say) comes out as
        EvaluationError.
        """
        try:
            prepared = self.prepare(text, scope, extra_async=helpers)
            script = self.parse_script(prepared)
            return await execute(script, self.context(scope, helpers))
        except EvaluationError:
            raise
        except VarflowError as exc:
            raise EvaluationError(str(exc)) from exc
        except Exception as exc:
            raise EvaluationError(f"{type(exc).__name__}: {exc}") from exc

    async def evaluate_safely(self, name: str | None, text: str, scope: Mapping[str, Any]) -> Any:
        """Evaluate, isolating any failure: logs a diagnostic and returns None."""
        try:
            return await self.evaluate(text, scope)
        except EvaluationError as exc:
            message = str(exc)
        except Exception as exc:  # an integration may raise anything past its wrapper
            logger.exception("unexpected failure evaluating %s", name)
            message = f"{type(exc).__name__}: {exc}"
        logger.warning("evaluation of %s failed (%r): %s", name or "<expr>", text, message)
        self.diagnostics.append(Diagnostic(name, text, message))
        if len(self.diagnostics) > self.max_diagnostics:
            self.diagnostics = self.diagnostics[-self.max_diagnostics :]
        return None
