"""AST nodes for variable expressions and command scripts."""

from typing import Annotated, Any
from typing import Literal as TypingLiteral

from pydantic import BaseModel, Field


# Expressions - using discriminated union for type safety
class Literal(BaseModel):
    type: TypingLiteral["literal"] = "literal"
    value: Any  # int, float, str, bool, None


class Name(BaseModel):
    """Identifier reference (variable, integration namespace or builtin)."""

    type: TypingLiteral["name"] = "name"
    id: str


class This(BaseModel):
    """The `this` self-reference marker; reads the resolved scope."""

    type: TypingLiteral["this"] = "this"


class Array(BaseModel):
    type: TypingLiteral["array"] = "array"
    items: list["Expr"] = []


class Attribute(BaseModel):
    """Member access (e.g., this.hp, Dice.roll, Math.floor)."""

    type: TypingLiteral["attribute"] = "attribute"
    obj: "Expr"
    attr: str


class Index(BaseModel):
    """Subscript access (e.g., rolls[0])."""

    type: TypingLiteral["index"] = "index"
    obj: "Expr"
    index: "Expr"


class Call(BaseModel):
    """Call of any callable expression (e.g., max(0, x), Sheets.get('A1'))."""

    type: TypingLiteral["call"] = "call"
    func: "Expr"
    args: list["Expr"] = []


class BinOp(BaseModel):
    type: TypingLiteral["binop"] = "binop"
    op: str  # + - * / % < > <= >= == != === !== && || ??
    left: "Expr"
    right: "Expr"


class UnaryOp(BaseModel):
    type: TypingLiteral["unaryop"] = "unaryop"
    op: str  # -, +, !
    operand: "Expr"


class Await(BaseModel):
    type: TypingLiteral["await"] = "await"
    value: "Expr"


class Cond(BaseModel):
    """Ternary conditional (c ? a : b)."""

    type: TypingLiteral["cond"] = "cond"
    condition: "Expr"
    then_expr: "Expr"
    else_expr: "Expr"


# Expression union type
Expr = Annotated[
    Literal | Name | This | Array | Attribute | Index | Call | BinOp | UnaryOp | Await | Cond,
    Field(discriminator="type"),
]


# Statements (command scripts only)
class ExprStmt(BaseModel):
    type: TypingLiteral["expr_stmt"] = "expr_stmt"
    expr: Expr


class Let(BaseModel):
    """Script-local binding (let/const/var name = expr, or name = expr)."""

    type: TypingLiteral["let"] = "let"
    name: str
    value: Expr


Stmt = Annotated[ExprStmt | Let, Field(discriminator="type")]


class Script(BaseModel):
    """A parsed command script."""

    source: str = ""
    statements: list[Stmt] = []


# Rebuild models for forward references
Array.model_rebuild()
Attribute.model_rebuild()
Index.model_rebuild()
Call.model_rebuild()
BinOp.model_rebuild()
UnaryOp.model_rebuild()
Await.model_rebuild()
Cond.model_rebuild()
ExprStmt.model_rebuild()
Let.model_rebuild()
Script.model_rebuild()
