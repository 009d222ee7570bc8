"""Lexer and recursive descent parser for variable expressions and command scripts.

Grammar (simplified):
    script      = statement ((";" | NEWLINE) statement)*
    statement   = ("let" | "const" | "var")? NAME "=" expr | expr
    expr        = nullish ("?" expr ":" expr)?
    nullish     = or_expr ("??" or_expr)*
    or_expr     = and_expr ("||" and_expr)*
    and_expr    = eq_expr ("&&" eq_expr)*
    eq_expr     = cmp_expr (("==" | "!=" | "===" | "!==") cmp_expr)*
    cmp_expr    = add_expr (("<" | ">" | "<=" | ">=") add_expr)*
    add_expr    = mul_expr (("+" | "-") mul_expr)*
    mul_expr    = unary (("*" | "/" | "%") unary)*
    unary       = ("-" | "+" | "!") unary | "await" unary | postfix
    postfix     = primary ("(" args ")" | "." NAME | "[" expr "]")*
    primary     = NUMBER | STRING | "true" | "false" | "null" | "undefined"
                | "this" | NAME | "(" expr ")" | "[" items "]"

Newlines only separate statements in scripts; inside an expression they are
ignored.
"""

import re
from dataclasses import dataclass

from . import ast
from .errors import VarflowError


@dataclass
class Token:
    type: str
    value: str
    line: int
    col: int
    pos: int  # offset into the source text


class ParseError(VarflowError):
    def __init__(self, msg: str, line: int, col: int):
        super().__init__(f"line {line}, col {col}: {msg}")
        self.line = line
        self.col = col


ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", "'": "'", '"': '"'}
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


def unquote(literal: str) -> str:
    """Strip quotes from a STRING token and apply backslash escapes."""
    return _ESCAPE_RE.sub(lambda m: ESCAPES.get(m.group(1), m.group(1)), literal[1:-1])


class Lexer:
    """Simple lexer for expression text."""

    KEYWORDS = {
        "true",
        "false",
        "null",
        "undefined",
        "this",
        "await",
        "let",
        "const",
        "var",
    }

    TOKEN_PATTERNS = [
        (re.compile(r"//[^\n]*"), "COMMENT"),
        (re.compile(r"\n"), "NEWLINE"),
        (re.compile(r"[ \t\r]+"), "WS"),
        (re.compile(r"\d+\.\d+(?:[eE][+-]?\d+)?|\d+[eE][+-]?\d+"), "FLOAT"),
        (re.compile(r"\d+"), "INT"),
        (re.compile(r'"(?:[^"\\\n]|\\.)*"'), "STRING"),
        (re.compile(r"'(?:[^'\\\n]|\\.)*'"), "STRING"),
        (re.compile(r"[a-zA-Z_$][a-zA-Z0-9_$]*"), "IDENT"),
        (re.compile(r"==="), "STRICT_EQ"),
        (re.compile(r"!=="), "STRICT_NE"),
        (re.compile(r"=="), "EQ"),
        (re.compile(r"!="), "NE"),
        (re.compile(r"<="), "LE"),
        (re.compile(r">="), "GE"),
        (re.compile(r"&&"), "AND"),
        (re.compile(r"\|\|"), "OR"),
        (re.compile(r"\?\?"), "NULLISH"),
        (re.compile(r"="), "ASSIGN"),
        (re.compile(r"<"), "LT"),
        (re.compile(r">"), "GT"),
        (re.compile(r"!"), "NOT"),
        (re.compile(r"\?"), "QUESTION"),
        (re.compile(r":"), "COLON"),
        (re.compile(r"\+"), "PLUS"),
        (re.compile(r"-"), "MINUS"),
        (re.compile(r"\*"), "STAR"),
        (re.compile(r"/"), "SLASH"),
        (re.compile(r"%"), "PERCENT"),
        (re.compile(r"\("), "LPAREN"),
        (re.compile(r"\)"), "RPAREN"),
        (re.compile(r"\["), "LBRACKET"),
        (re.compile(r"\]"), "RBRACKET"),
        (re.compile(r"\{"), "LBRACE"),
        (re.compile(r"\}"), "RBRACE"),
        (re.compile(r","), "COMMA"),
        (re.compile(r"\."), "DOT"),
        (re.compile(r";"), "SEMI"),
    ]

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.line = 1
        self.col = 1
        self.tokens: list[Token] = []
        self._tokenise()

    def _tokenise(self) -> None:
        while self.pos < len(self.source):
            for pattern, ttype in self.TOKEN_PATTERNS:
                m = pattern.match(self.source, self.pos)
                if m:
                    value = m.group(0)
                    if ttype == "NEWLINE":
                        self.tokens.append(Token(ttype, value, self.line, self.col, self.pos))
                        self.line += 1
                        self.col = 1
                    elif ttype in ("WS", "COMMENT"):
                        self.col += len(value)
                    else:
                        if ttype == "IDENT" and value in self.KEYWORDS:
                            ttype = value.upper()
                        self.tokens.append(Token(ttype, value, self.line, self.col, self.pos))
                        self.col += len(value)
                    self.pos += len(value)
                    break
            else:
                raise ParseError(
                    f"unexpected char: {self.source[self.pos]!r}",
                    self.line,
                    self.col,
                )

        self.tokens.append(Token("EOF", "", self.line, self.col, self.pos))

    def significant(self) -> list[Token]:
        """Tokens without newlines (what the expression grammar sees)."""
        return [tok for tok in self.tokens if tok.type != "NEWLINE"]


class Parser:
    """Recursive descent parser for expressions and scripts."""

    BINDING_KEYWORDS = ("LET", "CONST", "VAR")

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def _index(self, offset: int = 0) -> int:
        idx = self.pos
        last = len(self.tokens) - 1
        while True:
            idx = min(idx, last)
            if self.tokens[idx].type == "NEWLINE":
                idx += 1
                continue
            if offset == 0 or idx == last:
                return idx
            offset -= 1
            idx += 1

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[self._index(offset)]

    def at(self, *types: str) -> bool:
        return self.peek().type in types

    def consume(self, ttype: str) -> Token:
        idx = self._index()
        tok = self.tokens[idx]
        if tok.type != ttype:
            raise ParseError(f"expected {ttype}, got {tok.type}", tok.line, tok.col)
        self.pos = idx + 1
        return tok

    def match(self, *types: str) -> Token | None:
        if self.at(*types):
            return self.consume(self.peek().type)
        return None

    def _at_statement_end(self) -> bool:
        """True if the next raw token ends a statement (newline, ';' or EOF)."""
        return self.tokens[min(self.pos, len(self.tokens) - 1)].type in ("NEWLINE", "SEMI", "EOF")

    def parse_script(self, source: str = "") -> ast.Script:
        """Parse a complete command script."""
        script = ast.Script(source=source)

        while True:
            while self.match("SEMI"):
                pass
            if self.at("EOF"):
                break
            script.statements.append(self.parse_statement())
            if not self._at_statement_end():
                tok = self.peek()
                raise ParseError(f"unexpected token: {tok.type}", tok.line, tok.col)

        return script

    def parse_statement(self) -> ast.ExprStmt | ast.Let:
        if self.match(*self.BINDING_KEYWORDS):
            name = self.consume("IDENT").value
            self.consume("ASSIGN")
            return ast.Let(name=name, value=self.parse_expr())
        if self.at("IDENT") and self.peek(1).type == "ASSIGN":
            name = self.consume("IDENT").value
            self.consume("ASSIGN")
            return ast.Let(name=name, value=self.parse_expr())
        return ast.ExprStmt(expr=self.parse_expr())

    def parse_expression(self) -> ast.Expr:
        """Parse a single expression; trailing semicolons are tolerated."""
        expr = self.parse_expr()
        while self.match("SEMI"):
            pass
        if not self.at("EOF"):
            tok = self.peek()
            raise ParseError(f"unexpected token: {tok.type}", tok.line, tok.col)
        return expr

    def parse_expr(self) -> ast.Expr:
        condition = self.parse_nullish()
        if self.match("QUESTION"):
            then_expr = self.parse_expr()
            self.consume("COLON")
            else_expr = self.parse_expr()
            return ast.Cond(condition=condition, then_expr=then_expr, else_expr=else_expr)
        return condition

    def _binary(self, parse_operand, op_map: dict[str, str]) -> ast.Expr:
        left = parse_operand()
        while tok := self.match(*op_map):
            right = parse_operand()
            left = ast.BinOp(op=op_map[tok.type], left=left, right=right)
        return left

    def parse_nullish(self) -> ast.Expr:
        return self._binary(self.parse_or, {"NULLISH": "??"})

    def parse_or(self) -> ast.Expr:
        return self._binary(self.parse_and, {"OR": "||"})

    def parse_and(self) -> ast.Expr:
        return self._binary(self.parse_eq, {"AND": "&&"})

    def parse_eq(self) -> ast.Expr:
        op_map = {"EQ": "==", "NE": "!=", "STRICT_EQ": "===", "STRICT_NE": "!=="}
        return self._binary(self.parse_cmp, op_map)

    def parse_cmp(self) -> ast.Expr:
        op_map = {"LT": "<", "GT": ">", "LE": "<=", "GE": ">="}
        return self._binary(self.parse_add, op_map)

    def parse_add(self) -> ast.Expr:
        return self._binary(self.parse_mul, {"PLUS": "+", "MINUS": "-"})

    def parse_mul(self) -> ast.Expr:
        return self._binary(self.parse_unary, {"STAR": "*", "SLASH": "/", "PERCENT": "%"})

    def parse_unary(self) -> ast.Expr:
        if self.match("MINUS"):
            return ast.UnaryOp(op="-", operand=self.parse_unary())
        if self.match("PLUS"):
            return ast.UnaryOp(op="+", operand=self.parse_unary())
        if self.match("NOT"):
            return ast.UnaryOp(op="!", operand=self.parse_unary())
        if self.match("AWAIT"):
            return ast.Await(value=self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> ast.Expr:
        """Parse postfix operations (calls, member access, indexing)."""
        expr = self.parse_primary()

        while True:
            if self.match("LPAREN"):
                args = []
                if not self.at("RPAREN"):
                    args.append(self.parse_expr())
                    while self.match("COMMA"):
                        args.append(self.parse_expr())
                self.consume("RPAREN")
                expr = ast.Call(func=expr, args=args)
            elif self.match("DOT"):
                attr = self.peek()
                if attr.type != "IDENT" and attr.value not in Lexer.KEYWORDS:
                    raise ParseError(f"expected member name, got {attr.type}", attr.line, attr.col)
                self.consume(attr.type)
                expr = ast.Attribute(obj=expr, attr=attr.value)
            elif self.match("LBRACKET"):
                index = self.parse_expr()
                self.consume("RBRACKET")
                expr = ast.Index(obj=expr, index=index)
            else:
                break

        return expr

    def parse_primary(self) -> ast.Expr:
        """Parse primary expression."""
        if self.at("INT"):
            return ast.Literal(value=int(self.consume("INT").value))
        if self.at("FLOAT"):
            return ast.Literal(value=float(self.consume("FLOAT").value))
        if self.at("STRING"):
            return ast.Literal(value=unquote(self.consume("STRING").value))
        if self.match("TRUE"):
            return ast.Literal(value=True)
        if self.match("FALSE"):
            return ast.Literal(value=False)
        if self.match("NULL", "UNDEFINED"):
            return ast.Literal(value=None)
        if self.match("THIS"):
            return ast.This()
        if tok := self.match("IDENT"):
            return ast.Name(id=tok.value)
        if self.match("LPAREN"):
            expr = self.parse_expr()
            self.consume("RPAREN")
            return expr
        if self.match("LBRACKET"):
            items = []
            if not self.at("RBRACKET"):
                items.append(self.parse_expr())
                while self.match("COMMA"):
                    if self.at("RBRACKET"):
                        break
                    items.append(self.parse_expr())
            self.consume("RBRACKET")
            return ast.Array(items=items)

        tok = self.peek()
        raise ParseError(
            f"unexpected token in expression: {tok.type}", tok.line, tok.col
        )


def parse_expression(source: str) -> ast.Expr:
    """Parse expression text into an AST."""
    lexer = Lexer(source)
    return Parser(lexer.tokens).parse_expression()


def parse_script(source: str) -> ast.Script:
    """Parse a multi-statement command script."""
    lexer = Lexer(source)
    return Parser(lexer.tokens).parse_script(source)
