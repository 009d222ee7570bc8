"""Await sequencing for asynchronous calls embedded in expression text.

Expression authors write integration calls as if they were synchronous:

    Sheets.get('Stats', 'B2') + 1

Before evaluation the text is rewritten so that each call to a known
asynchronous operation is awaited in place:

    (await Sheets.get('Stats', 'B2')) + 1

The rewrite works on lexer tokens, so string literals are never touched and
parentheses are matched correctly across nested calls.
"""

from collections.abc import Collection
from dataclasses import dataclass

from .parser import Lexer, ParseError, Token


@dataclass(frozen=True)
class CallSite:
    """A call to a dotted (or bare) callable found in expression text."""

    name: str  # e.g. "Sheets.get" or "setValue"
    start: int  # offset of the first character of the callee
    end: int  # offset just past the closing parenthesis
    awaited: bool  # already preceded by `await`


def _chain_at(tokens: list[Token], i: int) -> tuple[str, int] | None:
    """Dotted name starting at tokens[i] and the index of its '(' token."""
    parts = [tokens[i].value]
    j = i + 1
    while tokens[j].type == "DOT" and tokens[j + 1].type == "IDENT":
        parts.append(tokens[j + 1].value)
        j += 2
    if tokens[j].type != "LPAREN":
        return None
    return ".".join(parts), j


def _closing_paren(tokens: list[Token], open_idx: int) -> int | None:
    depth = 0
    for k in range(open_idx, len(tokens)):
        if tokens[k].type == "LPAREN":
            depth += 1
        elif tokens[k].type == "RPAREN":
            depth -= 1
            if depth == 0:
                return k
    return None


def find_call_sites(text: str) -> list[CallSite]:
    """All call sites in `text`, in source order. Unlexable text has none."""
    try:
        tokens = Lexer(text).significant()
    except ParseError:
        return []

    sites = []
    for i, tok in enumerate(tokens):
        if tok.type not in ("IDENT", "THIS"):
            continue
        if i > 0 and tokens[i - 1].type == "DOT":
            continue  # member of a longer chain, handled from its head
        found = _chain_at(tokens, i)
        if found is None:
            continue
        name, open_idx = found
        close_idx = _closing_paren(tokens, open_idx)
        if close_idx is None:
            continue
        awaited = i > 0 and tokens[i - 1].type == "AWAIT"
        sites.append(CallSite(name, tok.pos, tokens[close_idx].pos + 1, awaited))
    return sites


def sequence_awaits(text: str, async_operations: Collection[str]) -> str:
    """Wrap every un-awaited call to an async operation as `(await ...)`.

    `async_operations` holds dotted names ("Sheets.get") and bare names
    ("setValue"). Call order is preserved; calls already awaited are left
    alone.
    """
    if not async_operations:
        return text

    opens: dict[int, int] = {}
    closes: dict[int, int] = {}
    for site in find_call_sites(text):
        if site.awaited or site.name not in async_operations:
            continue
        opens[site.start] = opens.get(site.start, 0) + 1
        closes[site.end] = closes.get(site.end, 0) + 1

    if not opens:
        return text

    out = []
    last = 0
    for pos in sorted(set(opens) | set(closes)):
        out.append(text[last:pos])
        out.append(")" * closes.get(pos, 0))
        out.append("(await " * opens.get(pos, 0))
        last = pos
    out.append(text[last:])
    return "".join(out)


def invoked_namespaces(text: str, namespaces: Collection[str]) -> set[str]:
    """Namespaces whose operations are called in `text` (e.g. {"Dice"})."""
    invoked = set()
    for site in find_call_sites(text):
        head, _, rest = site.name.partition(".")
        if rest and head in namespaces:
            invoked.add(head)
    return invoked


def referenced_namespaces(text: str, namespaces: Collection[str]) -> set[str]:
    """Namespaces whose members `text` touches, called or merely read.

    `Dice.last` counts as well as `Dice.roll(6)`; a `Dice` that is itself a
    member (`stats.Dice.x`) does not.
    """
    try:
        tokens = Lexer(text).significant()
    except ParseError:
        return set()
    found = set()
    for i, tok in enumerate(tokens[:-1]):
        if tok.type != "IDENT" or tok.value not in namespaces:
            continue
        if i > 0 and tokens[i - 1].type == "DOT":
            continue
        if tokens[i + 1].type == "DOT":
            found.add(tok.value)
    return found
