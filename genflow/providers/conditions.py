"""Tiny boolean expression language for classifying provider responses.

Expressions are written against flat field maps, for example::

    status == "succeed" || status == "completed"
    code === 2 && !(message == "queued")

Supported: ``==`` ``!=`` ``===`` ``!==`` ``<`` ``<=`` ``>`` ``>=``,
``&&``/``and``, ``||``/``or``, ``!``/``not``, parentheses, quoted strings,
numbers, ``true``/``false``/``null`` and field names (dotted names resolve
into nested values). Missing and null fields compare as the empty string.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any, Callable, Mapping, NamedTuple

from .mapping import UNDEFINED, extract_by_path

logger = logging.getLogger(__name__)

Evaluator = Callable[[Mapping[str, Any]], Any]


class ExpressionError(ValueError):
    """Raised for malformed condition expressions."""


class Token(NamedTuple):
    kind: str  # "op", "str", "num", "name", "end"
    value: Any
    pos: int


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<num>\d+(?:\.\d+)?)
  | (?P<str>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!()\-])
  | (?P<name>[A-Za-z_$][\w$]*(?:\.[\w$]+)*)
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}
_KEYWORDS = {"true": True, "false": False, "null": None, "undefined": None}
_WORD_OPS = {"and": "&&", "or": "||", "not": "!"}


def _unescape(body: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def tokenize(expression: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if match is None:
            raise ExpressionError(
                f"Unexpected character {expression[pos]!r} at position {pos}"
            )
        kind = match.lastgroup
        text = match.group()
        if kind == "num":
            tokens.append(Token("num", float(text) if "." in text else int(text), pos))
        elif kind == "str":
            tokens.append(Token("str", _unescape(text[1:-1]), pos))
        elif kind == "op":
            tokens.append(Token("op", text, pos))
        elif kind == "name":
            if text in _WORD_OPS:
                tokens.append(Token("op", _WORD_OPS[text], pos))
            else:
                tokens.append(Token("name", text, pos))
        pos = match.end()
    tokens.append(Token("end", None, pos))
    return tokens


# ----------------------------------------------------------------------
# Value semantics


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_number(value: Any) -> float | None:
    if _is_number(value):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            return None
    return None


def loose_equals(left: Any, right: Any) -> bool:
    """Equality where numbers and numeric strings compare by value."""
    if left is None or right is None:
        return left is right
    if _is_number(left) != _is_number(right):
        a, b = _as_number(left), _as_number(right)
        if a is not None and b is not None:
            return a == b
    if isinstance(left, bool) or isinstance(right, bool):
        return left is right or (
            not isinstance(left, str) and not isinstance(right, str) and left == right
        )
    return left == right


def strict_equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    a, b = _as_number(left), _as_number(right)
    if a is None or b is None:
        if not (isinstance(left, str) and isinstance(right, str)):
            raise ExpressionError(f"Cannot order {left!r} and {right!r}")
        a, b = left, right
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _truthy(value: Any) -> bool:
    return bool(value) and value is not UNDEFINED


# ----------------------------------------------------------------------
# Parser: expression := or ; or := and ("||" and)* ; and := unary ("&&" unary)* ;
# unary := ("!" | "-") unary | comparison ; comparison := atom (cmp atom)?


class _Parser:
    def __init__(self, expression: str) -> None:
        self.expression = expression
        self.tokens = tokenize(expression)
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def _accept(self, *ops: str) -> str | None:
        token = self.current
        if token.kind == "op" and token.value in ops:
            self.index += 1
            return token.value
        return None

    def _fail(self, message: str) -> ExpressionError:
        return ExpressionError(
            f"{message} at position {self.current.pos} in {self.expression!r}"
        )

    def parse(self) -> Evaluator:
        if self.current.kind == "end":
            raise self._fail("Empty expression")
        node = self._or()
        if self.current.kind != "end":
            raise self._fail(f"Unexpected token {self.current.value!r}")
        return node

    def _or(self) -> Evaluator:
        node = self._and()
        while self._accept("||"):
            left, right = node, self._and()
            node = lambda f, l=left, r=right: _truthy(l(f)) or _truthy(r(f))
        return node

    def _and(self) -> Evaluator:
        node = self._unary()
        while self._accept("&&"):
            left, right = node, self._unary()
            node = lambda f, l=left, r=right: _truthy(l(f)) and _truthy(r(f))
        return node

    def _unary(self) -> Evaluator:
        if self._accept("!"):
            operand = self._unary()
            return lambda f: not _truthy(operand(f))
        return self._comparison()

    def _comparison(self) -> Evaluator:
        left = self._atom()
        op = self._accept("===", "!==", "==", "!=", "<=", ">=", "<", ">")
        if op is None:
            return left
        right = self._atom()
        if op == "==":
            return lambda f: loose_equals(left(f), right(f))
        if op == "!=":
            return lambda f: not loose_equals(left(f), right(f))
        if op == "===":
            return lambda f: strict_equals(left(f), right(f))
        if op == "!==":
            return lambda f: not strict_equals(left(f), right(f))
        return lambda f: _compare(op, left(f), right(f))

    def _atom(self) -> Evaluator:
        token = self.current
        if self._accept("("):
            node = self._or()
            if not self._accept(")"):
                raise self._fail("Expected ')'")
            return node
        if self._accept("-"):
            number = self.current
            if number.kind != "num":
                raise self._fail("Expected number after '-'")
            self.index += 1
            return lambda f, v=-number.value: v
        if token.kind in ("str", "num"):
            self.index += 1
            return lambda f, v=token.value: v
        if token.kind == "name":
            self.index += 1
            if token.value in _KEYWORDS:
                return lambda f, v=_KEYWORDS[token.value]: v
            return lambda f, name=token.value: _lookup(f, name)
        raise self._fail(f"Unexpected token {token.value!r}")


def _lookup(fields: Mapping[str, Any], name: str) -> Any:
    if name in fields:
        value = fields[name]
    elif "." in name:
        value = extract_by_path(fields, name)
    else:
        value = UNDEFINED
    return "" if value is None or value is UNDEFINED else value


@lru_cache(maxsize=256)
def compile_expression(expression: str) -> Evaluator:
    """Parse ``expression`` once and return a reusable evaluator."""
    return _Parser(expression).parse()


def evaluate_condition(fields: Mapping[str, Any], expression: str | None) -> bool:
    """Evaluate ``expression`` against ``fields``.

    Never raises: an empty, malformed or failing expression yields ``False``
    and a warning is logged.
    """
    if not expression or not expression.strip():
        return False
    try:
        return _truthy(compile_expression(expression)(fields))
    except Exception as exc:
        logger.warning(f"Condition evaluation failed for {expression!r}: {exc}")
        return False
