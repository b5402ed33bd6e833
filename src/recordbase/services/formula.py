"""Computed field formulas.

A formula is a '+'-joined list of terms, each a quoted string literal, a number
literal or a field name:

    expr : expr PLUS term
         | term
    term : STRING | NUMBER | IDENTIFIER

'+' concatenates the text forms of both sides. A formula with a single term
evaluates to that term's value unchanged. Formulas are parsed into a small
tree with a ply grammar; nothing is ever executed as code.
"""

import re
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Union

import ply.lex as lex
import ply.yacc as yacc
import structlog

from recordbase.models.enums import FieldType
from recordbase.models.table import FieldDefinition

_ESCAPE = re.compile(r"\\(.)")


class FormulaError(ValueError):
    """A formula could not be parsed or evaluated."""


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class FieldRef:
    name: str


@dataclass(frozen=True)
class Add:
    left: "Node"
    right: "Node"


Node = Union[Literal, FieldRef, Add]


class FormulaLexer:
    """Lexer for formula text."""

    tokens = ["STRING", "NUMBER", "IDENTIFIER", "PLUS"]

    t_PLUS = r"\+"
    t_ignore = " \t\r\n"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r"""(?:"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')"""
        t.value = _ESCAPE.sub(r"\1", t.value[1:-1])
        return t

    def t_NUMBER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+(?:\.\d+)?"
        t.value = float(t.value) if "." in t.value else int(t.value)
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[A-Za-z_][A-Za-z0-9_]*"
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise FormulaError(f"unexpected character {t.value[0]!r} at position {t.lexpos}")

    def build(self, **kwargs: Any) -> None:
        self.lexer = lex.lex(module=self, **kwargs)

    def tokenize(self, data: str) -> list[lex.LexToken]:
        self.lexer.input(data)
        return list(self.lexer)


class FormulaParser:
    """LALR parser producing Literal / FieldRef / Add trees."""

    tokens = FormulaLexer.tokens

    def __init__(self) -> None:
        self.lexer = FormulaLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore

    def p_expr_plus(self, p: yacc.YaccProduction) -> None:
        "expr : expr PLUS term"
        p[0] = Add(p[1], p[3])

    def p_expr_term(self, p: yacc.YaccProduction) -> None:
        "expr : term"
        p[0] = p[1]

    def p_term_literal(self, p: yacc.YaccProduction) -> None:
        """term : STRING
        | NUMBER"""
        p[0] = Literal(p[1])

    def p_term_field(self, p: yacc.YaccProduction) -> None:
        "term : IDENTIFIER"
        p[0] = FieldRef(p[1])

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise FormulaError(f"unexpected {p.value!r} at position {p.lexpos}")
        raise FormulaError("formula ends where a value was expected")

    def build(self, **kwargs: Any) -> None:
        self.parser = yacc.yacc(module=self, **kwargs)

    def parse(self, formula: str) -> Node:
        if self.parser is None:
            self.build(debug=False, write_tables=False)
        return self.parser.parse(formula, lexer=self.lexer.lexer)


_PARSER = FormulaParser()


@lru_cache(maxsize=256)
def parse_formula(formula: str) -> Node:
    """Parse a formula into its tree. Results are cached per formula string."""
    return _PARSER.parse(formula)


def evaluate_node(node: Node, values: Mapping[str, Any], known: Collection[str] = ()) -> Any:
    """Evaluate a formula tree. Names in known that values lacks read as None."""
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, FieldRef):
        if node.name in values:
            return values[node.name]
        if node.name in known:
            return None
        raise FormulaError(f"unknown field {node.name!r}")
    left = evaluate_node(node.left, values, known)
    return as_text(left) + as_text(evaluate_node(node.right, values, known))


def as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class ComputedFieldEvaluator:
    """Derives computed field values from the rest of a record's payload."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def evaluate(
        self,
        field: FieldDefinition,
        payload: Mapping[str, Any],
        known_fields: Collection[str] = (),
    ) -> Any:
        """Value of a computed field, or None when its formula cannot be evaluated.

        A reference to one of known_fields that payload does not carry counts as
        an empty value; any other missing name fails the formula.
        """
        if not field.formula:
            return None
        try:
            return evaluate_node(parse_formula(field.formula), payload, known_fields)
        except FormulaError as e:
            self._logger.warning(
                "computed_field_failed",
                field=field.name,
                formula=field.formula,
                error=str(e),
            )
            return None

    def apply(self, fields: Iterable[FieldDefinition], payload: Mapping[str, Any]) -> dict[str, Any]:
        """Return payload with every computed field recomputed in schema order.

        Caller-supplied values for computed fields are discarded first, so a
        formula can only see them once they have been recomputed. Until then,
        like any absent field, they read as empty.
        """
        fields = list(fields)
        names = {f.name for f in fields}
        computed = [f for f in fields if f.type == FieldType.COMPUTED]
        result = {k: v for k, v in payload.items() if k not in {f.name for f in computed}}
        for field in computed:
            result[field.name] = self.evaluate(field, result, names)
        return result
