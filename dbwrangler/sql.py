"""Dialect-aware rendering of identifiers and literals via sqlglot."""

from __future__ import annotations

from typing import Iterable

from sqlglot import exp


def quote_identifier(name: str, dialect: str) -> str:
    """Quote a table or database name for the given dialect."""

    return exp.to_identifier(name, quoted=True).sql(dialect=dialect)


def quote_literal(value: str, dialect: str) -> str:
    """Render ``value`` as an escaped string literal."""

    return exp.Literal.string(value).sql(dialect=dialect)


def identifier_list(names: Iterable[str], dialect: str) -> str:
    return ", ".join(quote_identifier(name, dialect) for name in names)


def union_all(selects: Iterable[str]) -> str:
    """Join SELECT statements into one batched query."""

    return " UNION ALL ".join(selects)


__all__ = ["identifier_list", "quote_identifier", "quote_literal", "union_all"]
