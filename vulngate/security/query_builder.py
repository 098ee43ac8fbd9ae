#!/usr/bin/env python3
"""
Query construction strategies for component lookups.

The search grammar belongs to the remote service, so the matcher receives a
builder instead of hard-coding one form. An empty string means "nothing to query".
"""

from __future__ import annotations

from typing import Protocol

from vulngate.security.types import Component

# Characters with meaning in the Lucene-like query syntax
_LUCENE_SPECIAL = str.maketrans(
    {
        "\\": "\\\\",
        '"': '\\"',
        ":": "\\:",
        "(": "\\(",
        ")": "\\)",
        "[": "\\[",
        "]": "\\]",
    }
)


def escape_lucene(value: str) -> str:
    return value.translate(_LUCENE_SPECIAL)


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class QueryBuilder(Protocol):
    def build(self, component: Component) -> str: ...


class LuceneQueryBuilder:
    """Field-qualified query with an escaped free-text fallback.

    CPE identifiers win when present; otherwise the exact name/version pair is
    OR-ed with an unquoted ``name version`` term.
    """

    def build(self, component: Component) -> str:
        if component.cpe:
            return f"affectedSoftware.cpe:{_quote(component.cpe)}"
        if component.name and component.version:
            return (
                f"affectedSoftware.name:{_quote(component.name)} AND "
                f"affectedSoftware.version:{_quote(component.version)} OR "
                f"{escape_lucene(component.name)} {escape_lucene(component.version)}"
            )
        return ""


class PlainQueryBuilder:
    """``name version`` text query, used for substring search in the local cache."""

    def build(self, component: Component) -> str:
        if component.name and component.version:
            return f"{component.name} {component.version}"
        return ""
