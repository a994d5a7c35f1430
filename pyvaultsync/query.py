"""Composable search queries for the remote drive.

A query is a list of :class:`QueryMatch` clauses. Conditions inside one clause
are joined with ``and``; clauses are joined with ``or``. Every query is
additionally scoped to non-trashed objects of the current vault.

Examples:
    >>> build_query([QueryMatch(name="a.md"), QueryMatch(name=Contains("b"))])
    "((name='a.md') or (name contains 'b')) and trashed=false"
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Union


@dataclass(frozen=True)
class Contains:
    value: str


@dataclass(frozen=True)
class Not:
    value: str


StringSearch = Union[str, Contains, Not]


@dataclass(frozen=True)
class DateComparison:
    """Compare ``modifiedTime`` against an RFC 3339 timestamp."""

    op: Literal["eq", "gt", "lt"]
    value: str


@dataclass
class QueryMatch:
    """One ``and``-joined clause of a query."""

    id: Optional[str] = None
    name: Union[StringSearch, list[StringSearch], None] = None
    mime_type: Union[StringSearch, list[StringSearch], None] = None
    parent: Optional[str] = None
    starred: Optional[bool] = None
    query: Optional[str] = None
    """Full-text search"""
    properties: dict[str, StringSearch] = field(default_factory=dict)
    modified_time: Optional[DateComparison] = None


def escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _string_search(search: StringSearch) -> str:
    if isinstance(search, Contains):
        return f" contains '{escape(search.value)}'"
    if isinstance(search, Not):
        return f"!='{escape(search.value)}'"
    return f"='{escape(search)}'"


def _as_list(value: Union[StringSearch, list[StringSearch]]) -> list[StringSearch]:
    return value if isinstance(value, list) else [value]


_DATE_OPERATORS = {"eq": "=", "gt": ">", "lt": "<"}


def _clause_terms(match: QueryMatch) -> list[str]:
    terms: list[str] = []
    if match.id is not None:
        terms.append(f"id='{escape(match.id)}'")
    if match.name is not None:
        terms.extend("name" + _string_search(s) for s in _as_list(match.name))
    if match.mime_type is not None:
        terms.extend(
            "mimeType" + _string_search(s) for s in _as_list(match.mime_type)
        )
    if match.parent is not None:
        terms.append(f"'{escape(match.parent)}' in parents")
    if match.starred is not None:
        terms.append(f"starred={'true' if match.starred else 'false'}")
    if match.query is not None:
        terms.append(f"fullText contains '{escape(match.query)}'")
    for key, value in match.properties.items():
        terms.append(
            f"properties has {{ key='{escape(key)}' and value{_string_search(value)} }}"
        )
    if match.modified_time is not None:
        op = _DATE_OPERATORS[match.modified_time.op]
        terms.append(f"modifiedTime{op}'{escape(match.modified_time.value)}'")
    return terms


def build_query(
    matches: Optional[list[QueryMatch]] = None,
    vault_name: Optional[str] = None,
) -> str:
    """Build the ``q`` parameter for files.list.

    Args:
        matches: Clauses joined with ``or``; None matches everything
        vault_name: Restrict results to objects tagged with this vault

    Returns:
        Query string (not URL encoded)
    """
    parts: list[str] = []
    if matches:
        clauses = [f"({' and '.join(_clause_terms(m))})" for m in matches]
        parts.append(f"({' or '.join(clauses)})")
    parts.append("trashed=false")
    if vault_name:
        parts.append(
            f"properties has {{ key='vault' and value='{escape(vault_name)}' }}"
        )
    return " and ".join(parts)


def has_full_text(matches: Optional[list[QueryMatch]]) -> bool:
    """Full-text queries cannot be combined with ``orderBy``."""
    return any(m.query for m in matches or [])
