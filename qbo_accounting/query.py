"""Query compiler for the QuickBooks query language.

Turns a filter description into a ``select ... from <Entity>`` statement and
drives page-by-page fetching when every matching record is wanted.

Filters come in two shapes::

    {"DisplayName": "Acme", "Id": ["1", "2"]}
    [{"field": "Balance", "value": 0, "operator": ">"}, {"field": "limit", "value": 50}]

Control fields (``limit``, ``offset``, ``asc``, ``desc``, ``count``,
``fetchAll``) configure the statement and never become predicates.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional

from qbo_accounting.errors import InvalidQuery

DEFAULT_LIMIT = 1000
DEFAULT_OFFSET = 1

OPERATORS = ("=", "IN", "<", ">", "<=", ">=", "LIKE")

LIMIT = "limit"
OFFSET = "offset"
ASC = "asc"
DESC = "desc"
COUNT = "count"
FETCH_ALL = "fetchAll"

SORT_AND_PAGE_FIELDS = (ASC, DESC, LIMIT, OFFSET)
CONTROL_FIELDS = SORT_AND_PAGE_FIELDS + (COUNT, FETCH_ALL)

_ESCAPE_RE = re.compile(r"[\0\b\t\n\r\x1a\"'\\]")
_ESCAPES = {
    "\0": "\\0",
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\r": "\\r",
    "\x1a": "\\Z",
    '"': '\\"',
    "'": "\\'",
    "\\": "\\\\",
}

Dispatch = Callable[[str], Dict[str, Any]]


@dataclass
class FilterClause:
    field: str
    value: Any = None
    operator: str = "="


@dataclass
class CompiledQuery:
    text: str
    count: bool = False
    fetch_all: bool = False
    limit: Any = DEFAULT_LIMIT
    offset: Any = DEFAULT_OFFSET

    def __str__(self) -> str:
        return self.text


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def normalize_filters(filters: Any) -> List[FilterClause]:
    """Turn a mapping or a list of clause records into a fresh list of clauses.

    The input is deep-copied first, so nothing the caller passed in is ever
    modified by compilation or pagination.
    """
    if filters is None:
        return []
    if isinstance(filters, Mapping):
        return [
            FilterClause(field=key, value=value, operator="IN" if _is_sequence(value) else "=")
            for key, value in copy.deepcopy(dict(filters)).items()
        ]
    if not _is_sequence(filters):
        raise InvalidQuery(f"Invalid query: expected a mapping or a list of clauses, got {type(filters).__name__}")

    clauses: List[FilterClause] = []
    for item in copy.deepcopy(list(filters)):
        if isinstance(item, FilterClause):
            clauses.append(FilterClause(item.field, item.value, item.operator or "="))
        elif isinstance(item, Mapping) and "field" in item:
            clauses.append(FilterClause(item["field"], item.get("value"), item.get("operator") or "="))
        else:
            raise InvalidQuery(f"Invalid query clause: {item!r}")
    return clauses


def _escape_string(text: str) -> str:
    return "'" + _ESCAPE_RE.sub(lambda match: _ESCAPES[match.group(0)], text) + "'"


def _format_number(value: Any) -> str:
    number = Decimal(repr(value)) if isinstance(value, float) else value
    if not number.is_finite():
        raise InvalidQuery(f"Invalid number: {value!r}")
    # positional notation only, 1e20 -> 100000000000000000000
    return format(number, "f")


def escape_value(value: Any) -> str:
    """Render ``value`` as a query language literal.

    Strings are single-quoted with quotes, backslashes and control characters
    backslash-escaped; numbers and booleans are bare; sequences become a
    comma-joined list (nested sequences are parenthesized). NaN and infinity
    raise ``InvalidQuery``.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (float, Decimal)):
        return _format_number(value)
    if isinstance(value, (datetime, date)):
        return _escape_string(value.isoformat())
    if _is_sequence(value):
        return ", ".join(f"({escape_value(item)})" if _is_sequence(item) else escape_value(item) for item in value)
    return _escape_string(str(value))


def _find_clause(clauses: List[FilterClause], field: str) -> Optional[FilterClause]:
    for clause in reversed(clauses):
        if clause.field == field:
            return clause
    return None


def ensure_paging(clauses: List[FilterClause]) -> None:
    """Leave exactly one ``limit`` and one ``offset`` clause in ``clauses``.

    When a field is given more than once the last clause wins and the earlier
    ones are dropped; a missing field gets its default appended.
    """
    for name, default in ((LIMIT, DEFAULT_LIMIT), (OFFSET, DEFAULT_OFFSET)):
        last = _find_clause(clauses, name)
        if last is None:
            clauses.append(FilterClause(name, default))
        else:
            clauses[:] = [clause for clause in clauses if clause.field != name or clause is last]


def compile_query(entity: str, filters: Any) -> CompiledQuery:
    """Compile ``filters`` for ``entity`` into a query statement.

    Count mode (a ``count`` clause whose value is ``True``) selects
    ``count(*)`` and drops ordering and paging. The ``fetchAll`` flag is
    reported on the result for the pagination driver and is not part of the
    statement.
    """
    clauses = normalize_filters(filters)

    count = any(clause.field == COUNT and clause.value is True for clause in clauses)
    fetch_all = any(clause.field == FETCH_ALL and clause.value is True for clause in clauses)
    clauses = [clause for clause in clauses if clause.field not in (COUNT, FETCH_ALL)]
    ensure_paging(clauses)

    slots: Dict[str, Any] = {ASC: None, DESC: None, LIMIT: DEFAULT_LIMIT, OFFSET: DEFAULT_OFFSET}
    predicates: List[str] = []
    for clause in clauses:
        if clause.field in SORT_AND_PAGE_FIELDS:
            slots[clause.field] = clause.value
        elif _is_sequence(clause.value):
            predicates.append(f"{clause.field} {clause.operator} ({escape_value(clause.value)})")
        else:
            predicates.append(f"{clause.field} {clause.operator} {escape_value(clause.value)}")

    text = f"select {'count(*)' if count else '*'} from {entity}"
    if predicates:
        text += " where " + " and ".join(predicates)
    if not count:
        if slots[ASC]:
            text += f" orderby {slots[ASC]} asc"
        if slots[DESC]:
            text += f" orderby {slots[DESC]} desc"
        text += f" startposition {slots[OFFSET]} maxresults {slots[LIMIT]}"

    return CompiledQuery(text=text, count=count, fetch_all=fetch_all, limit=slots[LIMIT], offset=slots[OFFSET])


def _entity_key(query_response: Mapping[str, Any], entity: str) -> Optional[str]:
    for key in query_response:
        if key.lower() == entity.lower():
            return key
    return None


def _merge_page(merged: Dict[str, Any], page: Dict[str, Any], entity: str) -> None:
    target = merged.setdefault("QueryResponse", {})
    source = page.get("QueryResponse") or {}
    key = _entity_key(source, entity) or _entity_key(target, entity)
    if key is not None:
        target[key] = list(target.get(key) or []) + list(source.get(key) or [])
    target["maxResults"] = (target.get("maxResults") or 0) + (source.get("maxResults") or 0)
    merged["time"] = page.get("time") or merged.get("time")


def _as_int(field: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidQuery(f"Invalid {field}: {value!r}") from exc


def execute_query(
    dispatch: Dispatch,
    entity: str,
    filters: Any = None,
    *,
    max_pages: Optional[int] = None,
) -> Dict[str, Any]:
    """Run a query through ``dispatch`` and return the response envelope.

    With ``fetchAll`` set (and not in count mode) pages are requested one
    after another, advancing ``offset`` by ``limit``, for as long as each page
    comes back exactly full. Records are concatenated under the entity key,
    ``maxResults`` is summed and ``time`` is taken from the last page that
    carried one. ``max_pages`` bounds the number of requests; ``None`` means
    no bound. An error on any page propagates and discards what was fetched.
    """
    clauses = normalize_filters(filters)
    ensure_paging(clauses)
    offset_clause = _find_clause(clauses, OFFSET)

    merged: Optional[Dict[str, Any]] = None
    pages = 0
    while True:
        compiled = compile_query(entity, clauses)
        page = dispatch(compiled.text)
        pages += 1
        if merged is None:
            merged = page
        else:
            _merge_page(merged, page, entity)

        if not compiled.fetch_all or compiled.count:
            break
        query_response = page.get("QueryResponse") or {}
        key = _entity_key(query_response, entity)
        records = query_response.get(key) if key is not None else None
        limit = _as_int(LIMIT, compiled.limit)
        if not records or len(records) != limit:
            break
        if max_pages is not None and pages >= max_pages:
            break
        offset_clause.value = _as_int(OFFSET, compiled.offset) + limit

    return merged
