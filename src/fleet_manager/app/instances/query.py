"""Filter, sort and cursor helpers for indexed instance listing.

Query syntax (whitespace-separated terms, all of which must hold)::

    +status:READY reservation.available_seats:>0 -metadata.mode:ranked

- ``path:value``   equality (``value`` may be double-quoted); compares the
  field's JSON text, so ``metadata.region:123`` matches ``123`` and ``"123"``.
  ``true`` / ``false`` compare as booleans.
- ``path:>n`` / ``path:>=n`` / ``path:<n`` / ``path:<=n``  numeric range
- leading ``+`` is accepted and ignored, leading ``-`` negates the term
- ``path`` is a dotted path into the instance document

Sort keys are field paths; a leading ``-`` sorts descending.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
import shlex
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from .errors import InvalidInputError

DEFAULT_SORT: tuple[str, ...] = ('player_count', '-create_time')

_MISSING = object()

_TERM_RE = re.compile(r'^(?P<path>[A-Za-z_][\w.]*):(?P<op>>=|<=|>|<)?(?P<value>.*)$')

_RANGE_OPS = frozenset({'>', '>=', '<', '<='})


@dataclass(frozen=True, slots=True)
class QueryTerm:
    path: str
    op: str
    value: Any
    negate: bool = False

    @property
    def segments(self) -> tuple[str, ...]:
        return tuple(self.path.split('.'))


def parse_query(query: str | None) -> list[QueryTerm]:
    """Parse a query string into terms.

    Raises ``InvalidInputError`` for terms that are not ``path:value``.
    """
    if not query or not query.strip():
        return []
    try:
        tokens = shlex.split(query)
    except ValueError as exc:
        raise InvalidInputError(f'malformed query: {exc}') from exc

    terms: list[QueryTerm] = []
    for token in tokens:
        negate = False
        if token[:1] in ('+', '-'):
            negate = token[0] == '-'
            token = token[1:]

        match = _TERM_RE.match(token)
        if match is None or not match.group('value'):
            raise InvalidInputError(f'malformed query term: {token!r}')

        op = match.group('op') or 'eq'
        raw = match.group('value')
        if op in _RANGE_OPS:
            try:
                value: Any = float(raw)
            except ValueError as exc:
                raise InvalidInputError(
                    f'range term {token!r} needs a numeric value'
                ) from exc
        else:
            value = _coerce_scalar(raw)
        terms.append(QueryTerm(path=match.group('path'), op=op, value=value, negate=negate))
    return terms


def _coerce_scalar(raw: str) -> Any:
    lowered = raw.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    return raw


def resolve_path(document: Mapping[str, Any], segments: Sequence[str]) -> Any:
    current: Any = document
    for segment in segments:
        if not isinstance(current, Mapping) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


def _term_holds(term: QueryTerm, document: Mapping[str, Any]) -> bool:
    actual = resolve_path(document, term.segments)
    if actual is _MISSING:
        return False

    if term.op == 'eq':
        if isinstance(actual, list):
            return term.value in actual
        if isinstance(actual, bool) or isinstance(term.value, bool):
            return actual is term.value
        if actual is None or isinstance(actual, (dict, list)):
            return False
        return _json_text(actual) == term.value

    if isinstance(actual, bool) or not isinstance(actual, (int, float)):
        return False
    if term.op == '>':
        return actual > term.value
    if term.op == '>=':
        return actual >= term.value
    if term.op == '<':
        return actual < term.value
    return actual <= term.value


def _json_text(value: Any) -> str:
    # Text a JSON scalar projects to (PostgreSQL ``->>``).
    if isinstance(value, str):
        return value
    return json.dumps(value)


def matches(terms: Sequence[QueryTerm], document: Mapping[str, Any]) -> bool:
    for term in terms:
        holds = _term_holds(term, document)
        if holds == term.negate:
            return False
    return True


def sort_documents(
    documents: Sequence[Mapping[str, Any]],
    sort: Sequence[str],
) -> list[Mapping[str, Any]]:
    """Stable multi-key sort; missing values sort last for either direction."""
    ordered = list(documents)
    for key in reversed(list(sort)):
        descending = key.startswith('-')
        segments = tuple(key.lstrip('-').split('.'))
        present = [d for d in ordered if resolve_path(d, segments) is not _MISSING]
        missing = [d for d in ordered if resolve_path(d, segments) is _MISSING]
        present.sort(
            key=lambda d: _sort_value(resolve_path(d, segments)),
            reverse=descending,
        )
        ordered = present + missing
    return ordered


def _sort_value(value: Any) -> Any:
    # ISO timestamps drop the fraction when it is zero, so compare parsed.
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).timestamp()
        except ValueError:
            return value
    return value


def encode_cursor(offset: int) -> str:
    payload = json.dumps({'offset': offset}, separators=(',', ':')).encode()
    return base64.urlsafe_b64encode(payload).decode().rstrip('=')


def decode_cursor(cursor: str | None) -> int:
    if not cursor:
        return 0
    padded = cursor + '=' * (-len(cursor) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(padded.encode()))
        offset = int(payload['offset'])
    except (binascii.Error, ValueError, KeyError, TypeError) as exc:
        raise InvalidInputError('invalid pagination cursor') from exc
    if offset < 0:
        raise InvalidInputError('invalid pagination cursor')
    return offset
