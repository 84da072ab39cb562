"""Resolve user-typed issue tokens to internal ids, and format ids for display.

Accepted forms, tried in order after lowercasing:

1. an internal id (``is-01j5...``) with a live mapping entry;
2. a display id (``proj-a7k2``) or bare code (``a7k2``) matching a live entry;
3. a unique prefix of a live code (``proj-a7``).

The debug form ``proj-a7k2 (is-01j5...)`` printed by ``--debug`` is accepted
as well. Exact matches always win over prefix matches.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from tbd.errors import AmbiguousIdError, UnresolvedIdError
from tbd.ids import is_internal_id
from tbd.mapping import Mapping

DEBUG_FORM_RE = re.compile(r"^(?P<display>\S+)\s+\((?P<internal>[^)]+)\)$")


@dataclass
class Resolution:
    token: str
    internal_id: str | None = None
    candidates: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.internal_id is not None

    @property
    def ambiguous(self) -> bool:
        return self.internal_id is None and len(self.candidates) > 1


def normalize(token: str) -> str:
    token = token.strip().lower()
    match = DEBUG_FORM_RE.match(token)
    if match:
        return match.group("internal").strip()
    return token


def strip_prefix(token: str) -> str:
    """``proj-a7k2`` -> ``a7k2``. Codes never contain ``-``."""
    return token.rsplit("-", 1)[-1]


def resolve(token: str, mapping: Mapping) -> Resolution:
    """Resolve *token* against the live entries of *mapping*. Never raises."""
    search = normalize(token)

    if is_internal_id(search):
        entry = mapping.entry_for(search)
        if entry is not None and entry.active:
            return Resolution(token, entry.internal_id)
        return Resolution(token)

    code = strip_prefix(search)
    if not code:
        return Resolution(token)

    entry = mapping.live_by_short.get(code)
    if entry is not None:
        return Resolution(token, entry.internal_id)

    matches = sorted(c for c in mapping.live_by_short if c.startswith(code))
    if len(matches) == 1:
        return Resolution(token, mapping.live_by_short[matches[0]].internal_id, matches)
    return Resolution(token, None, matches)


def resolve_to_internal_id(token: str, mapping: Mapping, prefix: str = "") -> str:
    """Like :func:`resolve`, but raise on failure."""
    resolution = resolve(token, mapping)
    if resolution.found:
        return resolution.internal_id  # type: ignore[return-value]
    if resolution.ambiguous:
        shown = [f"{prefix}-{code}" if prefix else code for code in resolution.candidates]
        raise AmbiguousIdError(token, shown)
    raise UnresolvedIdError(token)


def format_display_id(internal_id: str, mapping: Mapping, prefix: str) -> str:
    entry = mapping.entry_for(internal_id)
    if entry is None:
        raise UnresolvedIdError(internal_id)
    return f"{prefix}-{entry.short_id}"


def format_debug_id(internal_id: str, mapping: Mapping, prefix: str) -> str:
    return f"{format_display_id(internal_id, mapping, prefix)} ({internal_id})"
