"""Persistent internal-id <-> display-code mapping.

Stored at ``<sync>/mappings/ids.yml``::

    next_sequence: 3
    entries:
    - internal_id: is-01j5...
      short_id: a7k2
      sequence: 0
      active: true

Entries are append-only. Retiring an entry marks it inactive but keeps it, so
its code is never handed out again and ``next_sequence`` never rewinds.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from tbd.errors import CorruptMappingError, TbdError
from tbd.ids import derive_short_id, is_internal_id
from tbd.paths import atomic_write_text, flock, ids_path, lock_path_for

logger = logging.getLogger(__name__)

SHORT_ID_RE = re.compile(r"^[0-9a-z]+$")
MAX_SEQUENCE_SKIPS = 1000

Loader = getattr(yaml, "CSafeLoader", yaml.SafeLoader)
Dumper = getattr(yaml, "CSafeDumper", yaml.SafeDumper)


@dataclass
class IdMappingEntry:
    internal_id: str
    short_id: str
    sequence: int
    active: bool = True


@dataclass
class Mapping:
    path: Path
    entries: list[IdMappingEntry] = field(default_factory=list)
    next_sequence: int = 0
    by_internal: dict[str, IdMappingEntry] = field(default_factory=dict, repr=False)
    live_by_short: dict[str, IdMappingEntry] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.reindex()

    def reindex(self) -> None:
        self.by_internal = {e.internal_id: e for e in self.entries}
        self.live_by_short = {e.short_id: e for e in self.entries if e.active}

    def replace_with(self, other: Mapping) -> None:
        self.entries = other.entries
        self.next_sequence = other.next_sequence
        self.reindex()

    def live_entries(self) -> list[IdMappingEntry]:
        return [e for e in self.entries if e.active]

    def entry_for(self, internal_id: str) -> IdMappingEntry | None:
        return self.by_internal.get(internal_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "next_sequence": self.next_sequence,
            "entries": [asdict(e) for e in self.entries],
        }


def parse_entry(raw: object, path: Path, index: int) -> IdMappingEntry:
    if not isinstance(raw, dict):
        raise CorruptMappingError(path, f"entry {index} is not a mapping")
    internal_id = raw.get("internal_id")
    short_id = raw.get("short_id")
    sequence = raw.get("sequence")
    active = raw.get("active", True)
    if not isinstance(internal_id, str) or not is_internal_id(internal_id):
        raise CorruptMappingError(path, f"entry {index} has invalid internal_id {internal_id!r}")
    if not isinstance(short_id, str) or not SHORT_ID_RE.match(short_id):
        raise CorruptMappingError(path, f"entry {index} has invalid short_id {short_id!r}")
    if not isinstance(sequence, int) or isinstance(sequence, bool) or sequence < 0:
        raise CorruptMappingError(path, f"entry {index} has invalid sequence {sequence!r}")
    if not isinstance(active, bool):
        raise CorruptMappingError(path, f"entry {index} has invalid active flag {active!r}")
    return IdMappingEntry(internal_id=internal_id, short_id=short_id, sequence=sequence, active=active)


def read_mapping_file(path: Path) -> Mapping:
    """Load the mapping at *path*. A missing file is an empty mapping."""
    if not path.exists():
        return Mapping(path=path)
    try:
        data = yaml.load(path.read_text(encoding="utf-8"), Loader=Loader)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise CorruptMappingError(path, str(exc)) from exc

    if data is None:
        return Mapping(path=path)
    if not isinstance(data, dict):
        raise CorruptMappingError(path, "top level is not a mapping")

    raw_entries = data.get("entries") or []
    if not isinstance(raw_entries, list):
        raise CorruptMappingError(path, "entries is not a list")
    entries = [parse_entry(raw, path, i) for i, raw in enumerate(raw_entries)]

    seen_internal: set[str] = set()
    seen_short: set[str] = set()
    for entry in entries:
        if entry.internal_id in seen_internal:
            raise CorruptMappingError(path, f"duplicate internal_id {entry.internal_id}")
        if entry.short_id in seen_short:
            raise CorruptMappingError(path, f"duplicate short_id {entry.short_id}")
        seen_internal.add(entry.internal_id)
        seen_short.add(entry.short_id)

    next_sequence = data.get("next_sequence", 0)
    if not isinstance(next_sequence, int) or isinstance(next_sequence, bool) or next_sequence < 0:
        raise CorruptMappingError(path, f"invalid next_sequence {next_sequence!r}")
    high_water = max((e.sequence + 1 for e in entries), default=0)

    return Mapping(path=path, entries=entries, next_sequence=max(next_sequence, high_water))


def load_mapping(sync_dir: Path) -> Mapping:
    return read_mapping_file(ids_path(sync_dir))


def write_mapping_file(mapping: Mapping) -> None:
    content = yaml.dump(mapping.to_dict(), Dumper=Dumper, sort_keys=False, default_flow_style=False)
    atomic_write_text(mapping.path, content)


def save_mapping(mapping: Mapping, sync_dir: Path | None = None) -> None:
    """Persist *mapping* in full, optionally relocating it under *sync_dir*."""
    if sync_dir is not None:
        mapping.path = ids_path(sync_dir)
    with flock(lock_path_for(mapping.path)):
        write_mapping_file(mapping)


def next_free_code(mapping: Mapping, prefix: str) -> tuple[str, int]:
    taken = {e.short_id for e in mapping.entries}
    sequence = mapping.next_sequence
    for _ in range(MAX_SEQUENCE_SKIPS):
        code = derive_short_id(prefix, sequence)
        if code not in taken:
            return code, sequence
        logger.debug("Sequence %d maps to taken code %s, skipping", sequence, code)
        sequence += 1
    raise TbdError(f"Could not find a free display id after {MAX_SEQUENCE_SKIPS} attempts")


def allocate(mapping: Mapping, internal_id: str, prefix: str) -> str:
    """Assign a display code to *internal_id* and persist it.

    Reloads the on-disk mapping under the lock, so concurrent allocators never
    share a sequence. Returns the existing code if *internal_id* is mapped.
    *mapping* is refreshed to the confirmed on-disk state.
    """
    with flock(lock_path_for(mapping.path)):
        current = read_mapping_file(mapping.path)
        existing = current.entry_for(internal_id)
        if existing is not None:
            mapping.replace_with(current)
            return existing.short_id

        code, sequence = next_free_code(current, prefix)
        entry = IdMappingEntry(internal_id=internal_id, short_id=code, sequence=sequence)
        current.entries.append(entry)
        current.next_sequence = sequence + 1
        write_mapping_file(current)

        confirmed = read_mapping_file(mapping.path)
        if confirmed.entry_for(internal_id) != entry:
            raise CorruptMappingError(mapping.path, f"allocation for {internal_id} was not persisted")

    mapping.replace_with(confirmed)
    logger.debug("Allocated %s -> %s (sequence %d)", internal_id, code, sequence)
    return code


def retire(mapping: Mapping, internal_id: str) -> bool:
    """Mark *internal_id*'s entry inactive. Returns False if it was not live."""
    with flock(lock_path_for(mapping.path)):
        current = read_mapping_file(mapping.path)
        entry = current.entry_for(internal_id)
        if entry is None or not entry.active:
            mapping.replace_with(current)
            return False
        entry.active = False
        write_mapping_file(current)
    mapping.replace_with(current)
    return True
