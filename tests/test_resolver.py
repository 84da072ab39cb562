from __future__ import annotations

from pathlib import Path

import pytest

from tbd.errors import AmbiguousIdError, UnresolvedIdError
from tbd.ids import generate_internal_id
from tbd.mapping import IdMappingEntry, Mapping, allocate, load_mapping
from tbd.resolver import format_debug_id, format_display_id, resolve, resolve_to_internal_id

A1 = "is-0000000000000000000000000a"
A12 = "is-000000000000000000000000ab"
B7 = "is-000000000000000000000000b7"


@pytest.fixture
def mapping(tmp_path: Path) -> Mapping:
    return Mapping(
        path=tmp_path / "ids.yml",
        entries=[
            IdMappingEntry(A1, "a1", 0),
            IdMappingEntry(A12, "a12", 1),
            IdMappingEntry(B7, "b7x9", 2),
        ],
        next_sequence=3,
    )


class TestResolve:
    def test_internal_id_resolves_to_itself(self, mapping: Mapping) -> None:
        assert resolve_to_internal_id(A12, mapping) == A12

    def test_display_id(self, mapping: Mapping) -> None:
        assert resolve_to_internal_id("proj-b7x9", mapping) == B7

    def test_bare_code(self, mapping: Mapping) -> None:
        assert resolve_to_internal_id("b7x9", mapping) == B7

    def test_case_insensitive(self, mapping: Mapping) -> None:
        assert resolve_to_internal_id("PROJ-B7X9", mapping) == B7
        assert resolve_to_internal_id(A1.upper(), mapping) == A1

    def test_debug_form(self, mapping: Mapping) -> None:
        assert resolve_to_internal_id(f"proj-b7x9 ({B7})", mapping) == B7

    def test_unique_prefix(self, mapping: Mapping) -> None:
        resolution = resolve("proj-b7", mapping)
        assert resolution.internal_id == B7
        assert resolution.candidates == ["b7x9"]

    def test_exact_match_beats_longer_code(self, mapping: Mapping) -> None:
        assert resolve_to_internal_id("proj-a1", mapping) == A1
        assert resolve_to_internal_id("proj-a12", mapping) == A12

    def test_ambiguous_prefix(self, mapping: Mapping) -> None:
        resolution = resolve("proj-a", mapping)
        assert resolution.ambiguous
        assert resolution.candidates == ["a1", "a12"]
        with pytest.raises(AmbiguousIdError) as exc_info:
            resolve_to_internal_id("proj-a", mapping, "proj")
        assert exc_info.value.candidates == ["proj-a1", "proj-a12"]

    def test_unresolved(self, mapping: Mapping) -> None:
        assert not resolve("zz-nonexistent", mapping).found
        with pytest.raises(UnresolvedIdError, match="Issue not found: zz-nonexistent"):
            resolve_to_internal_id("zz-nonexistent", mapping)

    def test_unknown_internal_id(self, mapping: Mapping) -> None:
        with pytest.raises(UnresolvedIdError):
            resolve_to_internal_id("is-000000000000000000000000zz", mapping)

    def test_empty_token(self, mapping: Mapping) -> None:
        assert not resolve("  ", mapping).found
        assert not resolve("proj-", mapping).found

    def test_retired_entries_do_not_resolve(self, mapping: Mapping) -> None:
        mapping.entries[2].active = False
        mapping.reindex()
        assert not resolve("proj-b7x9", mapping).found
        assert not resolve(B7, mapping).found


class TestFormat:
    def test_display(self, mapping: Mapping) -> None:
        assert format_display_id(B7, mapping, "proj") == "proj-b7x9"

    def test_debug(self, mapping: Mapping) -> None:
        assert format_debug_id(B7, mapping, "proj") == f"proj-b7x9 ({B7})"

    def test_unknown(self, mapping: Mapping) -> None:
        with pytest.raises(UnresolvedIdError):
            format_display_id("is-000000000000000000000000zz", mapping, "proj")


class TestWithAllocation:
    def test_display_ids_stay_stable(self, tmp_path: Path) -> None:
        mapping = load_mapping(tmp_path)
        first = generate_internal_id()
        allocate(mapping, first, "proj")
        display = format_display_id(first, mapping, "proj")

        for _ in range(20):
            allocate(mapping, generate_internal_id(), "proj")

        assert resolve_to_internal_id(display, load_mapping(tmp_path)) == first

    def test_every_display_id_round_trips(self, tmp_path: Path) -> None:
        mapping = load_mapping(tmp_path)
        ids = [generate_internal_id() for _ in range(3)]
        for internal_id in ids:
            allocate(mapping, internal_id, "proj")
        for internal_id in ids:
            assert resolve_to_internal_id(format_display_id(internal_id, mapping, "proj"), mapping) == internal_id
