"""Unit tests for :class:`~inferwatch.storage.buffer.BufferStore`."""

from __future__ import annotations

import csv
import io
import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from inferwatch.core.exceptions import BufferClearError
from inferwatch.core.models import BUFFER_COLUMNS, CallOutcome
from inferwatch.storage import buffer as buffer_module
from inferwatch.storage.buffer import HEADER_LINE, BufferStore

_FROZEN = datetime(2026, 10, 18, 9, 30, 0, tzinfo=UTC)


def _lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


def _rows(path: Path) -> list[list[str]]:
    return list(csv.reader(io.StringIO(path.read_text(encoding="utf-8"))))


@pytest.fixture()
def store(tmp_path: Path) -> BufferStore:
    return BufferStore(tmp_path / "buffer.csv")


class TestEnsureShape:
    def test_creates_header_only_file(self, store: BufferStore) -> None:
        store.ensure_shape()
        assert store.path.read_text(encoding="utf-8") == HEADER_LINE + "\n"
        assert HEADER_LINE == ",".join(BUFFER_COLUMNS)

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        nested = BufferStore(tmp_path / "a" / "b" / "buffer.csv")
        nested.ensure_shape()
        assert nested.path.exists()

    def test_is_idempotent(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        store.append([make_outcome()])
        before = store.path.read_bytes()
        store.ensure_shape()
        store.ensure_shape()
        assert store.path.read_bytes() == before

    def test_empty_file_gets_header(self, store: BufferStore) -> None:
        store.path.write_text("", encoding="utf-8")
        store.ensure_shape()
        assert _lines(store.path) == [HEADER_LINE]
        assert list(store.path.parent.glob("*.corrupt-*")) == []


class TestAppend:
    def test_empty_input_is_a_no_op(self, store: BufferStore) -> None:
        assert store.append([]) == 0
        assert not store.path.exists()

    def test_rows_follow_column_order(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        outcome = make_outcome()
        assert store.append([outcome]) == 1
        rows = _rows(store.path)
        assert rows[0] == list(BUFFER_COLUMNS)
        assert rows[1] == [str(v) for v in outcome.to_row()]

    def test_numeric_columns_unquoted_strings_quoted(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        store.append([make_outcome(duration_ms=800, response_status_code=-1)])
        line = _lines(store.path)[1]
        assert line.startswith('"2026-10-18T09:30:00.000Z",')
        assert ',800,-1,"' in line

    def test_embedded_quotes_commas_and_newlines_survive(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        body = 'line one, with "quotes"\nline two'
        store.append([make_outcome(response_body_raw=body)])
        rows = _rows(store.path)
        assert len(rows) == 2
        assert rows[1][BUFFER_COLUMNS.index("response_body_raw")] == body

    def test_appends_never_overwrite(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        store.append([make_outcome(model_id="m1")])
        store.append([make_outcome(model_id="m2"), make_outcome(model_id="m3")])
        rows = _rows(store.path)
        assert [r[1] for r in rows[1:]] == ["m1", "m2", "m3"]

    def test_corrupted_header_is_repaired_before_append(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        store.path.write_text("garbage,header\n1,2\n", encoding="utf-8")
        store.append([make_outcome()])

        lines = _lines(store.path)
        assert lines[0] == HEADER_LINE
        assert len(_rows(store.path)) == 2

        quarantined = list(store.path.parent.glob("buffer.csv.corrupt-*"))
        assert len(quarantined) == 1
        assert quarantined[0].read_text(encoding="utf-8") == "garbage,header\n1,2\n"

    def test_missing_header_is_repaired_before_append(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        headerless = BufferStore(store.path.parent / "other.csv")
        headerless.append([make_outcome()])
        data_only = _lines(headerless.path)[1] + "\n"
        store.path.write_text(data_only, encoding="utf-8")

        store.append([make_outcome(model_id="fresh")])
        rows = _rows(store.path)
        assert rows[0] == list(BUFFER_COLUMNS)
        assert [r[1] for r in rows[1:]] == ["fresh"]

    def test_quarantine_names_never_collide(
        self,
        store: BufferStore,
        make_outcome: Callable[..., CallOutcome],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(buffer_module, "utc_now", lambda: _FROZEN)
        store.path.write_text("first,garbage\n", encoding="utf-8")
        store.append([make_outcome()])
        store.path.write_text("second,garbage\n", encoding="utf-8")
        store.append([make_outcome()])

        quarantined = sorted(store.path.parent.glob("buffer.csv.corrupt-*"))
        assert len(quarantined) == 2
        assert {q.read_text(encoding="utf-8") for q in quarantined} == {
            "first,garbage\n",
            "second,garbage\n",
        }


class TestTornTail:
    """A crash mid-append must never glue the next row onto a fragment."""

    def _row_text(self, tmp_path: Path, outcome: CallOutcome) -> str:
        scratch = BufferStore(tmp_path / f"scratch-{outcome.model_id}.csv")
        scratch.append([outcome])
        return scratch.path.read_text(encoding="utf-8").split("\n", 1)[1]

    def test_unterminated_fragment_is_moved_aside(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        fragment = '"2026-10-18T09:30:00.000Z","org/a","tog'
        store.path.write_text(HEADER_LINE + "\n" + fragment, encoding="utf-8")

        store.append([make_outcome(model_id="fresh")])

        rows = _rows(store.path)
        assert [len(r) for r in rows] == [len(BUFFER_COLUMNS)] * 2
        assert rows[1][1] == "fresh"
        (torn,) = store.path.parent.glob("buffer.csv.torn-*")
        assert torn.read_text(encoding="utf-8") == fragment

    def test_open_quoted_field_ending_in_newline_is_torn(
        self,
        store: BufferStore,
        tmp_path: Path,
        make_outcome: Callable[..., CallOutcome],
    ) -> None:
        kept = self._row_text(tmp_path, make_outcome(model_id="kept"))
        broken = self._row_text(
            tmp_path, make_outcome(model_id="broken", response_body_raw="part one\npart two")
        )
        fragment = broken[: broken.index("part two")]
        assert fragment.endswith("\n")
        store.path.write_text(HEADER_LINE + "\n" + kept + fragment, encoding="utf-8")

        store.append([make_outcome(model_id="fresh")])

        assert [r[1] for r in _rows(store.path)[1:]] == ["kept", "fresh"]
        (torn,) = store.path.parent.glob("buffer.csv.torn-*")
        assert torn.read_text(encoding="utf-8") == fragment

    def test_header_without_terminator_is_completed(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        store.path.write_text(HEADER_LINE, encoding="utf-8")
        store.append([make_outcome()])

        assert len(_rows(store.path)) == 2
        assert _lines(store.path)[0] == HEADER_LINE
        assert list(store.path.parent.glob("buffer.csv.torn-*")) == []

    def test_malformed_middle_record_is_left_alone(
        self,
        store: BufferStore,
        tmp_path: Path,
        make_outcome: Callable[..., CallOutcome],
    ) -> None:
        content = HEADER_LINE + "\n" + '"odd"x,1\n' + self._row_text(tmp_path, make_outcome())
        store.path.write_text(content, encoding="utf-8")

        store.ensure_shape()

        assert store.path.read_text(encoding="utf-8") == content
        assert list(store.path.parent.glob("buffer.csv.torn-*")) == []

    def test_read_all_never_returns_a_fragment(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        store.append([make_outcome()])
        complete = store.path.read_text(encoding="utf-8")
        with open(store.path, "a", encoding="utf-8", newline="") as fh:
            fh.write('"2026-10-18T10:00:00.000Z","org/b"')

        assert store.read_all() == complete


class TestReadAll:
    def test_missing_file_is_empty(self, store: BufferStore) -> None:
        assert store.read_all() is None

    def test_corrupted_header_is_never_returned(self, store: BufferStore) -> None:
        store.path.write_text("garbage,header\n1,2\n", encoding="utf-8")

        assert store.read_all() is None
        assert _lines(store.path) == [HEADER_LINE]
        assert len(list(store.path.parent.glob("buffer.csv.corrupt-*"))) == 1

    def test_header_only_is_empty(self, store: BufferStore) -> None:
        store.ensure_shape()
        assert store.read_all() is None

    def test_returns_full_content(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        store.append([make_outcome()])
        assert store.read_all() == store.path.read_text(encoding="utf-8")

    def test_undecodable_file_is_empty(self, store: BufferStore) -> None:
        store.path.write_bytes(HEADER_LINE.encode() + b"\n\xff\xfe\xfa\n")
        assert store.read_all() is None


class TestClear:
    def test_resets_to_header_only(
        self, store: BufferStore, make_outcome: Callable[..., CallOutcome]
    ) -> None:
        store.append([make_outcome(), make_outcome()])
        store.clear()
        assert store.path.read_text(encoding="utf-8") == HEADER_LINE + "\n"
        assert store.read_all() is None
        assert not store.path.with_name("buffer.csv.tmp").exists()

    def test_failure_raises_buffer_clear_error(
        self,
        store: BufferStore,
        make_outcome: Callable[..., CallOutcome],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        store.append([make_outcome()])
        before = store.path.read_bytes()

        def _fail(src: object, dst: object) -> None:
            raise OSError("read-only file system")

        monkeypatch.setattr(os, "replace", _fail)
        with pytest.raises(BufferClearError, match="read-only"):
            store.clear()
        assert store.path.read_bytes() == before
