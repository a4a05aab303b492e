from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from psyscene.collector import CSVStringifier, DataCollector, JSONStringifier, SaveEvent


def test_csv_quotes_only_when_needed() -> None:
    assert CSVStringifier.normalize("plain") == "plain"
    assert CSVStringifier.normalize("a,b") == '"a,b"'
    assert CSVStringifier.normalize('say "hi"') == '"say ""hi"""'
    assert CSVStringifier.normalize("two\nlines") == '"two\nlines"'
    assert CSVStringifier.normalize(None) == ""
    assert CSVStringifier.normalize(1.5) == "1.5"


def test_csv_rows_escape_every_field() -> None:
    s = CSVStringifier()

    chunk = s.transform({"rt": 412.5, "key": None, "note": 'said "ok", then left'})

    assert chunk == 'rt,key,note\n412.5,,"said ""ok"", then left"'
    assert CSVStringifier.line(["a", None, 'x"y']) == 'a,,"x""y"'


def test_csv_header_comes_from_the_first_row(tmp_path: Path) -> None:
    c = DataCollector("out.csv", directory=tmp_path)

    first = c.add({"stim": "A", "rt": 100})
    second = c.add({"rt": 200, "stim": "B, C", "extra": 1})
    path = c.save()

    assert first == "stim,rt\nA,100"
    assert second == '\n"B, C",200'
    assert path == tmp_path / "out.csv"
    assert path.read_text(encoding="utf-8") == 'stim,rt\nA,100\n"B, C",200'


def test_json_collector(tmp_path: Path) -> None:
    c = DataCollector("out.json", directory=tmp_path)
    assert isinstance(c.stringifier, JSONStringifier)

    c.add({"trial": 1, "resp": "f"})
    c.add({"trial": 2, "resp": None})
    c.save()

    assert json.loads((tmp_path / "out.json").read_text(encoding="utf-8")) == [
        {"trial": 1, "resp": "f"},
        {"trial": 2, "resp": None},
    ]


def test_unknown_extension_falls_back_to_csv(caplog: pytest.LogCaptureFixture, tmp_path: Path) -> None:
    with caplog.at_level(logging.WARNING, logger="psyscene.collector"):
        c = DataCollector("out.xlsx", directory=tmp_path)

    assert isinstance(c.stringifier, CSVStringifier)
    assert "unsupported file extension" in caplog.text


def test_rows_must_hold_primitives(tmp_path: Path) -> None:
    c = DataCollector("out.csv", directory=tmp_path)

    with pytest.raises(TypeError):
        c.add({"stim": ["A", "B"]})
    assert c.rows == []


def test_save_runs_once(caplog: pytest.LogCaptureFixture, tmp_path: Path) -> None:
    c = DataCollector("out.csv", directory=tmp_path)
    c.add({"a": 1})

    assert c.save() is not None
    with caplog.at_level(logging.WARNING, logger="psyscene.collector"):
        assert c.save() is None

    assert c.saved
    assert "repeated save" in caplog.text


def test_save_can_be_prevented(tmp_path: Path) -> None:
    c = DataCollector("out.csv", directory=tmp_path)
    events: list[SaveEvent] = []

    def upload_instead(event: SaveEvent) -> None:
        events.append(event)
        event.prevent_default()

    c.on("save", upload_instead)
    c.add({"a": 1})

    assert c.save() is None
    assert events[0].prevented
    assert not (tmp_path / "out.csv").exists()


def test_empty_collector_writes_nothing(tmp_path: Path) -> None:
    with DataCollector("empty.csv", directory=tmp_path) as c:
        pass

    assert c.saved
    assert not (tmp_path / "empty.csv").exists()


def test_add_event_carries_the_row(tmp_path: Path) -> None:
    c = DataCollector("out.csv", directory=tmp_path, extra_fields={"session": "s1"})
    rows: list[dict] = []
    c.on("add", lambda event: rows.append(event.row))

    c.add({"a": 1})

    assert rows == [{"a": 1, "session": "s1"}]
