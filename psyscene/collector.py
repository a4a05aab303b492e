from __future__ import annotations

import csv
import io
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

from psyscene.core.events import EventEmitter

logger = logging.getLogger(__name__)

Primitive = str | int | float | bool | None
Row = Mapping[str, Primitive]


class DataStringifier(ABC):
    """Turns rows into text chunks; `value` accumulates everything produced so far."""

    def __init__(self) -> None:
        self.value = ""

    @abstractmethod
    def transform(self, row: Row) -> str: ...

    @abstractmethod
    def final(self) -> str: ...


class CSVStringifier(DataStringifier):
    """RFC 4180 CSV. The header is taken from the first row's keys."""

    def __init__(self) -> None:
        super().__init__()
        self.keys: list[str] = []

    @staticmethod
    def line(values: Sequence[Primitive]) -> str:
        """One CSV record without its line terminator (QUOTE_MINIMAL, `None` as an empty field)."""

        buf = io.StringIO()
        csv.writer(buf, lineterminator="\n").writerow(values)
        return buf.getvalue()[:-1]

    @classmethod
    def normalize(cls, value: Primitive) -> str:
        if value is None or value == "":
            return ""
        return cls.line([value])

    def transform(self, row: Row) -> str:
        chunk = ""
        if not self.keys:
            self.keys = list(row.keys())
            chunk = self.line(self.keys)
        chunk += "\n" + self.line([row.get(k) for k in self.keys])
        self.value += chunk
        return chunk

    def final(self) -> str:
        return ""


class JSONStringifier(DataStringifier):
    """A JSON array of row objects."""

    def transform(self, row: Row) -> str:
        chunk = ("[" if self.value == "" else ",") + json.dumps(dict(row), ensure_ascii=False)
        self.value += chunk
        return chunk

    def final(self) -> str:
        chunk = "[]" if self.value == "" else "]"
        self.value += chunk
        return chunk


@dataclass(slots=True)
class AddEvent:
    row: dict[str, Primitive]
    chunk: str


@dataclass(slots=True)
class SaveEvent:
    chunk: str
    prevented: bool = field(default=False)

    def prevent_default(self) -> None:
        self.prevented = True


class DataCollector(EventEmitter):
    """One-shot data collector: collect rows, stringify them, save once.

    Events:
      - `add` (`AddEvent`) after each row.
      - `save` (`SaveEvent`) before writing; call `prevent_default()` to skip the file write.

    The file format follows the filename extension; register more formats in
    `DataCollector.stringifiers`.
    """

    stringifiers: ClassVar[dict[str, type[DataStringifier]]] = {
        "csv": CSVStringifier,
        "json": JSONStringifier,
    }

    def __init__(
        self,
        filename: str | None = None,
        stringifier: DataStringifier | None = None,
        *,
        directory: Path | None = None,
        extra_fields: Mapping[str, Primitive] | None = None,
    ) -> None:
        super().__init__()
        self.extra_fields = dict(extra_fields or {})
        self.filename = filename or f"data-{int(time.time() * 1000)}.csv"
        self.directory = directory if directory is not None else Path.cwd()
        self.rows: list[dict[str, Primitive]] = []
        self._saved = False

        if stringifier is not None:
            self.stringifier = stringifier
            return

        ext = Path(self.filename).suffix.lstrip(".").casefold()
        if not ext:
            logger.warning("no file extension in %r, defaulting to csv", self.filename)
            ext = "csv"
        cls = self.stringifiers.get(ext)
        if cls is None:
            logger.warning(
                "unsupported file extension %r (known: %s), defaulting to csv",
                ext,
                ", ".join(sorted(self.stringifiers)),
            )
            cls = CSVStringifier
        self.stringifier = cls()

    def __enter__(self) -> "DataCollector":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.save()

    @property
    def path(self) -> Path:
        return self.directory / self.filename

    @property
    def saved(self) -> bool:
        return self._saved

    def add(self, row: Mapping[str, Any]) -> str:
        """Add a row of primitive values (str, int, float, bool, None)."""

        for key, value in row.items():
            if value is not None and not isinstance(value, (str, int, float, bool)):
                raise TypeError(f"row field {key!r} must be a primitive, got {type(value).__name__}; serialize it first")
        data = {**dict(row), **{k: v for k, v in self.extra_fields.items() if k not in row}}
        logger.info("data %s", data)
        self.rows.append(data)
        chunk = self.stringifier.transform(data)
        self.emit("add", AddEvent(row=data, chunk=chunk))
        return chunk

    def save(self) -> Path | None:
        """Finalize and write the file. Only the first call does anything."""

        if self._saved:
            logger.warning("repeated save of %s ignored", self.filename)
            return None
        self._saved = True

        event = SaveEvent(chunk=self.stringifier.final())
        self.emit("save", event)
        if event.prevented:
            return None
        return self.write()

    def write(self, suffix: str = "") -> Path | None:
        if not self.rows:
            return None
        path = self.directory / (self.filename + suffix)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.stringifier.value, encoding="utf-8")
        logger.info("wrote %d row(s) to %s", len(self.rows), path)
        return path
