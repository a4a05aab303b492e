from __future__ import annotations

from pydantic import BaseModel


class TimingEntry(BaseModel):
    id: str
    scene: str
    index: int
    requested_ms: float | None = None
    onset: float | None = None
    offset: float | None = None
    duration: float | None = None
    frames: int | None = None
    missed: bool = False
    forced: bool = False

    @classmethod
    def from_stream(cls, stream_id: str, fields: dict[str, str]) -> "TimingEntry":
        # Empty strings in the stream stand for missing values.
        values = {k: v for k, v in fields.items() if v != ""}
        return cls.model_validate({"id": stream_id, **values})


class TimingListResponse(BaseModel):
    session_id: str
    stream: str
    timings: list[TimingEntry]
    missed: int
