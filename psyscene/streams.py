from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence, cast

import redis

from psyscene.core.scheduler import ShowTiming

# Fields written for every cycle; None values are stored as "".
TIMING_FIELDS = ("scene", "index", "requested_ms", "onset", "offset", "duration", "frames", "missed", "forced")


@dataclass(frozen=True, slots=True)
class TelemetryStream:
    session_id: str

    @property
    def key(self) -> str:
        return f"telemetry:{self.session_id}"


def _encode(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def timing_fields(*, scene: str, index: int, timing: ShowTiming) -> dict[str, str]:
    values: dict[str, object] = {
        "scene": scene,
        "index": index,
        "requested_ms": timing.requested_ms,
        "onset": timing.onset,
        "offset": timing.offset,
        "duration": timing.duration,
        "frames": timing.frames,
        "missed": timing.missed,
        "forced": timing.forced,
    }
    return {k: _encode(values[k]) for k in TIMING_FIELDS}


def publish_timing(*, r: redis.Redis, stream: TelemetryStream, fields: Mapping[str, str]) -> str:
    """Append one cycle's timing to the session's telemetry stream."""

    stream_id = r.xadd(stream.key, {str(k): str(v) for k, v in fields.items()})
    return cast(str, stream_id)


def publish_many(*, r: redis.Redis, entries: Sequence[tuple[str, Mapping[str, str]]]) -> list[str]:
    ids: list[str] = []
    for key, fields in entries:
        stream_id = r.xadd(key, {str(k): str(v) for k, v in fields.items()})
        ids.append(cast(str, stream_id))
    return ids


def read_timings(*, r: redis.Redis, stream: TelemetryStream, count: int = 100) -> list[tuple[str, dict[str, str]]]:
    """Most recent `count` entries, oldest first."""

    entries = r.xrevrange(stream.key, count=count)
    return [(cast(str, mid), dict(fields)) for mid, fields in reversed(entries)]
