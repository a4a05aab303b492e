from __future__ import annotations

import threading

import fakeredis
import pytest

from psyscene.app import App, SceneTimingRecord
from psyscene.core.frames import VirtualFrameClock
from psyscene.core.scheduler import ShowTiming
from psyscene.telemetry import attach_telemetry
from psyscene.websocket_hub import TelemetryHub


class GatedRedis(fakeredis.FakeRedis):
    """Redis whose writes block until the gate opens, like a slow round trip."""

    gate: threading.Event

    def xadd(self, *args, **kwargs):
        self.gate.wait(timeout=5)
        return super().xadd(*args, **kwargs)


class FakeWebSocket:
    def __init__(self, *, fail: bool = False) -> None:
        self.accepted = False
        self.sent: list[dict] = []
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(payload)


@pytest.mark.asyncio
async def test_cycles_are_appended_to_the_session_stream(app: App, clock: VirtualFrameClock, fixation_setup) -> None:
    r = fakeredis.FakeRedis(decode_responses=True)
    publisher = attach_telemetry(app, r=r, session_id="s1")
    scene = app.scene(fixation_setup, duration=48, name="fix")

    await clock.drive(scene.show())
    await publisher.drain()

    entries = r.xrange("telemetry:s1")
    assert len(entries) == 1
    _, fields = entries[0]
    assert fields["scene"] == "fix"
    assert fields["index"] == "0"
    assert fields["requested_ms"] == "48.0"
    assert fields["onset"] == "16.0"
    assert fields["duration"] == "48.0"
    assert fields["frames"] == "3"
    assert fields["missed"] == "0"
    assert fields["forced"] == "0"
    assert publisher.published == 1


@pytest.mark.asyncio
async def test_telemetry_detaches_on_app_dispose(app: App, clock: VirtualFrameClock) -> None:
    r = fakeredis.FakeRedis(decode_responses=True)
    attach_telemetry(app, r=r, session_id="s1")
    assert app.listener_count("scene:timing") == 1

    app.dispose()

    assert app.listener_count("scene:timing") == 0


@pytest.mark.asyncio
async def test_redis_outage_does_not_stop_presentation(app: App, clock: VirtualFrameClock, fixation_setup) -> None:
    server = fakeredis.FakeServer()
    server.connected = False
    publisher = attach_telemetry(app, r=fakeredis.FakeRedis(server=server, decode_responses=True), session_id="s1")
    scene = app.scene(fixation_setup, duration=16)

    assert await clock.drive(scene.show()) == {"shown": "+"}
    await publisher.drain()
    assert publisher.published == 0


@pytest.mark.asyncio
async def test_cycles_are_broadcast_to_monitors(app: App, clock: VirtualFrameClock, fixation_setup) -> None:
    hub = TelemetryHub()
    ws = FakeWebSocket()
    await hub.connect("s1", ws)  # type: ignore[arg-type]
    publisher = attach_telemetry(app, r=fakeredis.FakeRedis(decode_responses=True), session_id="s1", hub=hub)
    scene = app.scene(fixation_setup, duration=32, name="fix")

    await clock.drive(scene.show())
    await publisher.drain()

    assert ws.accepted
    assert len(ws.sent) == 1
    assert ws.sent[0]["type"] == "scene_timing"
    assert ws.sent[0]["scene"] == "fix"
    assert ws.sent[0]["duration"] == "32.0"


@pytest.mark.asyncio
async def test_hub_drops_dead_sockets() -> None:
    hub = TelemetryHub()
    alive, dead = FakeWebSocket(), FakeWebSocket(fail=True)
    await hub.connect("s1", alive)  # type: ignore[arg-type]
    await hub.connect("s1", dead)  # type: ignore[arg-type]

    await hub.broadcast("s1", {"type": "ping"})

    assert alive.sent == [{"type": "ping"}]
    assert hub.connection_count("s1") == 1

    await hub.disconnect("s1", alive)  # type: ignore[arg-type]
    assert hub.connection_count("s1") == 0


@pytest.mark.asyncio
async def test_slow_redis_does_not_hold_up_presentation(app: App, clock: VirtualFrameClock, fixation_setup) -> None:
    r = GatedRedis(decode_responses=True)
    r.gate = threading.Event()
    publisher = attach_telemetry(app, r=r, session_id="s1")
    first = app.scene(fixation_setup, duration=48, name="first")
    second = app.scene(fixation_setup, duration=48, name="second")

    await clock.drive(first.show())
    await clock.drive(second.show())

    assert first.timing is not None and second.timing is not None
    assert second.timing.onset - first.timing.offset == 16.0
    assert publisher.published == 0

    r.gate.set()
    await publisher.drain()

    assert publisher.published == 2
    assert publisher.pending == 0
    assert [fields["scene"] for _, fields in r.xrange("telemetry:s1")] == ["first", "second"]


def test_records_are_written_directly_without_a_loop(app: App) -> None:
    r = fakeredis.FakeRedis(decode_responses=True)
    publisher = attach_telemetry(app, r=r, session_id="s2")

    app.emit("scene:timing", SceneTimingRecord(scene="fix", index=0, timing=ShowTiming(requested_ms=16.0, frame_ms=16.0)))

    assert publisher.published == 1
    assert r.xlen("telemetry:s2") == 1
