"""Publish every completed show cycle of an App to Redis and live monitors.

Writes never run on the frame path: inside an event loop each record is
appended from a worker thread, in completion order, and then broadcast.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import redis

from psyscene.streams import TelemetryStream, publish_timing, timing_fields
from psyscene.websocket_hub import TelemetryHub

if TYPE_CHECKING:
    from psyscene.app import App, SceneTimingRecord

logger = logging.getLogger(__name__)


class TelemetryPublisher:
    def __init__(self, *, r: redis.Redis, session_id: str, hub: TelemetryHub | None = None) -> None:
        self.r = r
        self.stream = TelemetryStream(session_id=session_id)
        self.hub = hub
        self.published = 0
        self._tasks: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    def __call__(self, record: SceneTimingRecord) -> None:
        fields = timing_fields(scene=record.scene, index=record.index, timing=record.timing)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write(record.scene, fields)
            return
        task = loop.create_task(self._publish(record.scene, fields))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every record handed over so far is written and broadcast."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _publish(self, scene: str, fields: dict[str, str]) -> None:
        async with self._lock:
            stream_id = await asyncio.to_thread(self._write, scene, fields)
        if stream_id is not None and self.hub is not None:
            await self.hub.broadcast(self.stream.session_id, {"type": "scene_timing", "id": stream_id, **fields})

    def _write(self, scene: str, fields: dict[str, str]) -> str | None:
        try:
            stream_id = publish_timing(r=self.r, stream=self.stream, fields=fields)
        except redis.RedisError as e:
            # Telemetry is best-effort.
            logger.warning("could not publish timing of scene %r to %s: %s", scene, self.stream.key, e)
            return None
        self.published += 1
        return stream_id


def attach_telemetry(app: App, *, r: redis.Redis, session_id: str, hub: TelemetryHub | None = None) -> TelemetryPublisher:
    """Forward the App's `scene:timing` records until the App is disposed."""

    publisher = TelemetryPublisher(r=r, session_id=session_id, hub=hub)
    app.add_cleanup(app.on("scene:timing", publisher))
    logger.info("publishing scene timings to %s", publisher.stream.key)
    return publisher
