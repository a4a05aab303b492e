from __future__ import annotations

from collections.abc import Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from psyscene.api.deps import get_redis
from psyscene.core.scheduler import ShowTiming
from psyscene.main import app
from psyscene.streams import TelemetryStream, publish_timing, timing_fields


@pytest.fixture()
def client_and_redis() -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    r = fakeredis.FakeRedis(decode_responses=True)

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()


def _publish(r: fakeredis.FakeRedis, index: int, *, offset: float, missed: bool = False) -> None:
    timing = ShowTiming(requested_ms=48, frame_ms=16.0, onset=16.0, offset=offset, deadline=64.0, missed=missed)
    publish_timing(r=r, stream=TelemetryStream(session_id="s1"), fields=timing_fields(scene="fix", index=index, timing=timing))


def test_healthcheck_and_info(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    assert client.get("/healthcheck").json() == {"status": "ok"}
    assert client.get("/info").json()["name"] == "psyscene"


def test_session_timings(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, r = client_and_redis
    _publish(r, 0, offset=64.0)
    _publish(r, 1, offset=96.0, missed=True)
    _publish(r, 2, offset=64.0)

    resp = client.get("/sessions/s1/timings", params={"count": 2})
    assert resp.status_code == 200
    body = resp.json()

    assert body["stream"] == "telemetry:s1"
    assert [t["index"] for t in body["timings"]] == [1, 2]
    assert body["timings"][0]["duration"] == 80.0
    assert body["timings"][0]["frames"] == 5
    assert body["timings"][0]["missed"] is True
    assert body["missed"] == 1


def test_unknown_session_has_no_timings(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    body = client.get("/sessions/nobody/timings").json()

    assert body["timings"] == []
    assert body["missed"] == 0


def test_count_is_bounded(client_and_redis: tuple[TestClient, fakeredis.FakeRedis]) -> None:
    client, _ = client_and_redis

    assert client.get("/sessions/s1/timings", params={"count": 0}).status_code == 422
