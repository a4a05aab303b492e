from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
import redis

from psyscene.api.deps import get_redis
from psyscene.api.models import TimingEntry, TimingListResponse
from psyscene.streams import TelemetryStream, read_timings
from psyscene.websocket_hub import hub

router = APIRouter()


@router.websocket("/ws/session/{session_id}")
async def session_timings_ws(websocket: WebSocket, session_id: str) -> None:
    await hub.connect(session_id, websocket)

    try:
        # Keep the socket open; monitors may send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(session_id, websocket)
    except Exception:
        await hub.disconnect(session_id, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/sessions/{session_id}/timings", response_model=TimingListResponse)
async def get_session_timings_route(
    session_id: str,
    count: int = 100,
    r: redis.Redis = Depends(get_redis),
) -> TimingListResponse:
    """Most recent show-cycle timings published for a session, oldest first."""

    if count < 1 or count > 1000:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 1000")

    stream = TelemetryStream(session_id=session_id)
    try:
        entries = read_timings(r=r, stream=stream, count=count)
    except redis.RedisError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e

    timings = [TimingEntry.from_stream(mid, fields) for mid, fields in entries]
    return TimingListResponse(
        session_id=session_id,
        stream=stream.key,
        timings=timings,
        missed=sum(1 for t in timings if t.missed),
    )
