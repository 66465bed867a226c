"""
Health check, simulated clock and the decision change stream
"""
import asyncio
import json
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from clock import clock
from events import event_bus
from schemas import TimeSimulationRequest

router = APIRouter(tags=["system"])

HEARTBEAT_SECONDS = 15


@router.get("/health")
async def health():
    return {"status": "ok", "now": clock.now().isoformat()}


@router.get("/time-simulation")
async def get_time_simulation():
    return {"offset_days": clock.offset_days, "now": clock.now().isoformat()}


@router.post("/time-simulation")
async def set_time_simulation(req: TimeSimulationRequest):
    """Shift the engine's reference time; 0 returns to real time"""
    clock.set_offset(req.offset_days)
    return {"offset_days": clock.offset_days, "now": clock.now().isoformat()}


@router.get("/events")
async def stream_decision_changes():
    """
    SSE stream of committed decision changes.
    Clients refetch only the decision named in each event.
    """
    async def event_generator():
        subscription = event_bus.subscribe()
        try:
            while True:
                try:
                    event = await asyncio.wait_for(subscription.get(), timeout=HEARTBEAT_SECONDS)
                    yield f"event: decision_changed\ndata: {event.model_dump_json()}\n\n"
                except asyncio.TimeoutError:
                    heartbeat = {"type": "heartbeat", "timestamp": datetime.now(timezone.utc).isoformat()}
                    yield f"data: {json.dumps(heartbeat)}\n\n"
        finally:
            event_bus.unsubscribe(subscription)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"}
    )
