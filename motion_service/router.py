"""
BLOOMFIT Motion Service Router

Endpoints for live posture scoring and repetition counting.
Landmarks come from the client (browser-side MediaPipe), from server-side
MediaPipe on uploaded camera frames, or from the synthetic generator.
"""

import asyncio
import json
import logging
from typing import List, Optional

import cv2
import numpy as np
from fastapi import APIRouter, HTTPException, WebSocket
from pydantic import BaseModel, ValidationError

from core.config import settings
from core.timers import AsyncioScheduler
from core.websocket import MessageOutbox, MessageType, WebSocketMessage
from shared.utils import success_response

from .models import (
    LandmarkFrame,
    LandmarkSource,
    LandmarkSourceUnavailable,
    TooManySessions,
    TrackingSession,
    create_landmark_source,
    get_session_manager,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# "server" uses the configured LANDMARK_SOURCE (auto, mediapipe or synthetic)
STREAM_SOURCES = ("client", "server", "mediapipe", "synthetic")


# ============= Pydantic Models =============

class LandmarkPoint(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None


class LandmarksPayload(BaseModel):
    landmarks: List[Optional[LandmarkPoint]]
    timestamp: Optional[float] = None


# ============= REST Endpoints =============

@router.get("/sessions")
async def list_sessions():
    """List tracking sessions currently registered."""
    manager = get_session_manager()
    sessions = manager.list_sessions()
    return success_response({"sessions": sessions, "total": len(sessions)})


@router.get("/sessions/{session_id}")
async def get_session_status(session_id: str):
    """Get the live status of one tracking session."""
    session = get_session_manager().get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return success_response(session.to_dict())


@router.post("/sessions/{session_id}/stop")
async def stop_session(session_id: str):
    """Stop a tracking session and return its summary."""
    manager = get_session_manager()
    if not manager.get_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")

    summary = manager.stop_session(session_id)
    return success_response(summary.to_dict() if summary else None, message="Session stopped")


# ============= WebSocket Endpoints =============

@router.websocket("/ws/track/{user_id}")
async def track_stream(websocket: WebSocket, user_id: str, source: str = "client"):
    """
    Live tracking stream.

    Client messages:
    - {"type": "landmarks", "payload": {"landmarks": [...], "timestamp": 1.2}}  (source=client)
    - binary JPEG/PNG camera frames                                            (source=mediapipe)

    source=server picks the detector from settings.LANDMARK_SOURCE.
    - {"type": "ping"} / {"type": "stop"}

    Server messages: session_started, posture_update, rep_count,
    session_stopped, pong, error.
    """
    await websocket.accept()

    if source not in STREAM_SOURCES:
        await websocket.send_text(WebSocketMessage(
            type=MessageType.ERROR,
            payload={"message": f"Invalid source. Valid sources: {list(STREAM_SOURCES)}"}
        ).to_json())
        await websocket.close(code=1008)
        return

    detector: Optional[LandmarkSource] = None
    if source != "client":
        try:
            detector = create_landmark_source(None if source == "server" else source)
        except (LandmarkSourceUnavailable, ValueError) as e:
            await websocket.send_text(WebSocketMessage(
                type=MessageType.ERROR, payload={"message": str(e)}
            ).to_json())
            await websocket.close(code=1011)
            return

    outbox = MessageOutbox(websocket)
    manager = get_session_manager()
    scheduler = AsyncioScheduler()

    try:
        session = manager.create_session(
            user_id=user_id,
            scheduler=scheduler,
            on_posture_update=lambda score: outbox.put(WebSocketMessage(
                type=MessageType.POSTURE_UPDATE, payload={"score": score}
            )),
            on_rep_count=lambda count: outbox.put(WebSocketMessage(
                type=MessageType.REP_COUNT, payload={"count": count}
            )),
            source=detector.name() if detector else source,
        )
    except TooManySessions as e:
        await websocket.send_text(WebSocketMessage(
            type=MessageType.ERROR, payload={"message": str(e)}
        ).to_json())
        await websocket.close(code=1013)
        if detector:
            detector.close()
        return

    outbox.start()
    outbox.put(WebSocketMessage(
        type=MessageType.SESSION_STARTED,
        payload={"session_id": session.session_id, "user_id": user_id, "source": session.source}
    ))

    pump_task: Optional[asyncio.Task] = None
    if detector is not None and detector.name() == "synthetic":
        pump_task = asyncio.create_task(_pump_source(session, detector, scheduler, settings.SYNTHETIC_FPS))

    disconnected = False
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                disconnected = True
                break

            if message.get("bytes") is not None:
                _handle_image_bytes(session, detector, scheduler, message["bytes"], outbox)
                continue

            if message.get("text") is not None and not _handle_text(session, scheduler, message["text"], outbox):
                break

    finally:
        if pump_task:
            pump_task.cancel()
            try:
                await pump_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Landmark pump for session {session.session_id} failed: {type(e).__name__}: {e}")

        summary = manager.stop_session(session.session_id) or session.stop()
        if detector:
            detector.close()

        if not disconnected:
            outbox.put(WebSocketMessage(
                type=MessageType.SESSION_STOPPED,
                payload=summary.to_dict() if summary else None
            ))
        await outbox.close()

        if not disconnected:
            await websocket.close()
        logger.info(f"Tracking stream for {user_id} closed (session {session.session_id})")


# ============= Helper Functions =============

def _handle_text(session: TrackingSession, scheduler: AsyncioScheduler, text: str, outbox: MessageOutbox) -> bool:
    """Handle one JSON client message. Returns False when the client asked to stop."""
    try:
        message = WebSocketMessage.from_json(text)
    except (json.JSONDecodeError, ValueError) as e:
        outbox.put(WebSocketMessage(type=MessageType.ERROR, payload={"message": f"Invalid message: {e}"}))
        return True

    if message.type == MessageType.STOP.value:
        return False

    if message.type == MessageType.PING.value:
        outbox.put(WebSocketMessage(type=MessageType.PONG))
        return True

    if message.type == MessageType.LANDMARKS.value:
        if session.source != "client":
            outbox.put(WebSocketMessage(
                type=MessageType.ERROR,
                payload={"message": f"Landmark messages are not accepted for source '{session.source}'"}
            ))
            return True
        try:
            payload = LandmarksPayload.model_validate(message.payload or {})
        except ValidationError as e:
            outbox.put(WebSocketMessage(
                type=MessageType.ERROR,
                payload={"message": "Invalid landmarks payload", "details": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]}
            ))
            return True

        timestamp = payload.timestamp if payload.timestamp is not None else scheduler.now()
        frame = LandmarkFrame.from_sequence(
            [p.model_dump() if p else None for p in payload.landmarks],
            timestamp=timestamp,
            source="client",
        )
        session.process_frame(frame)
        return True

    outbox.put(WebSocketMessage(type=MessageType.ERROR, payload={"message": f"Unknown message type: {message.type}"}))
    return True


def _handle_image_bytes(
    session: TrackingSession,
    detector: Optional[LandmarkSource],
    scheduler: AsyncioScheduler,
    data: bytes,
    outbox: MessageOutbox,
) -> None:
    """Decode a camera frame and run it through the server-side detector."""
    if detector is None or session.source != "mediapipe":
        outbox.put(WebSocketMessage(
            type=MessageType.ERROR,
            payload={"message": f"Image frames are not accepted for source '{session.source}'"}
        ))
        return

    nparr = np.frombuffer(data, np.uint8)
    frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if frame is None:
        outbox.put(WebSocketMessage(type=MessageType.ERROR, payload={"message": "Invalid frame data"}))
        return

    rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    session.process_frame(detector.detect(rgb_frame, scheduler.now()))


async def _pump_source(
    session: TrackingSession,
    source: LandmarkSource,
    scheduler: AsyncioScheduler,
    fps: int,
) -> None:
    """Feed a self-driven landmark source into the session at a fixed rate."""
    interval = 1.0 / max(1, fps)
    while session.is_active:
        session.process_frame(source.detect(None, scheduler.now()))
        await asyncio.sleep(interval)
