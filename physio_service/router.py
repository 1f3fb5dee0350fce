"""
REHABTRACK Physio Service Router

Endpoints for real-time exercise monitoring: session lifecycle, per-frame
landmark ingestion and repetition feedback over REST and WebSocket.
Pose detection happens client-side; these endpoints only receive landmarks.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from core.config import settings
from shared.utils import error_response, handle_exceptions, success_response

from .models import (
    EXERCISE_CONFIGS,
    ExerciseSessionHandler,
    ExerciseType,
    FrameOrderError,
    Landmark,
    SessionCapacityError,
    SessionNotActiveError,
    SessionNotFoundError,
    Side,
    get_session_handler,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# Service instance (singleton pattern)
_session_handler: Optional[ExerciseSessionHandler] = None
_ws_connections = 0


def get_services() -> ExerciseSessionHandler:
    """Get or initialize the session handler."""
    global _session_handler
    if _session_handler is None:
        _session_handler = get_session_handler()
    return _session_handler


# ============= Pydantic Models =============

class LandmarkIn(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0


class StartSessionRequest(BaseModel):
    user_id: str
    exercise_type: str
    side: str = "left"
    target_reps: int = Field(10, ge=1)


class FrameRequest(BaseModel):
    # No numeric bounds here: a 422 echoing NaN cannot be rendered as JSON.
    # The session handler and detector range-check these values instead.
    landmarks: List[Optional[LandmarkIn]]
    timestamp_ms: float


# ============= Helpers =============

def _to_landmarks(frame: FrameRequest) -> List[Optional[Landmark]]:
    return [Landmark(**lm.model_dump()) if lm is not None else None for lm in frame.landmarks]


def _raise_http(error: Exception):
    """Translate session handler errors into HTTP errors."""
    if isinstance(error, SessionNotFoundError):
        raise HTTPException(status_code=404, detail="Session not found")
    if isinstance(error, (FrameOrderError, SessionNotActiveError)):
        raise HTTPException(status_code=409, detail=str(error))
    if isinstance(error, SessionCapacityError):
        raise HTTPException(status_code=503, detail=str(error))
    raise error


# ============= REST Endpoints =============

@router.get("/exercises")
async def get_exercises():
    """List the exercises with a repetition detector and their tuning."""
    return {
        "exercises": [
            {
                "exercise_type": cfg.exercise.value,
                "angle_source": cfg.angle_source.value,
                "down_threshold": cfg.down_threshold,
                "bottom_threshold": cfg.bottom_threshold,
                "up_threshold": cfg.up_threshold,
                "hysteresis_margin": cfg.hysteresis_margin,
                "rom_target": cfg.rom_target,
            }
            for cfg in EXERCISE_CONFIGS.values()
        ],
        "sides": [s.value for s in Side],
    }


@router.post("/session/start")
async def start_exercise_session(request: StartSessionRequest):
    """
    Start a new exercise session for real-time monitoring.

    Returns a session ID for use with the frame endpoint or WebSocket stream.
    """
    session_handler = get_services()

    try:
        ex_type = ExerciseType(request.exercise_type)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid exercise type. Valid types: {[e.value for e in ExerciseType]}"
        )
    try:
        side = Side(request.side)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid side. Valid sides: {[s.value for s in Side]}"
        )

    try:
        session = session_handler.create_session(
            user_id=request.user_id,
            exercise_type=ex_type,
            side=side,
            target_reps=request.target_reps
        )
    except SessionCapacityError as e:
        _raise_http(e)

    return {
        "status": "created",
        "session_id": session.session_id,
        "user_id": request.user_id,
        "exercise_type": ex_type.value,
        "side": side.value,
        "target_reps": request.target_reps,
        "websocket_url": f"/api/physio/ws/session/{session.session_id}"
    }


@router.post("/session/{session_id}/frame")
@handle_exceptions
async def process_session_frame(session_id: str, frame: FrameRequest):
    """Feed one frame of landmarks and get live rep feedback."""
    session_handler = get_services()

    try:
        output = session_handler.process_frame(session_id, _to_landmarks(frame), frame.timestamp_ms)
    except (SessionNotFoundError, FrameOrderError, SessionNotActiveError) as e:
        _raise_http(e)

    return output.to_dict()


@router.post("/session/{session_id}/reset")
async def reset_session(session_id: str, full: bool = False):
    """Reset the detector: phase only by default, counters too with full=true."""
    session_handler = get_services()
    try:
        session = session_handler.reset_session(session_id, full=full)
    except SessionNotFoundError as e:
        _raise_http(e)
    return success_response(session.to_dict(), message="Session reset")


@router.post("/session/{session_id}/pause")
async def pause_session(session_id: str):
    session_handler = get_services()
    try:
        session = session_handler.pause_session(session_id)
    except SessionNotFoundError as e:
        _raise_http(e)
    return {"status": session.state.value, "session_id": session_id}


@router.post("/session/{session_id}/resume")
async def resume_session(session_id: str):
    session_handler = get_services()
    try:
        session = session_handler.resume_session(session_id)
    except (SessionNotFoundError, SessionNotActiveError) as e:
        _raise_http(e)
    return {"status": session.state.value, "session_id": session_id}


@router.post("/session/{session_id}/complete")
async def complete_session(session_id: str):
    """Complete an exercise session and get final results."""
    session_handler = get_services()
    try:
        result = session_handler.complete_session(session_id)
    except SessionNotFoundError as e:
        _raise_http(e)
    return result


@router.get("/session/{session_id}")
async def get_session_status(session_id: str):
    session_handler = get_services()
    try:
        return session_handler.get_session_status(session_id)
    except SessionNotFoundError as e:
        _raise_http(e)


@router.delete("/session/{session_id}")
async def release_session(session_id: str):
    """Drop a session and its detector."""
    session_handler = get_services()
    if session_handler.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    session_handler.cleanup_session(session_id)
    return {"status": "released", "session_id": session_id}


# ============= WebSocket Endpoints =============

@router.websocket("/ws/session/{session_id}")
async def exercise_session_stream(websocket: WebSocket, session_id: str):
    """
    Real-time exercise session monitoring.

    Receives JSON frames {"landmarks": [...], "timestamp_ms": ...} and replies
    with FRAME_RESULT for every frame plus REP_COMPLETED on accepted reps.
    """
    global _ws_connections

    if _ws_connections >= settings.WS_MAX_CONNECTIONS:
        await websocket.close(code=1013, reason="Server at capacity")
        return

    await websocket.accept()
    session_handler = get_services()

    session = session_handler.get_session(session_id)
    if not session:
        await websocket.send_json({
            "type": "ERROR",
            **error_response(f"Session {session_id} not found", error_code="SESSION_NOT_FOUND")
        })
        await websocket.close()
        return

    _ws_connections += 1
    logger.info(f"Session {session_id} stream connected")

    try:
        await websocket.send_json({
            "type": "SESSION_STARTED",
            "session_id": session_id,
            "exercise_type": session.exercise_type.value,
            "side": session.side.value,
            "target_reps": session.target_reps
        })

        while True:
            data = await websocket.receive_json()

            try:
                frame = FrameRequest.model_validate(data)
                output = session_handler.process_frame(
                    session_id, _to_landmarks(frame), frame.timestamp_ms
                )
            except (ValueError, SessionNotActiveError, SessionNotFoundError) as e:
                await websocket.send_json({
                    "type": "ERROR",
                    **error_response(str(e), error_code=type(e).__name__)
                })
                continue

            await websocket.send_json({"type": "FRAME_RESULT", **output.to_dict()})

            if output.rep_completed:
                await websocket.send_json({
                    "type": "REP_COMPLETED",
                    "rep_count": output.rep_count,
                    "rep": output.last_rep.to_dict() if output.last_rep else None,
                    "target_reached": session.target_reached
                })

    except WebSocketDisconnect:
        logger.info(f"Session {session_id} stream disconnected")
        # Paused, not completed: the client may reconnect
        if session_handler.get_session(session_id):
            session_handler.pause_session(session_id)
    finally:
        _ws_connections -= 1
