"""
REHABTRACK Physio Service - Exercise Session Handler

Owns one repetition detector per active exercise session, feeds it pose
frames and keeps the live (in-memory) record of completed repetitions.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Union
from datetime import datetime
from enum import Enum
import logging
import math
import time
import uuid

from core.config import Settings, settings as default_settings

from .rep_detector import (
    CompletedRep,
    ExerciseType,
    LandmarkFrame,
    RepDetector,
    RepOutput,
    Side,
    create_rep_detector,
    get_exercise_config,
)
from .scoring import quality_for_score

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Exercise session states."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class SessionNotFoundError(KeyError):
    """No active session with the given id."""


class SessionNotActiveError(RuntimeError):
    """Frames were sent to a paused or completed session."""


class SessionCapacityError(RuntimeError):
    """Too many concurrent sessions."""


class FrameOrderError(ValueError):
    """A frame arrived with an older timestamp than the previous one."""


@dataclass
class ExerciseSession:
    """Live data for one (user, exercise, side) session."""
    session_id: str
    user_id: str
    exercise_type: ExerciseType
    side: Side
    detector: RepDetector
    state: SessionState = SessionState.ACTIVE
    target_reps: int = 10

    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    frames_processed: int = 0
    last_timestamp_ms: Optional[float] = None
    rep_history: List[CompletedRep] = field(default_factory=list)
    last_output: Optional[RepOutput] = None

    @property
    def rep_count(self) -> int:
        return self.detector.rep_count

    @property
    def target_reached(self) -> bool:
        return self.rep_count >= self.target_reps

    @property
    def avg_form_score(self) -> float:
        if not self.rep_history:
            return 0.0
        return sum(r.form_score for r in self.rep_history) / len(self.rep_history)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "exercise_type": self.exercise_type.value,
            "side": self.side.value,
            "state": self.state.value,
            "phase": self.detector.phase.value,
            "target_reps": self.target_reps,
            "rep_count": self.rep_count,
            "incomplete_reps": self.detector.state.incomplete_reps,
            "target_reached": self.target_reached,
            "avg_form_score": round(self.avg_form_score, 1),
            "frames_processed": self.frames_processed,
            "duration_seconds": round((self.end_time or time.time()) - self.start_time, 1),
            "last_output": self.last_output.to_dict() if self.last_output else None,
        }


class ExerciseSessionHandler:
    """
    Manages exercise sessions with real-time rep detection.

    Detectors are never shared: each session gets its own instance built
    from the exercise's tuning and the current settings.
    """

    def __init__(self, config: Optional[Settings] = None):
        self.settings = config or default_settings
        self.active_sessions: Dict[str, ExerciseSession] = {}

    def _build_detector(self, exercise_type: ExerciseType, side: Side) -> RepDetector:
        exercise_config = get_exercise_config(exercise_type).with_overrides(
            smoothing_alpha=self.settings.SMOOTHING_ALPHA,
            min_rep_duration_ms=self.settings.MIN_REP_DURATION_MS,
            min_visibility=self.settings.MIN_LANDMARK_VISIBILITY,
        )
        return create_rep_detector(exercise_type, side, exercise_config)

    def create_session(
        self,
        user_id: str,
        exercise_type: Union[ExerciseType, str],
        side: Union[Side, str] = Side.LEFT,
        target_reps: int = 10
    ) -> ExerciseSession:
        """
        Create and start a new exercise session.

        Args:
            user_id: User ID
            exercise_type: Exercise being performed
            side: Body side the detector reads
            target_reps: Reps the patient is aiming for

        Returns:
            New ExerciseSession

        Raises:
            ValueError: unknown exercise or side
            SessionCapacityError: MAX_ACTIVE_SESSIONS reached
        """
        ex_type = ExerciseType(exercise_type)
        body_side = Side(side)

        if len(self.active_sessions) >= self.settings.MAX_ACTIVE_SESSIONS:
            raise SessionCapacityError(
                f"Maximum of {self.settings.MAX_ACTIVE_SESSIONS} active sessions reached"
            )

        session = ExerciseSession(
            session_id=str(uuid.uuid4())[:8],
            user_id=user_id,
            exercise_type=ex_type,
            side=body_side,
            detector=self._build_detector(ex_type, body_side),
            target_reps=target_reps,
        )
        self.active_sessions[session.session_id] = session

        logger.info(
            f"Session {session.session_id} started: {ex_type.value} ({body_side.value}) for user {user_id}"
        )
        return session

    def get_session(self, session_id: str) -> Optional[ExerciseSession]:
        """Get session by ID."""
        return self.active_sessions.get(session_id)

    def _require(self, session_id: str) -> ExerciseSession:
        session = self.active_sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def process_frame(
        self,
        session_id: str,
        landmarks: LandmarkFrame,
        timestamp_ms: float
    ) -> RepOutput:
        """
        Feed one pose frame to the session's detector.

        Args:
            session_id: Active session ID
            landmarks: 33-point landmarks for this instant
            timestamp_ms: Frame timestamp, non-decreasing per session

        Returns:
            The detector's RepOutput for this frame
        """
        session = self._require(session_id)

        if session.state != SessionState.ACTIVE:
            raise SessionNotActiveError(f"Session {session_id} is {session.state.value}")

        if not math.isfinite(timestamp_ms) or timestamp_ms < 0:
            raise ValueError(f"Frame timestamp must be a finite, non-negative number, got {timestamp_ms}")

        if session.last_timestamp_ms is not None and timestamp_ms < session.last_timestamp_ms:
            raise FrameOrderError(
                f"Frame at {timestamp_ms}ms is older than previous frame at {session.last_timestamp_ms}ms"
            )

        output = session.detector.update(landmarks, timestamp_ms)

        session.frames_processed += 1
        session.last_timestamp_ms = timestamp_ms
        session.last_output = output

        if output.rep_completed and output.last_rep is not None:
            session.rep_history.append(output.last_rep)
            logger.info(
                f"Session {session_id}: rep {output.rep_count} "
                f"(score {output.last_rep.form_score}, min {output.last_rep.min_angle:.1f}°)"
            )

        return output

    def reset_session(self, session_id: str, full: bool = False) -> ExerciseSession:
        """
        Reset the session's detector.

        full=False keeps the rep count (restart the movement mid-set);
        full=True also zeroes counters and clears the rep history.
        """
        session = self._require(session_id)

        if full:
            session.detector.reset_all()
            session.rep_history.clear()
        else:
            session.detector.reset_phase()
        session.last_output = None

        logger.info(f"Session {session_id} reset ({'full' if full else 'phase'})")
        return session

    def pause_session(self, session_id: str) -> ExerciseSession:
        """Pause an active session."""
        session = self._require(session_id)
        if session.state == SessionState.ACTIVE:
            session.state = SessionState.PAUSED
        return session

    def resume_session(self, session_id: str) -> ExerciseSession:
        """Resume a paused session."""
        session = self._require(session_id)
        if session.state != SessionState.PAUSED:
            raise SessionNotActiveError(f"Session {session_id} is not paused")
        session.state = SessionState.ACTIVE
        return session

    def complete_session(self, session_id: str) -> Dict[str, Any]:
        """
        Complete an exercise session and generate summary.

        Returns complete session summary.
        """
        session = self._require(session_id)

        if session.state != SessionState.COMPLETED:
            session.state = SessionState.COMPLETED
            session.end_time = time.time()

        logger.info(f"Session {session_id} completed with {session.rep_count} reps")
        return self._generate_summary(session)

    def _generate_summary(self, session: ExerciseSession) -> Dict[str, Any]:
        """Generate session summary."""
        duration = (session.end_time or time.time()) - session.start_time
        scores = [r.form_score for r in session.rep_history]
        avg_score = session.avg_form_score

        completion_rate = (session.rep_count / session.target_reps * 100) if session.target_reps > 0 else 0

        return {
            "status": "completed",
            "session_id": session.session_id,
            "user_id": session.user_id,
            "exercise": session.exercise_type.value,
            "side": session.side.value,
            "summary": {
                "total_reps": session.rep_count,
                "incomplete_reps": session.detector.state.incomplete_reps,
                "target_reps": session.target_reps,
                "completion_rate": round(completion_rate, 1),
                "avg_form_score": round(avg_score, 1),
                "best_form_score": max(scores) if scores else 0,
                "form_quality": quality_for_score(avg_score).value if scores else None,
                "duration_seconds": round(duration, 1),
                "frames_processed": session.frames_processed,
            },
            "reps": [r.to_dict() for r in session.rep_history],
            "recommendations": self._get_recommendations(session),
            "completed_at": datetime.now().isoformat()
        }

    def _get_recommendations(self, session: ExerciseSession) -> List[str]:
        """Generate recommendations based on session performance."""
        recommendations = []

        if session.rep_history and session.avg_form_score < 70:
            recommendations.append("Focus on reaching the full range of motion on each rep")

        if any(r.duration_ms < 1000 for r in session.rep_history):
            recommendations.append("Slow down: aim for at least one second per repetition")

        if session.detector.state.incomplete_reps > 2:
            recommendations.append("Several reps stopped short; try a smaller target or add support")

        if session.target_reps > 0 and session.rep_count < session.target_reps:
            recommendations.append("Try reducing the number of reps in your next session")

        if not recommendations:
            recommendations.append("Great progress! Maintain this consistency")

        return recommendations

    def get_session_status(self, session_id: str) -> Dict[str, Any]:
        """Get current session status."""
        return self._require(session_id).to_dict()

    def cleanup_session(self, session_id: str):
        """Remove session from active sessions."""
        if session_id in self.active_sessions:
            del self.active_sessions[session_id]
            logger.info(f"Session {session_id} released")


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE-LEVEL SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_handler_instance: Optional[ExerciseSessionHandler] = None


def get_session_handler() -> ExerciseSessionHandler:
    """Get or create the global session handler instance."""
    global _handler_instance
    if _handler_instance is None:
        _handler_instance = ExerciseSessionHandler()
    return _handler_instance
