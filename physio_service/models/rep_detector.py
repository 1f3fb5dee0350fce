"""
REHABTRACK Physio Service - Repetition Detector

One finite-state machine per exercise session. Each detector reads a single
smoothed joint angle per frame and walks ready -> down -> bottom -> up -> ready,
counting accepted repetitions and scoring them.

The same machine serves every exercise; per-exercise tuning lives in an
immutable ExerciseConfig chosen by ExerciseType.
"""

import dataclasses
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from .geometry import (
    JointType,
    Landmark,
    ema,
    elbow_flexion_angle,
    hip_flexion_angle,
    knee_flexion_angle,
    round_half_up,
    shoulder_flexion_angle,
)
from .scoring import NEUTRAL_ANGLE, calculate_score, rom_achieved

logger = logging.getLogger(__name__)


DEFAULT_ALPHA = 0.3
MIN_REP_DURATION_MS = 300

READY_FEEDBACK = "Get ready..."
POSITION_FEEDBACK = "Position yourself in frame"
ARM_FEEDBACK = "Show your arm"


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class ExerciseType(Enum):
    """Exercises with a repetition detector."""
    SQUAT = "squat"
    STRAIGHT_LEG_RAISE = "slr"
    ELBOW_FLEXION = "elbow_flexion"


class Side(Enum):
    LEFT = "left"
    RIGHT = "right"


class Phase(Enum):
    """Repetition phases. READY is both the initial and the resting state."""
    READY = "ready"
    DOWN = "down"
    BOTTOM = "bottom"
    UP = "up"


class AngleSource(Enum):
    """Joint whose flexion angle drives the state machine."""
    KNEE = "knee"
    HIP = "hip"
    ELBOW = "elbow"
    SHOULDER = "shoulder"


# (first, vertex, third) landmarks for each joint angle
JOINT_LANDMARKS: Dict[Tuple[AngleSource, Side], Tuple[JointType, JointType, JointType]] = {
    (AngleSource.KNEE, Side.LEFT): (JointType.LEFT_HIP, JointType.LEFT_KNEE, JointType.LEFT_ANKLE),
    (AngleSource.KNEE, Side.RIGHT): (JointType.RIGHT_HIP, JointType.RIGHT_KNEE, JointType.RIGHT_ANKLE),
    (AngleSource.HIP, Side.LEFT): (JointType.LEFT_SHOULDER, JointType.LEFT_HIP, JointType.LEFT_KNEE),
    (AngleSource.HIP, Side.RIGHT): (JointType.RIGHT_SHOULDER, JointType.RIGHT_HIP, JointType.RIGHT_KNEE),
    (AngleSource.ELBOW, Side.LEFT): (JointType.LEFT_SHOULDER, JointType.LEFT_ELBOW, JointType.LEFT_WRIST),
    (AngleSource.ELBOW, Side.RIGHT): (JointType.RIGHT_SHOULDER, JointType.RIGHT_ELBOW, JointType.RIGHT_WRIST),
    (AngleSource.SHOULDER, Side.LEFT): (JointType.LEFT_HIP, JointType.LEFT_SHOULDER, JointType.LEFT_ELBOW),
    (AngleSource.SHOULDER, Side.RIGHT): (JointType.RIGHT_HIP, JointType.RIGHT_SHOULDER, JointType.RIGHT_ELBOW),
}

JOINT_ANGLE_FUNCTIONS: Dict[AngleSource, Callable[..., float]] = {
    AngleSource.KNEE: knee_flexion_angle,
    AngleSource.HIP: hip_flexion_angle,
    AngleSource.ELBOW: elbow_flexion_angle,
    AngleSource.SHOULDER: shoulder_flexion_angle,
}


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ExerciseConfig:
    """Tuning for one exercise. Thresholds are smoothed joint angles in degrees."""
    exercise: ExerciseType
    angle_source: AngleSource
    down_threshold: float
    bottom_threshold: float
    up_threshold: float
    hysteresis_margin: float
    rom_target: float
    smoothing_alpha: float = DEFAULT_ALPHA
    min_rep_duration_ms: float = MIN_REP_DURATION_MS
    min_visibility: float = 0.0
    missing_feedback: str = POSITION_FEEDBACK

    def __post_init__(self):
        if not 0 < self.smoothing_alpha <= 1:
            raise ValueError(f"smoothing_alpha must be in (0, 1], got {self.smoothing_alpha}")
        if self.bottom_threshold >= self.down_threshold:
            raise ValueError("bottom_threshold must be below down_threshold")
        if self.rom_target <= 0:
            raise ValueError("rom_target must be positive")
        if self.hysteresis_margin < 0:
            raise ValueError("hysteresis_margin must not be negative")

    def with_overrides(self, **changes: Any) -> "ExerciseConfig":
        """Return a validated copy with some fields replaced."""
        return dataclasses.replace(self, **changes)


EXERCISE_CONFIGS: Dict[ExerciseType, ExerciseConfig] = {
    ExerciseType.SQUAT: ExerciseConfig(
        exercise=ExerciseType.SQUAT,
        angle_source=AngleSource.KNEE,
        down_threshold=110,
        bottom_threshold=95,    # good depth
        up_threshold=160,       # standing
        hysteresis_margin=10,
        rom_target=90,
    ),
    ExerciseType.STRAIGHT_LEG_RAISE: ExerciseConfig(
        exercise=ExerciseType.STRAIGHT_LEG_RAISE,
        angle_source=AngleSource.HIP,
        down_threshold=165,     # leg leaving the floor
        bottom_threshold=110,   # good height
        up_threshold=165,       # back on the floor
        hysteresis_margin=10,
        rom_target=90,
    ),
    ExerciseType.ELBOW_FLEXION: ExerciseConfig(
        exercise=ExerciseType.ELBOW_FLEXION,
        angle_source=AngleSource.ELBOW,
        down_threshold=150,
        bottom_threshold=60,    # full squeeze
        up_threshold=160,       # full extension
        hysteresis_margin=15,
        rom_target=135,
        missing_feedback=ARM_FEEDBACK,
    ),
}


def get_exercise_config(exercise: Union[ExerciseType, str]) -> ExerciseConfig:
    """Look up the built-in config. Raises ValueError for unknown exercises."""
    return EXERCISE_CONFIGS[ExerciseType(exercise)]


# ═══════════════════════════════════════════════════════════════════════════════
# FEEDBACK
# ═══════════════════════════════════════════════════════════════════════════════

PHASE_FEEDBACK: Dict[ExerciseType, Dict[Phase, str]] = {
    ExerciseType.SQUAT: {
        Phase.DOWN: "Go lower...",
        Phase.BOTTOM: "Hold...",
        Phase.UP: "Stand up tall",
    },
    # Hip angle falls while the leg rises, so DOWN is the lift
    ExerciseType.STRAIGHT_LEG_RAISE: {
        Phase.DOWN: "Lift higher...",
        Phase.BOTTOM: "Hold...",
        Phase.UP: "Lower slowly",
    },
    ExerciseType.ELBOW_FLEXION: {
        Phase.DOWN: "Squeeze up...",
        Phase.BOTTOM: "Squeeze!",
        Phase.UP: "Extend fully",
    },
}


def get_feedback(phase: Phase, exercise: ExerciseType) -> str:
    """Live coaching text for a phase of an exercise."""
    if phase == Phase.READY:
        return READY_FEEDBACK
    return PHASE_FEEDBACK.get(exercise, {}).get(phase, "Move steadily")


# ═══════════════════════════════════════════════════════════════════════════════
# STATE AND OUTPUT
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CompletedRep:
    """Statistics of the last accepted repetition."""
    min_angle: float
    max_angle: float
    form_score: int
    duration_ms: float
    rom: float
    completed_at_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "minAngle": round(self.min_angle, 1),
            "maxAngle": round(self.max_angle, 1),
            "formScore": self.form_score,
            "durationMs": self.duration_ms,
            "rom": round(self.rom, 1),
        }


@dataclass
class DetectorState:
    """Mutable state owned by exactly one RepDetector."""
    phase: Phase = Phase.READY
    rep_count: int = 0
    min_angle_observed: float = NEUTRAL_ANGLE
    smoothed_angle: Optional[float] = None
    rep_start_ms: float = 0.0
    last_completed_rep: Optional[CompletedRep] = None
    incomplete_reps: int = 0


@dataclass
class RepOutput:
    """Per-frame detector result."""
    rep_count: int
    feedback: str
    phase: Phase
    current_angle: Optional[int] = None
    last_rep: Optional[CompletedRep] = None
    incomplete_reps: int = 0
    rep_completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "repCount": self.rep_count,
            "feedback": self.feedback,
            "currentAngle": self.current_angle,
            "lastRep": self.last_rep.to_dict() if self.last_rep else None,
            "phase": self.phase.value,
            "incompleteReps": self.incomplete_reps,
            "repCompleted": self.rep_completed,
        }


LandmarkFrame = Union[Sequence[Optional[Landmark]], Mapping[int, Landmark]]


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTOR
# ═══════════════════════════════════════════════════════════════════════════════

class RepDetector:
    """
    Repetition state machine for a single (session, exercise, side).

    Callers must serialize update() calls and feed non-decreasing timestamps.
    Instances share nothing; create one per active session.
    """

    def __init__(self, config: ExerciseConfig, side: Union[Side, str] = Side.LEFT):
        self.config = config
        self.side = Side(side)
        self.state = DetectorState()
        self._indices = tuple(
            joint.value for joint in JOINT_LANDMARKS[(config.angle_source, self.side)]
        )
        self._angle_fn = JOINT_ANGLE_FUNCTIONS[config.angle_source]

    @property
    def exercise(self) -> ExerciseType:
        return self.config.exercise

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def rep_count(self) -> int:
        return self.state.rep_count

    def reset_phase(self):
        """Return to READY and drop smoothing and last-rep data. Keeps the rep count."""
        self.state.phase = Phase.READY
        self.state.min_angle_observed = NEUTRAL_ANGLE
        self.state.smoothed_angle = None
        self.state.rep_start_ms = 0.0
        self.state.last_completed_rep = None

    reset = reset_phase

    def reset_all(self):
        """Full restart: phase reset plus zeroed counters."""
        self.state = DetectorState()

    def _lookup(self, landmarks: LandmarkFrame, index: int) -> Optional[Landmark]:
        if isinstance(landmarks, Mapping):
            landmark = landmarks.get(index)
        else:
            landmark = landmarks[index] if index < len(landmarks) else None
        if landmark is None:
            return None
        # NaN visibility fails this test too
        if not getattr(landmark, "visibility", 1.0) >= self.config.min_visibility:
            return None
        return landmark

    def update(self, landmarks: LandmarkFrame, timestamp_ms: float) -> RepOutput:
        """
        Advance the state machine by one frame.

        Args:
            landmarks: 33-point landmarks as a list (None for missing) or index dict
            timestamp_ms: Frame timestamp in milliseconds

        Returns:
            RepOutput for this frame
        """
        state = self.state
        cfg = self.config

        points = [self._lookup(landmarks, idx) for idx in self._indices]
        if any(p is None for p in points):
            return self._missing_output()

        raw_angle = self._angle_fn(*points)
        if not math.isfinite(raw_angle):
            # NaN/inf coordinates; must not reach the smoothing filter
            logger.debug(f"[{cfg.exercise.value}] non-finite angle at {timestamp_ms}ms, frame skipped")
            return self._missing_output()

        state.smoothed_angle = ema(state.smoothed_angle, raw_angle, cfg.smoothing_alpha)
        angle = state.smoothed_angle

        rep_completed = self._step(angle, timestamp_ms)

        return RepOutput(
            rep_count=state.rep_count,
            feedback=get_feedback(state.phase, cfg.exercise),
            phase=state.phase,
            current_angle=round_half_up(angle),
            last_rep=state.last_completed_rep,
            incomplete_reps=state.incomplete_reps,
            rep_completed=rep_completed,
        )

    def _missing_output(self) -> RepOutput:
        state = self.state
        return RepOutput(
            rep_count=state.rep_count,
            feedback=self.config.missing_feedback,
            phase=state.phase,
            last_rep=state.last_completed_rep,
            incomplete_reps=state.incomplete_reps,
        )

    def _step(self, angle: float, timestamp_ms: float) -> bool:
        """Apply one transition. Returns True when a rep was accepted."""
        state = self.state
        cfg = self.config
        tag = cfg.exercise.value

        if state.phase == Phase.READY:
            if angle < cfg.down_threshold:
                state.phase = Phase.DOWN
                state.rep_start_ms = timestamp_ms
                state.min_angle_observed = angle
                logger.debug(f"[{tag}] rep started at {timestamp_ms}ms ({angle:.1f}°)")
            return False

        state.min_angle_observed = min(state.min_angle_observed, angle)

        if state.phase == Phase.DOWN:
            if angle < cfg.bottom_threshold:
                state.phase = Phase.BOTTOM
                logger.debug(f"[{tag}] bottom reached ({angle:.1f}°)")
            elif angle > cfg.up_threshold:
                state.phase = Phase.READY
                state.min_angle_observed = NEUTRAL_ANGLE
                state.incomplete_reps += 1
                logger.debug(f"[{tag}] rep aborted before bottom")

        elif state.phase == Phase.BOTTOM:
            if angle > cfg.bottom_threshold + cfg.hysteresis_margin:
                state.phase = Phase.UP
                logger.debug(f"[{tag}] returning ({angle:.1f}°)")

        elif state.phase == Phase.UP:
            if angle > cfg.up_threshold:
                accepted = self._complete_rep(timestamp_ms)
                state.phase = Phase.READY
                state.min_angle_observed = NEUTRAL_ANGLE
                return accepted

        return False

    def _complete_rep(self, timestamp_ms: float) -> bool:
        state = self.state
        cfg = self.config
        duration = timestamp_ms - state.rep_start_ms

        if duration <= cfg.min_rep_duration_ms:
            logger.debug(f"[{cfg.exercise.value}] rep discarded, {duration:.0f}ms is too fast")
            return False

        rom = rom_achieved(state.min_angle_observed)
        state.rep_count += 1
        state.last_completed_rep = CompletedRep(
            min_angle=state.min_angle_observed,
            max_angle=NEUTRAL_ANGLE,
            form_score=calculate_score(rom, cfg.rom_target, duration),
            duration_ms=duration,
            rom=rom,
            completed_at_ms=timestamp_ms,
        )
        logger.debug(
            f"[{cfg.exercise.value}] rep #{state.rep_count} completed: "
            f"min {state.min_angle_observed:.1f}°, score {state.last_completed_rep.form_score}"
        )
        return True


def create_rep_detector(
    exercise: Union[ExerciseType, str],
    side: Union[Side, str] = Side.LEFT,
    config: Optional[ExerciseConfig] = None,
) -> RepDetector:
    """Build a detector for an exercise, using the built-in tuning unless given one."""
    ex_type = ExerciseType(exercise)
    if config is None:
        config = get_exercise_config(ex_type)
    elif config.exercise != ex_type:
        raise ValueError(f"config is for {config.exercise.value}, not {ex_type.value}")
    return RepDetector(config, side)
