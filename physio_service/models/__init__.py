"""
REHABTRACK Physio Service Models

Rule-based motion analysis on pose landmarks: joint geometry,
per-exercise repetition state machines and repetition scoring.
"""

from .geometry import (
    Landmark,
    JointType,
    calculate_angle,
    knee_flexion_angle,
    hip_flexion_angle,
    shoulder_flexion_angle,
    elbow_flexion_angle,
    torso_lean_angle,
    ema,
)

from .scoring import (
    FormQuality,
    calculate_score,
    quality_for_score,
    rom_achieved,
)

from .rep_detector import (
    AngleSource,
    CompletedRep,
    DetectorState,
    ExerciseConfig,
    ExerciseType,
    EXERCISE_CONFIGS,
    Phase,
    RepDetector,
    RepOutput,
    Side,
    create_rep_detector,
    get_exercise_config,
    get_feedback,
)

from .exercise_session import (
    ExerciseSession,
    ExerciseSessionHandler,
    FrameOrderError,
    SessionCapacityError,
    SessionNotActiveError,
    SessionNotFoundError,
    SessionState,
    get_session_handler,
)

__all__ = [
    # Geometry
    "Landmark",
    "JointType",
    "calculate_angle",
    "knee_flexion_angle",
    "hip_flexion_angle",
    "shoulder_flexion_angle",
    "elbow_flexion_angle",
    "torso_lean_angle",
    "ema",
    # Scoring
    "FormQuality",
    "calculate_score",
    "quality_for_score",
    "rom_achieved",
    # Rep Detector
    "AngleSource",
    "CompletedRep",
    "DetectorState",
    "ExerciseConfig",
    "ExerciseType",
    "EXERCISE_CONFIGS",
    "Phase",
    "RepDetector",
    "RepOutput",
    "Side",
    "create_rep_detector",
    "get_exercise_config",
    "get_feedback",
    # Exercise Session
    "ExerciseSession",
    "ExerciseSessionHandler",
    "FrameOrderError",
    "SessionCapacityError",
    "SessionNotActiveError",
    "SessionNotFoundError",
    "SessionState",
    "get_session_handler",
]
