"""
REHABTRACK Physio Service - Joint Geometry

3D joint-angle calculation on MediaPipe pose landmarks plus the
exponential smoothing filter applied to every angle signal.
All functions here are pure.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np


# Vectors shorter than this are treated as coincident points
ANGLE_EPSILON = 1e-6


# ═══════════════════════════════════════════════════════════════════════════════
# LANDMARKS
# ═══════════════════════════════════════════════════════════════════════════════

class JointType(Enum):
    """MediaPipe 33-point body landmark indices."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


@dataclass
class Landmark:
    """A single pose landmark with normalized 3D coordinates and visibility."""
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    def to_numpy(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Landmark":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            z=float(data.get("z", 0.0)),
            visibility=float(data.get("visibility", 1.0)),
        )


Point = Union[Landmark, Sequence[float], np.ndarray]


def _as_vector(point: Point) -> np.ndarray:
    if isinstance(point, Landmark):
        return point.to_numpy()
    if hasattr(point, "x") and hasattr(point, "y"):
        # MediaPipe NormalizedLandmark and similar
        return np.array([point.x, point.y, getattr(point, "z", 0.0)], dtype=float)
    vec = np.asarray(point, dtype=float)
    if vec.shape == (2,):
        vec = np.append(vec, 0.0)
    return vec


# ═══════════════════════════════════════════════════════════════════════════════
# ANGLES
# ═══════════════════════════════════════════════════════════════════════════════

def calculate_angle(a: Point, b: Point, c: Point) -> float:
    """
    Calculate the angle at vertex b formed by points a-b-c.

    Args:
        a, b, c: Landmarks or (x, y, z) points

    Returns:
        Angle in degrees (0-180). Returns 0.0 when either ray is degenerate.
    """
    ba = _as_vector(a) - _as_vector(b)
    bc = _as_vector(c) - _as_vector(b)

    ba_mag = float(np.linalg.norm(ba))
    bc_mag = float(np.linalg.norm(bc))
    if ba_mag < ANGLE_EPSILON or bc_mag < ANGLE_EPSILON:
        return 0.0

    cosine_angle = float(np.dot(ba, bc)) / (ba_mag * bc_mag)
    cosine_angle = min(max(cosine_angle, -1.0), 1.0)
    return math.degrees(math.acos(cosine_angle))


def knee_flexion_angle(hip: Point, knee: Point, ankle: Point) -> float:
    """180 = leg fully extended, ~30-40 = heel to buttock."""
    return calculate_angle(hip, knee, ankle)


def hip_flexion_angle(shoulder: Point, hip: Point, knee: Point) -> float:
    """180 = neutral standing/lying hip, ~90 = thigh perpendicular to trunk."""
    return calculate_angle(shoulder, hip, knee)


def shoulder_flexion_angle(hip: Point, shoulder: Point, elbow: Point) -> float:
    # Camera-angle dependent; arm by the side reads close to 0
    return calculate_angle(hip, shoulder, elbow)


def elbow_flexion_angle(shoulder: Point, elbow: Point, wrist: Point) -> float:
    """180 = arm fully extended, ~30-40 = fully flexed."""
    return calculate_angle(shoulder, elbow, wrist)


def torso_lean_angle(hip: Point, shoulder: Point) -> float:
    """
    Trunk lean of the hip->shoulder line, in degrees from vertical.

    0 = upright. Uses image x/y only.
    """
    hip_vec = _as_vector(hip)
    shoulder_vec = _as_vector(shoulder)
    dx = float(shoulder_vec[0] - hip_vec[0])
    dy = float(shoulder_vec[1] - hip_vec[1])
    return abs(math.degrees(math.atan2(dx, dy)))


# ═══════════════════════════════════════════════════════════════════════════════
# SMOOTHING
# ═══════════════════════════════════════════════════════════════════════════════

def ema(previous: Optional[float], current: float, alpha: float) -> float:
    """
    Exponential moving average step.

    Args:
        previous: Previous smoothed value, or None before the first sample
        current: Newest raw value
        alpha: Smoothing factor in (0, 1]; lower = smoother but laggier

    Returns:
        The new smoothed value
    """
    if previous is None:
        return current
    if current == previous:
        return previous
    return alpha * current + (1 - alpha) * previous


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties toward +infinity."""
    return int(math.floor(value + 0.5))
