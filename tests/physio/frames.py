"""
Synthetic 33-point pose frames where one joint triple is posed to give
an exact angle at its vertex.
"""

import math
from typing import List, Optional, Sequence, Tuple

from physio_service.models import JointType, Landmark


NUM_LANDMARKS = 33
SEGMENT = 0.2


def _base_frame() -> List[Optional[Landmark]]:
    return [
        Landmark(x=0.1 + 0.02 * i, y=0.1 + 0.015 * i, z=0.0, visibility=0.99)
        for i in range(NUM_LANDMARKS)
    ]


def build_frame(
    angle_deg: float,
    joints: Tuple[JointType, JointType, JointType],
    visibility: float = 0.99,
) -> List[Optional[Landmark]]:
    """
    Landmarks with the angle at joints[1] set to angle_deg.

    joints[0] sits straight above the vertex; joints[2] is rotated away by angle_deg.
    """
    first, vertex, third = joints
    frame = _base_frame()
    vx, vy = 0.5, 0.5
    theta = math.radians(angle_deg)
    frame[first.value] = Landmark(x=vx, y=vy - SEGMENT, z=0.0, visibility=visibility)
    frame[vertex.value] = Landmark(x=vx, y=vy, z=0.0, visibility=visibility)
    frame[third.value] = Landmark(
        x=vx + SEGMENT * math.sin(theta),
        y=vy - SEGMENT * math.cos(theta),
        z=0.0,
        visibility=visibility,
    )
    return frame


LEFT_KNEE = (JointType.LEFT_HIP, JointType.LEFT_KNEE, JointType.LEFT_ANKLE)
RIGHT_KNEE = (JointType.RIGHT_HIP, JointType.RIGHT_KNEE, JointType.RIGHT_ANKLE)
LEFT_HIP = (JointType.LEFT_SHOULDER, JointType.LEFT_HIP, JointType.LEFT_KNEE)
LEFT_ELBOW = (JointType.LEFT_SHOULDER, JointType.LEFT_ELBOW, JointType.LEFT_WRIST)


def feed(detector, angles: Sequence[float], joints, step_ms: float = 100, start_ms: float = 0):
    """Feed one frame per angle; returns the list of outputs."""
    outputs = []
    for i, angle in enumerate(angles):
        outputs.append(detector.update(build_frame(angle, joints), start_ms + i * step_ms))
    return outputs


