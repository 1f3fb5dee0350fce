"""
REHABTRACK Physio Service - Repetition Scoring

Form score for a completed repetition from range of motion and tempo.
"""

from enum import Enum

from .geometry import round_half_up


# Neutral (fully extended) joint angle all ROM is measured from
NEUTRAL_ANGLE = 180.0

ROM_MAX_POINTS = 70.0
ROM_RATIO_CAP = 1.2

# (minimum duration ms, points), checked top-down
TEMPO_BANDS = (
    (1000, 30),
    (500, 15),
    (0, 5),
)


class FormQuality(Enum):
    """Form quality assessment levels."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


def rom_achieved(min_angle: float) -> float:
    """Degrees of flexion from neutral reached at the deepest point."""
    return NEUTRAL_ANGLE - min_angle


def rom_component(rom: float, rom_target: float) -> float:
    if rom_target <= 0:
        raise ValueError(f"rom_target must be positive, got {rom_target}")
    ratio = min(rom / rom_target, ROM_RATIO_CAP)
    return min(ratio * ROM_MAX_POINTS, ROM_MAX_POINTS)


def tempo_component(duration_ms: float) -> int:
    for min_duration, points in TEMPO_BANDS:
        if duration_ms >= min_duration:
            return points
    return TEMPO_BANDS[-1][1]


def calculate_score(rom: float, rom_target: float, duration_ms: float) -> int:
    """
    Score a repetition out of 100.

    Args:
        rom: Range of motion achieved (degrees)
        rom_target: Target range of motion (degrees)
        duration_ms: Rep duration from start of descent to return

    Returns:
        Integer score 0-100 (ROM up to 70 points, tempo up to 30)
    """
    total = rom_component(rom, rom_target) + tempo_component(duration_ms)
    return round_half_up(min(total, 100.0))


def quality_for_score(score: float) -> FormQuality:
    if score >= 90:
        return FormQuality.EXCELLENT
    elif score >= 75:
        return FormQuality.GOOD
    elif score >= 50:
        return FormQuality.FAIR
    return FormQuality.POOR
