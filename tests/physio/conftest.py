"""Shared fixtures for the physio service tests."""

import pytest

from .frames import build_frame


@pytest.fixture
def make_frame():
    return build_frame


@pytest.fixture
def squat_angles():
    """Knee angle sweep through a full squat, sampled every 100ms."""
    return [180, 170, 150, 120, 100, 90, 100, 130, 165, 175]
