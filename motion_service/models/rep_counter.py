"""
BLOOMFIT Motion Service - Repetition Counter

Direction-reversal state machine over hip-center height. In image space y
grows downwards, so a positive delta is the body moving down. One repetition
is a `down` phase followed by an `up` phase; a debounce flag prevents a
single physical repetition from being counted twice.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.config import settings

from .landmarks import JointType, LandmarkFrame

logger = logging.getLogger(__name__)


class MovementDirection(str, Enum):
    """Current movement phase of the tracked hip signal."""
    NONE = "none"
    UP = "up"
    DOWN = "down"


@dataclass
class CounterState:
    """Per-session repetition counter state."""
    previous_hip_y: Optional[float] = None
    direction: MovementDirection = MovementDirection.NONE
    rep_in_progress: bool = False
    count: int = 0


class RepCounter:
    """
    Counts completed down -> up cycles of the hip center.

    The counter is a pure reducer over CounterState; releasing the debounce
    flag after `debounce_seconds` is left to whoever owns the timers.
    """

    def __init__(
        self,
        threshold: Optional[float] = None,
        debounce_seconds: Optional[float] = None,
        min_visibility: Optional[float] = None,
    ):
        self.threshold = settings.REP_MOVEMENT_THRESHOLD if threshold is None else threshold
        self.debounce_seconds = settings.REP_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self.min_visibility = settings.MIN_LANDMARK_VISIBILITY if min_visibility is None else min_visibility

    def hip_height(self, frame: LandmarkFrame) -> Optional[float]:
        """Average y of both hips, or None if either hip is missing."""
        points = frame.require((JointType.LEFT_HIP, JointType.RIGHT_HIP), self.min_visibility)
        if points is None:
            return None
        return (points[JointType.LEFT_HIP].y + points[JointType.RIGHT_HIP].y) / 2

    def step(self, state: CounterState, hip_y: float) -> bool:
        """
        Advance the state machine by one hip-height sample.

        Returns:
            True if this sample completed a repetition
        """
        if state.previous_hip_y is None:
            # cold start: seed only
            state.previous_hip_y = hip_y
            return False

        delta = hip_y - state.previous_hip_y
        completed = False

        if abs(delta) > self.threshold:
            new_direction = MovementDirection.DOWN if delta > 0 else MovementDirection.UP

            if (
                state.direction == MovementDirection.DOWN
                and new_direction == MovementDirection.UP
                and not state.rep_in_progress
            ):
                state.count += 1
                state.rep_in_progress = True
                completed = True

            state.direction = new_direction

        state.previous_hip_y = hip_y
        return completed

    def update(self, state: CounterState, frame: LandmarkFrame) -> bool:
        """Step with a frame's hip height; frames without hips leave state untouched."""
        hip_y = self.hip_height(frame)
        if hip_y is None:
            return False
        return self.step(state, hip_y)

    @staticmethod
    def release(state: CounterState) -> None:
        """Clear the debounce flag."""
        state.rep_in_progress = False
