"""
BLOOMFIT Motion Service - Posture Scorer

Reduces a landmark frame to a 0-100 alignment score and rate-limits how often
the score is surfaced to the consumer.

The formula is an empirical heuristic kept for compatibility with the mobile
client's historical scores:

    deviation = |nose.y - shoulder_center.y - hip_center.y|
    score     = clamp(0, 100, 100 - deviation * 200)

It is not a biomechanical model.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from core.config import settings

from .landmarks import JointType, LandmarkFrame

logger = logging.getLogger(__name__)


POSTURE_JOINTS = (
    JointType.NOSE,
    JointType.LEFT_SHOULDER,
    JointType.RIGHT_SHOULDER,
    JointType.LEFT_HIP,
    JointType.RIGHT_HIP,
)


@dataclass
class ScorerState:
    """Per-session posture scorer state."""
    last_emitted_at: Optional[float] = None
    last_score: Optional[float] = None
    last_emitted_score: Optional[int] = None
    frames_scored: int = 0
    emissions: int = 0
    emitted_total: int = 0

    @property
    def average_emitted_score(self) -> Optional[float]:
        if not self.emissions:
            return None
        return self.emitted_total / self.emissions


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class PostureScorer:
    """
    Stateless posture scoring with a rolling emission window.

    All mutable data lives in the ScorerState passed to `update()`.
    """

    def __init__(
        self,
        emit_interval: Optional[float] = None,
        scale: Optional[float] = None,
        min_visibility: Optional[float] = None,
    ):
        self.emit_interval = settings.POSTURE_EMIT_INTERVAL_SECONDS if emit_interval is None else emit_interval
        self.scale = settings.POSTURE_SCALE if scale is None else scale
        self.min_visibility = settings.MIN_LANDMARK_VISIBILITY if min_visibility is None else min_visibility

    def score(self, frame: LandmarkFrame) -> Optional[float]:
        """
        Compute the raw alignment score for a frame.

        Returns:
            Score clamped to [0, 100], or None when a required landmark is missing
        """
        points = frame.require(POSTURE_JOINTS, self.min_visibility)
        if points is None:
            return None

        nose = points[JointType.NOSE]
        shoulder_center_y = (points[JointType.LEFT_SHOULDER].y + points[JointType.RIGHT_SHOULDER].y) / 2
        hip_center_y = (points[JointType.LEFT_HIP].y + points[JointType.RIGHT_HIP].y) / 2

        deviation = abs(nose.y - shoulder_center_y - hip_center_y)
        return clamp(100.0 - deviation * self.scale)

    def update(self, state: ScorerState, frame: LandmarkFrame, now: float) -> Optional[int]:
        """
        Score a frame and decide whether the result is surfaced.

        Returns:
            Integer score to emit, or None when the frame is unusable or the
            current emission window is still open
        """
        raw = self.score(frame)
        if raw is None:
            return None

        state.last_score = raw
        state.frames_scored += 1

        if state.last_emitted_at is not None and now - state.last_emitted_at <= self.emit_interval:
            return None

        emitted = round_half_up(raw)
        state.last_emitted_at = now
        state.last_emitted_score = emitted
        state.emissions += 1
        state.emitted_total += emitted
        return emitted
