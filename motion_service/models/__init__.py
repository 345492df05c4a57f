"""
BLOOMFIT Motion Service Models

Landmark-driven posture scoring and repetition counting.
"""

from .landmarks import (
    JointType,
    Landmark,
    LandmarkFrame,
    NUM_LANDMARKS,
)

from .posture_scorer import (
    PostureScorer,
    ScorerState,
)

from .rep_counter import (
    RepCounter,
    CounterState,
    MovementDirection,
)

from .landmark_sources import (
    LandmarkSource,
    LandmarkSourceUnavailable,
    MediaPipeLandmarkSource,
    SyntheticLandmarkSource,
    create_landmark_source,
)

from .tracking_session import (
    TrackingSession,
    TrackingSessionManager,
    SessionStatus,
    SessionSummary,
    FrameOutcome,
    TooManySessions,
    get_session_manager,
)

__all__ = [
    # Landmarks
    "JointType",
    "Landmark",
    "LandmarkFrame",
    "NUM_LANDMARKS",
    # Posture
    "PostureScorer",
    "ScorerState",
    # Reps
    "RepCounter",
    "CounterState",
    "MovementDirection",
    # Sources
    "LandmarkSource",
    "LandmarkSourceUnavailable",
    "MediaPipeLandmarkSource",
    "SyntheticLandmarkSource",
    "create_landmark_source",
    # Sessions
    "TrackingSession",
    "TrackingSessionManager",
    "SessionStatus",
    "SessionSummary",
    "FrameOutcome",
    "TooManySessions",
    "get_session_manager",
]
