"""
BLOOMFIT Motion Service - Landmark Sources

Capability interface for anything that turns a camera frame (or a point in
time) into a LandmarkFrame, with two implementations:

- MediaPipeLandmarkSource: MediaPipe Pose on RGB images
- SyntheticLandmarkSource: deterministic pelvic-tilt generator for tests,
  demos and devices without a usable detector

The implementation is picked once per session by `create_landmark_source()`.
"""

import logging
import math
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from core.config import settings

from .landmarks import JointType, Landmark, LandmarkFrame

logger = logging.getLogger(__name__)


class LandmarkSourceUnavailable(RuntimeError):
    """The requested landmark source cannot be used in this environment."""


class LandmarkSource(ABC):
    """
    Landmark detector interface.

    `detect()` returns a LandmarkFrame or None when no body was found.
    """

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def detect(self, image: Optional[np.ndarray], timestamp: float) -> Optional[LandmarkFrame]: ...

    def close(self) -> None:
        """Release detector resources."""


# ═══════════════════════════════════════════════════════════════════════════════
# MEDIAPIPE
# ═══════════════════════════════════════════════════════════════════════════════

def resolve_pose_model_path(model_path: Optional[str] = None) -> Optional[str]:
    """
    Pick the PoseLandmarker model asset.

    An explicit path is used as given. Otherwise the configured
    MEDIAPIPE_POSE_MODEL_PATH is used if the file exists; None selects the
    legacy Pose solution.
    """
    if model_path:
        return model_path

    configured = settings.MEDIAPIPE_POSE_MODEL_PATH
    if configured and Path(configured).is_file():
        return configured
    if configured:
        logger.info(f"Pose model {configured} not found, using legacy MediaPipe Pose")
    return None


class MediaPipeLandmarkSource(LandmarkSource):
    """
    MediaPipe Pose detector.

    Uses the Tasks PoseLandmarker when a model asset is available (explicit
    `model_path`, or settings.MEDIAPIPE_POSE_MODEL_PATH if that file exists),
    otherwise the legacy Pose solution. Images must be RGB (H, W, 3) uint8.

    Raises:
        LandmarkSourceUnavailable: mediapipe is not installed or the detector
            cannot be created
    """

    def __init__(
        self,
        model_path: Optional[str] = None,
        model_complexity: Optional[int] = None,
        min_detection_confidence: Optional[float] = None,
        min_tracking_confidence: Optional[float] = None,
    ):
        self.model_path = resolve_pose_model_path(model_path)
        self.model_complexity = settings.MEDIAPIPE_MODEL_COMPLEXITY if model_complexity is None else model_complexity
        self.min_detection_confidence = (
            settings.MEDIAPIPE_MIN_DETECTION_CONFIDENCE if min_detection_confidence is None else min_detection_confidence
        )
        self.min_tracking_confidence = (
            settings.MEDIAPIPE_MIN_TRACKING_CONFIDENCE if min_tracking_confidence is None else min_tracking_confidence
        )
        self._detector = None
        self._uses_tasks_api = self.model_path is not None
        self._last_timestamp_ms = -1

        try:
            import mediapipe as mp
        except ImportError as e:
            raise LandmarkSourceUnavailable(f"MediaPipe not available: {e}") from e
        self._mp = mp

        try:
            if self._uses_tasks_api:
                from mediapipe.tasks import python as mp_python
                from mediapipe.tasks.python import vision

                options = vision.PoseLandmarkerOptions(
                    base_options=mp_python.BaseOptions(model_asset_path=self.model_path),
                    running_mode=vision.RunningMode.VIDEO,
                    num_poses=1,
                    min_pose_detection_confidence=float(self.min_detection_confidence),
                    min_tracking_confidence=float(self.min_tracking_confidence),
                )
                self._detector = vision.PoseLandmarker.create_from_options(options)
            else:
                solutions = getattr(mp, "solutions", None)
                if solutions is None:
                    raise LandmarkSourceUnavailable(
                        "This MediaPipe build has no legacy Pose solution; "
                        "set MEDIAPIPE_POSE_MODEL_PATH to a PoseLandmarker .task model"
                    )
                self._detector = solutions.pose.Pose(
                    static_image_mode=False,
                    model_complexity=int(self.model_complexity),
                    smooth_landmarks=True,
                    enable_segmentation=False,
                    min_detection_confidence=float(self.min_detection_confidence),
                    min_tracking_confidence=float(self.min_tracking_confidence),
                )
        except LandmarkSourceUnavailable:
            raise
        except Exception as e:
            raise LandmarkSourceUnavailable(f"Failed to initialize MediaPipe Pose: {e}") from e

        logger.info(f"✅ MediaPipe pose detector initialized ({'tasks' if self._uses_tasks_api else 'legacy'} API)")

    def name(self) -> str:
        return "mediapipe"

    def detect(self, image: Optional[np.ndarray], timestamp: float) -> Optional[LandmarkFrame]:
        if image is None or self._detector is None:
            return None

        try:
            if self._uses_tasks_api:
                points = self._detect_tasks(image, timestamp)
            else:
                points = self._detect_legacy(image)
        except Exception as e:
            logger.warning(f"Pose detection error: {e}")
            return None

        if not points:
            return None
        return LandmarkFrame(landmarks=points, timestamp=timestamp, source=self.name())

    def _detect_legacy(self, image: np.ndarray) -> Optional[Dict[int, Landmark]]:
        results = self._detector.process(image)
        if not results or not results.pose_landmarks:
            return None
        return {
            idx: Landmark(x=lm.x, y=lm.y, z=lm.z, visibility=lm.visibility)
            for idx, lm in enumerate(results.pose_landmarks.landmark)
        }

    def _detect_tasks(self, image: np.ndarray, timestamp: float) -> Optional[Dict[int, Landmark]]:
        # VIDEO mode requires strictly increasing timestamps
        timestamp_ms = max(int(timestamp * 1000), self._last_timestamp_ms + 1)
        self._last_timestamp_ms = timestamp_ms

        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=np.ascontiguousarray(image))
        result = self._detector.detect_for_video(mp_image, timestamp_ms)
        if not result.pose_landmarks:
            return None
        return {
            idx: Landmark(x=lm.x, y=lm.y, z=lm.z, visibility=lm.visibility)
            for idx, lm in enumerate(result.pose_landmarks[0])
        }

    def close(self) -> None:
        if self._detector is not None and hasattr(self._detector, "close"):
            self._detector.close()
        self._detector = None


# ═══════════════════════════════════════════════════════════════════════════════
# SYNTHETIC
# ═══════════════════════════════════════════════════════════════════════════════

# Neutral standing pose, normalized image coordinates
_BASE_POSE: Dict[JointType, tuple] = {
    JointType.NOSE: (0.50, 0.20),
    JointType.LEFT_EYE_INNER: (0.51, 0.19),
    JointType.LEFT_EYE: (0.52, 0.19),
    JointType.LEFT_EYE_OUTER: (0.53, 0.19),
    JointType.RIGHT_EYE_INNER: (0.49, 0.19),
    JointType.RIGHT_EYE: (0.48, 0.19),
    JointType.RIGHT_EYE_OUTER: (0.47, 0.19),
    JointType.LEFT_EAR: (0.54, 0.20),
    JointType.RIGHT_EAR: (0.46, 0.20),
    JointType.MOUTH_LEFT: (0.51, 0.22),
    JointType.MOUTH_RIGHT: (0.49, 0.22),
    JointType.LEFT_SHOULDER: (0.58, 0.30),
    JointType.RIGHT_SHOULDER: (0.42, 0.30),
    JointType.LEFT_ELBOW: (0.61, 0.42),
    JointType.RIGHT_ELBOW: (0.39, 0.42),
    JointType.LEFT_WRIST: (0.62, 0.53),
    JointType.RIGHT_WRIST: (0.38, 0.53),
    JointType.LEFT_PINKY: (0.62, 0.55),
    JointType.RIGHT_PINKY: (0.38, 0.55),
    JointType.LEFT_INDEX: (0.63, 0.55),
    JointType.RIGHT_INDEX: (0.37, 0.55),
    JointType.LEFT_THUMB: (0.62, 0.54),
    JointType.RIGHT_THUMB: (0.38, 0.54),
    JointType.LEFT_HIP: (0.55, 0.55),
    JointType.RIGHT_HIP: (0.45, 0.55),
    JointType.LEFT_KNEE: (0.56, 0.72),
    JointType.RIGHT_KNEE: (0.44, 0.72),
    JointType.LEFT_ANKLE: (0.56, 0.88),
    JointType.RIGHT_ANKLE: (0.44, 0.88),
    JointType.LEFT_HEEL: (0.55, 0.90),
    JointType.RIGHT_HEEL: (0.45, 0.90),
    JointType.LEFT_FOOT_INDEX: (0.58, 0.92),
    JointType.RIGHT_FOOT_INDEX: (0.42, 0.92),
}

# How much of the hip displacement each joint follows
_UPPER_BODY = {
    JointType.NOSE, JointType.LEFT_EYE_INNER, JointType.LEFT_EYE, JointType.LEFT_EYE_OUTER,
    JointType.RIGHT_EYE_INNER, JointType.RIGHT_EYE, JointType.RIGHT_EYE_OUTER,
    JointType.LEFT_EAR, JointType.RIGHT_EAR, JointType.MOUTH_LEFT, JointType.MOUTH_RIGHT,
}
_TORSO = {
    JointType.LEFT_SHOULDER, JointType.RIGHT_SHOULDER, JointType.LEFT_ELBOW, JointType.RIGHT_ELBOW,
    JointType.LEFT_WRIST, JointType.RIGHT_WRIST, JointType.LEFT_PINKY, JointType.RIGHT_PINKY,
    JointType.LEFT_INDEX, JointType.RIGHT_INDEX, JointType.LEFT_THUMB, JointType.RIGHT_THUMB,
}
_KNEES = {JointType.LEFT_KNEE, JointType.RIGHT_KNEE}
_HIPS = {JointType.LEFT_HIP, JointType.RIGHT_HIP}


def _follow_factor(joint: JointType) -> float:
    if joint in _HIPS:
        return 1.0
    if joint in _KNEES:
        return 0.5
    if joint in _TORSO:
        return 0.5
    if joint in _UPPER_BODY:
        return 0.3
    return 0.0


class SyntheticLandmarkSource(LandmarkSource):
    """
    Deterministic pelvic-tilt motion generator.

    The hip center follows `amplitude * sin(2π t / period)` around a neutral
    standing pose; the torso and head follow at reduced gain. The image is
    ignored, only the timestamp drives the pose. Output for a given sequence
    of timestamps is identical across runs (noise is drawn from a seeded
    generator).
    """

    def __init__(
        self,
        period: Optional[float] = None,
        amplitude: Optional[float] = None,
        noise: float = 0.0,
        seed: int = 0,
        dropout_every: int = 0,
    ):
        self.period = settings.SYNTHETIC_TILT_PERIOD_SECONDS if period is None else period
        self.amplitude = settings.SYNTHETIC_TILT_AMPLITUDE if amplitude is None else amplitude
        if self.period <= 0:
            raise ValueError("period must be positive")
        self.noise = noise
        self.dropout_every = dropout_every
        self._rng = np.random.default_rng(seed)
        self._t0: Optional[float] = None
        self._calls = 0

    def name(self) -> str:
        return "synthetic"

    def phase(self, elapsed: float) -> float:
        return math.sin(2 * math.pi * elapsed / self.period)

    def detect(self, image: Optional[np.ndarray], timestamp: float) -> Optional[LandmarkFrame]:
        if self._t0 is None:
            self._t0 = timestamp
        self._calls += 1

        if self.dropout_every and self._calls % self.dropout_every == 0:
            return None

        offset = self.amplitude * self.phase(timestamp - self._t0)
        jitter = self._rng.normal(0.0, self.noise, size=(len(_BASE_POSE), 2)) if self.noise else None

        landmarks = {}
        for i, (joint, (x, y)) in enumerate(_BASE_POSE.items()):
            dy = offset * _follow_factor(joint)
            dx = 0.0
            if jitter is not None:
                dx += float(jitter[i, 0])
                dy += float(jitter[i, 1])
            landmarks[joint.value] = Landmark(x=x + dx, y=y + dy, z=0.0, visibility=0.99)

        return LandmarkFrame(landmarks=landmarks, timestamp=timestamp, source=self.name())


# ═══════════════════════════════════════════════════════════════════════════════
# FACTORY
# ═══════════════════════════════════════════════════════════════════════════════

SOURCE_KINDS = ("auto", "mediapipe", "synthetic")


def create_landmark_source(kind: Optional[str] = None, **kwargs) -> LandmarkSource:
    """
    Build the landmark source for a new session.

    Args:
        kind: "mediapipe", "synthetic" or "auto" (defaults to settings.LANDMARK_SOURCE).
              "auto" tries MediaPipe and falls back to the synthetic generator.
        **kwargs: forwarded to the source constructor

    Raises:
        ValueError: unknown kind
        LandmarkSourceUnavailable: "mediapipe" requested but it cannot start
    """
    kind = (kind or settings.LANDMARK_SOURCE).lower()
    if kind not in SOURCE_KINDS:
        raise ValueError(f"Unknown landmark source '{kind}'. Valid sources: {list(SOURCE_KINDS)}")

    if kind == "synthetic":
        return SyntheticLandmarkSource(**kwargs)

    if kind == "mediapipe":
        return MediaPipeLandmarkSource(**kwargs)

    try:
        return MediaPipeLandmarkSource(**kwargs)
    except LandmarkSourceUnavailable as e:
        logger.warning(f"⚠️ {e}. Using synthetic landmark source.")
        return SyntheticLandmarkSource()
