"""
Shared pytest fixtures: a manually advanced scheduler, landmark frame builders
and MediaPipe test doubles.
"""

import sys
import types
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest

# Add backend root to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from core.config import settings
from core.timers import ScheduledCall, Scheduler
from motion_service.models import JointType, Landmark, LandmarkFrame


class ManualCall(ScheduledCall):
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.fired = False
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Scheduler whose clock only moves when advance() is called."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._calls: List[ManualCall] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualCall:
        call = ManualCall(self._now + delay, callback)
        self._calls.append(call)
        return call

    @property
    def pending(self) -> int:
        return len([c for c in self._calls if not c.fired and not c.cancelled()])

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in time order."""
        target = self._now + seconds
        while True:
            due = [c for c in self._calls if not c.fired and not c.cancelled() and c.when <= target]
            if not due:
                break
            call = min(due, key=lambda c: c.when)
            self._now = max(self._now, call.when)
            call.fired = True
            call.callback()
        self._now = target


def make_frame(
    hip_y: Optional[float] = 0.5,
    nose_y: Optional[float] = 0.2,
    shoulder_y: Optional[float] = 0.3,
    timestamp: float = 0.0,
    visibility: Optional[float] = None,
) -> LandmarkFrame:
    """Build a frame with only the joints the scorer and counter look at."""
    landmarks = {}
    if nose_y is not None:
        landmarks[JointType.NOSE.value] = Landmark(0.5, nose_y, visibility=visibility)
    if shoulder_y is not None:
        landmarks[JointType.LEFT_SHOULDER.value] = Landmark(0.58, shoulder_y, visibility=visibility)
        landmarks[JointType.RIGHT_SHOULDER.value] = Landmark(0.42, shoulder_y, visibility=visibility)
    if hip_y is not None:
        landmarks[JointType.LEFT_HIP.value] = Landmark(0.55, hip_y, visibility=visibility)
        landmarks[JointType.RIGHT_HIP.value] = Landmark(0.45, hip_y, visibility=visibility)
    return LandmarkFrame(landmarks=landmarks, timestamp=timestamp, source="test")


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def frame_factory():
    return make_frame


# ═══════════════════════════════════════════════════════════════════════════════
# MEDIAPIPE TEST DOUBLES
# ═══════════════════════════════════════════════════════════════════════════════

def detector_points(hip_y: float = 0.55) -> List[SimpleNamespace]:
    """33 detector-style landmarks (x/y/z/visibility attributes)."""
    points = [SimpleNamespace(x=0.5, y=0.5, z=0.0, visibility=0.9) for _ in range(33)]
    points[JointType.NOSE.value] = SimpleNamespace(x=0.5, y=0.5, z=-0.1, visibility=0.99)
    for joint in (JointType.LEFT_SHOULDER, JointType.RIGHT_SHOULDER):
        points[joint.value] = SimpleNamespace(x=0.5, y=0.3, z=0.0, visibility=0.99)
    for joint in (JointType.LEFT_HIP, JointType.RIGHT_HIP):
        points[joint.value] = SimpleNamespace(x=0.5, y=hip_y, z=0.0, visibility=0.99)
    return points


class FakeLegacyPose:
    """Stands in for mp.solutions.pose.Pose."""

    def __init__(self, registry: list, **options):
        self.options = options
        self.images = []
        self.fail = False
        self.closed = False
        self.points = detector_points()
        registry.append(self)

    def process(self, image):
        if self.fail:
            raise RuntimeError("graph error")
        self.images.append(image)
        if self.points is None:
            return SimpleNamespace(pose_landmarks=None)
        return SimpleNamespace(pose_landmarks=SimpleNamespace(landmark=self.points))

    def close(self):
        self.closed = True


class FakePoseLandmarker:
    """Stands in for the Tasks PoseLandmarker."""

    def __init__(self, registry: list, options):
        self.options = options
        self.timestamps = []
        self.closed = False
        self.points = detector_points()
        registry.append(self)

    def detect_for_video(self, image, timestamp_ms):
        self.timestamps.append(timestamp_ms)
        return SimpleNamespace(pose_landmarks=[self.points] if self.points else [])

    def close(self):
        self.closed = True


@pytest.fixture
def fake_mediapipe(monkeypatch):
    """
    Install a minimal `mediapipe` package in sys.modules.

    Returns the list every created detector is appended to.
    """
    detectors = []

    mp = types.ModuleType("mediapipe")
    mp.solutions = SimpleNamespace(pose=SimpleNamespace(Pose=lambda **kw: FakeLegacyPose(detectors, **kw)))
    mp.Image = lambda image_format, data: SimpleNamespace(image_format=image_format, data=data)
    mp.ImageFormat = SimpleNamespace(SRGB="srgb")

    tasks = types.ModuleType("mediapipe.tasks")
    tasks_python = types.ModuleType("mediapipe.tasks.python")
    vision = types.ModuleType("mediapipe.tasks.python.vision")
    tasks_python.BaseOptions = lambda model_asset_path: SimpleNamespace(model_asset_path=model_asset_path)
    tasks_python.vision = vision
    tasks.python = tasks_python
    mp.tasks = tasks
    vision.PoseLandmarkerOptions = lambda **kw: SimpleNamespace(**kw)
    vision.RunningMode = SimpleNamespace(VIDEO="video")
    vision.PoseLandmarker = SimpleNamespace(
        create_from_options=lambda options: FakePoseLandmarker(detectors, options)
    )

    monkeypatch.setitem(sys.modules, "mediapipe", mp)
    monkeypatch.setitem(sys.modules, "mediapipe.tasks", tasks)
    monkeypatch.setitem(sys.modules, "mediapipe.tasks.python", tasks_python)
    monkeypatch.setitem(sys.modules, "mediapipe.tasks.python.vision", vision)
    monkeypatch.setattr(settings, "MEDIAPIPE_POSE_MODEL_PATH", None)
    return detectors
