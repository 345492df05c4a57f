"""
BLOOMFIT Motion Service - Landmark Types

Body landmark frames in MediaPipe's 33-point BlazePose topology.
Coordinates are normalized to image space ([0, 1] on x and y).
"""

import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence


class JointType(Enum):
    """Body joint indices for pose estimation."""
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


NUM_LANDMARKS = len(JointType)


@dataclass(frozen=True)
class Landmark:
    """A single body landmark. `visibility` is None when the source does not report it."""
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = None

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y) and math.isfinite(self.z)

    def is_visible(self, min_visibility: float) -> bool:
        if self.visibility is None:
            return True
        return self.visibility >= min_visibility

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "z": self.z, "visibility": self.visibility}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Landmark":
        visibility = data.get("visibility")
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            z=float(data.get("z") or 0.0),
            visibility=None if visibility is None else float(visibility),
        )


@dataclass(frozen=True)
class LandmarkFrame:
    """
    One detection cycle's landmarks, keyed by JointType index.

    Frames are immutable; `landmarks` is exposed as a read-only mapping.
    """
    landmarks: Mapping[int, Landmark]
    timestamp: float = 0.0
    source: str = "unknown"

    def __post_init__(self):
        object.__setattr__(self, "landmarks", MappingProxyType(dict(self.landmarks)))

    def __len__(self) -> int:
        return len(self.landmarks)

    def get(self, joint: JointType, min_visibility: float = 0.0) -> Optional[Landmark]:
        """
        Look up a landmark, treating non-finite or low-visibility points as absent.
        """
        landmark = self.landmarks.get(joint.value)
        if landmark is None or not landmark.is_finite():
            return None
        if not landmark.is_visible(min_visibility):
            return None
        return landmark

    def require(self, joints: Iterable[JointType], min_visibility: float = 0.0) -> Optional[Dict[JointType, Landmark]]:
        """Return all requested landmarks, or None if any one is missing."""
        found = {}
        for joint in joints:
            landmark = self.get(joint, min_visibility)
            if landmark is None:
                return None
            found[joint] = landmark
        return found

    @classmethod
    def from_sequence(
        cls,
        points: Sequence[Any],
        timestamp: float = 0.0,
        source: str = "client",
    ) -> "LandmarkFrame":
        """
        Build a frame from an index-ordered sequence of points.

        Each point may be a Landmark, a mapping with x/y/(z)/(visibility) keys,
        or None for an undetected point. Points past index 32 are ignored.
        """
        landmarks = {}
        for idx, point in enumerate(points[:NUM_LANDMARKS]):
            if point is None:
                continue
            if isinstance(point, Landmark):
                landmarks[idx] = point
            else:
                landmarks[idx] = Landmark.from_dict(point)
        return cls(landmarks=landmarks, timestamp=timestamp, source=source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "source": self.source,
            "landmarks": [
                {"id": idx, "name": JointType(idx).name, **lm.to_dict()}
                for idx, lm in sorted(self.landmarks.items())
            ],
        }
