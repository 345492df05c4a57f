"""
BLOOMFIT Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "BLOOMFIT"
    DEBUG: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://10.0.2.2:8000"]

    # Landmark source: "auto", "mediapipe" or "synthetic"
    LANDMARK_SOURCE: str = "auto"

    # MediaPipe Pose
    # PoseLandmarker .task asset; legacy Pose solution is used when the file is missing
    MEDIAPIPE_POSE_MODEL_PATH: Optional[str] = "ml_models/pose_landmarker_full.task"
    MEDIAPIPE_MODEL_COMPLEXITY: int = 1
    MEDIAPIPE_MIN_DETECTION_CONFIDENCE: float = 0.5
    MEDIAPIPE_MIN_TRACKING_CONFIDENCE: float = 0.5

    # Landmarks with a known visibility below this are treated as missing
    MIN_LANDMARK_VISIBILITY: float = 0.5

    # Repetition counter
    REP_MOVEMENT_THRESHOLD: float = 0.02  # normalized image units
    REP_DEBOUNCE_SECONDS: float = 1.0

    # Posture scorer
    POSTURE_EMIT_INTERVAL_SECONDS: float = 1.0
    POSTURE_SCALE: float = 200.0

    # Synthetic landmark generator
    SYNTHETIC_FPS: int = 10
    SYNTHETIC_TILT_PERIOD_SECONDS: float = 2.0
    SYNTHETIC_TILT_AMPLITUDE: float = 0.1

    # Sessions
    MAX_ACTIVE_SESSIONS: int = 50

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
