"""
BLOOMFIT Motion Service - Tracking Session

One live tracking session: owns the posture scorer and repetition counter
state, the consumer callbacks and every pending timer. Frames delivered
outside an active session are ignored, and no callback runs after `stop()`.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.config import settings
from core.timers import AsyncioScheduler, Scheduler, TimerGroup

from .landmarks import LandmarkFrame
from .posture_scorer import PostureScorer, ScorerState
from .rep_counter import CounterState, RepCounter

logger = logging.getLogger(__name__)


PostureCallback = Callable[[int], None]
RepCountCallback = Callable[[int], None]


class SessionStatus(str, Enum):
    """Tracking session lifecycle states."""
    IDLE = "idle"
    ACTIVE = "active"
    STOPPED = "stopped"


@dataclass
class FrameOutcome:
    """What a single frame produced."""
    posture_score: Optional[int] = None
    rep_completed: bool = False
    rep_count: int = 0
    used: bool = False


@dataclass
class SessionSummary:
    """End-of-session record handed back by stop()."""
    session_id: str
    user_id: str
    source: str
    started_at: str
    stopped_at: str
    duration_seconds: float
    total_reps: int
    frames_processed: int
    frames_dropped: int
    posture_emissions: int
    avg_posture_score: Optional[float]
    last_posture_score: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "source": self.source,
            "started_at": self.started_at,
            "stopped_at": self.stopped_at,
            "duration_seconds": round(self.duration_seconds, 1),
            "total_reps": self.total_reps,
            "frames_processed": self.frames_processed,
            "frames_dropped": self.frames_dropped,
            "posture_emissions": self.posture_emissions,
            "avg_posture_score": None if self.avg_posture_score is None else round(self.avg_posture_score, 1),
            "last_posture_score": self.last_posture_score,
        }


class TrackingSession:
    """
    Frame-driven posture scoring and repetition counting for one user.

    Usage:
        session = TrackingSession("abc", "user-1", scheduler,
                                  on_posture_update=ui.show_score,
                                  on_rep_count=ui.show_reps)
        session.start()
        for frame in frames:
            session.process_frame(frame)
        summary = session.stop()
    """

    def __init__(
        self,
        session_id: str,
        user_id: str,
        scheduler: Scheduler,
        on_posture_update: Optional[PostureCallback] = None,
        on_rep_count: Optional[RepCountCallback] = None,
        scorer: Optional[PostureScorer] = None,
        counter: Optional[RepCounter] = None,
        source: str = "client",
    ):
        self.session_id = session_id
        self.user_id = user_id
        self.scheduler = scheduler
        self.on_posture_update = on_posture_update
        self.on_rep_count = on_rep_count
        self.scorer = scorer or PostureScorer()
        self.counter = counter or RepCounter()
        self.source = source

        self.status = SessionStatus.IDLE
        self.scorer_state: Optional[ScorerState] = None
        self.counter_state: Optional[CounterState] = None
        self._timers: Optional[TimerGroup] = None

        self.frames_processed = 0
        self.frames_dropped = 0
        self._started_at: Optional[datetime] = None
        self._started_clock: Optional[float] = None
        self._summary: Optional[SessionSummary] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def rep_count(self) -> int:
        return self.counter_state.count if self.counter_state else 0

    @property
    def pending_timers(self) -> int:
        return self._timers.pending_count if self._timers else 0

    # ═══════════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    def start(self) -> None:
        """Allocate fresh state and begin consuming frames. No-op if already active."""
        if self.is_active:
            return

        self.scorer_state = ScorerState()
        self.counter_state = CounterState()
        self._timers = TimerGroup(self.scheduler, name=f"session:{self.session_id}")
        self.frames_processed = 0
        self.frames_dropped = 0
        self._started_at = datetime.now(timezone.utc)
        self._started_clock = self.scheduler.now()
        self._summary = None
        self.status = SessionStatus.ACTIVE

        logger.info(f"▶️ Tracking session {self.session_id} started (user: {self.user_id}, source: {self.source})")

    def stop(self) -> Optional[SessionSummary]:
        """
        Cancel pending timers, discard state and stop consuming frames.

        Returns:
            Session summary (the previous one if already stopped, None if never started)
        """
        if not self.is_active:
            return self._summary

        self.status = SessionStatus.STOPPED
        self._timers.close()
        self._summary = self._build_summary()

        self.scorer_state = None
        self.counter_state = None

        logger.info(
            f"⏹️ Tracking session {self.session_id} stopped "
            f"({self._summary.total_reps} reps, {self._summary.frames_processed} frames)"
        )
        return self._summary

    def _build_summary(self) -> SessionSummary:
        now = datetime.now(timezone.utc)
        scorer_state = self.scorer_state
        return SessionSummary(
            session_id=self.session_id,
            user_id=self.user_id,
            source=self.source,
            started_at=self._started_at.isoformat(),
            stopped_at=now.isoformat(),
            duration_seconds=max(0.0, self.scheduler.now() - self._started_clock),
            total_reps=self.counter_state.count,
            frames_processed=self.frames_processed,
            frames_dropped=self.frames_dropped,
            posture_emissions=scorer_state.emissions,
            avg_posture_score=scorer_state.average_emitted_score,
            last_posture_score=scorer_state.last_emitted_score,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # FRAME PROCESSING
    # ═══════════════════════════════════════════════════════════════════════════

    def process_frame(self, frame: Optional[LandmarkFrame]) -> FrameOutcome:
        """
        Feed one landmark frame (None = no detection this cycle).

        Scorer and counter run independently; either may skip the frame if
        its landmarks are missing.
        """
        if not self.is_active:
            return FrameOutcome()

        self.frames_processed += 1
        if frame is None:
            self.frames_dropped += 1
            return FrameOutcome(rep_count=self.counter_state.count)

        now = self.scheduler.now()
        outcome = FrameOutcome()

        scored_before = self.scorer_state.frames_scored
        score = self.scorer.update(self.scorer_state, frame, now)
        scored = self.scorer_state.frames_scored > scored_before

        counter_state = self.counter_state
        hip_y = self.counter.hip_height(frame)
        if hip_y is not None:
            outcome.rep_completed = self.counter.step(counter_state, hip_y)
            if outcome.rep_completed:
                self._timers.schedule(self.counter.debounce_seconds, lambda: RepCounter.release(counter_state))

        outcome.rep_count = counter_state.count
        outcome.posture_score = score
        outcome.used = scored or hip_y is not None
        if not outcome.used:
            self.frames_dropped += 1
            logger.debug(f"Session {self.session_id}: frame at {frame.timestamp:.3f} had no usable landmarks")

        # a callback may stop the session; nothing fires after that
        if score is not None and self.on_posture_update and self.is_active:
            self.on_posture_update(score)
        if outcome.rep_completed and self.on_rep_count and self.is_active:
            self.on_rep_count(counter_state.count)

        return outcome

    def process_frames(self, frames: List[Optional[LandmarkFrame]]) -> List[FrameOutcome]:
        return [self.process_frame(f) for f in frames]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dict."""
        scorer_state = self.scorer_state
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "source": self.source,
            "status": self.status.value,
            "rep_count": self.rep_count,
            "direction": self.counter_state.direction.value if self.counter_state else None,
            "rep_in_progress": self.counter_state.rep_in_progress if self.counter_state else False,
            "last_posture_score": scorer_state.last_emitted_score if scorer_state else None,
            "frames_processed": self.frames_processed,
            "frames_dropped": self.frames_dropped,
            "pending_timers": self.pending_timers,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "summary": self._summary.to_dict() if self._summary else None,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION MANAGER
# ═══════════════════════════════════════════════════════════════════════════════

class TooManySessions(RuntimeError):
    """Raised when MAX_ACTIVE_SESSIONS is reached."""


class TrackingSessionManager:
    """
    Registry of tracking sessions.

    Features:
    - Session creation with per-session scheduler and callbacks
    - Lookup and status reporting
    - Stop + cleanup with summary
    """

    def __init__(self, max_sessions: Optional[int] = None):
        self.max_sessions = max_sessions or settings.MAX_ACTIVE_SESSIONS
        self.sessions: Dict[str, TrackingSession] = {}

    @property
    def active_count(self) -> int:
        return len([s for s in self.sessions.values() if s.is_active])

    def create_session(
        self,
        user_id: str,
        scheduler: Optional[Scheduler] = None,
        on_posture_update: Optional[PostureCallback] = None,
        on_rep_count: Optional[RepCountCallback] = None,
        source: str = "client",
        start: bool = True,
    ) -> TrackingSession:
        """
        Create (and by default start) a new tracking session.

        Raises:
            TooManySessions: limit of active sessions reached
        """
        if self.active_count >= self.max_sessions:
            raise TooManySessions(f"Maximum of {self.max_sessions} active sessions reached")

        session_id = str(uuid.uuid4())[:8]
        session = TrackingSession(
            session_id=session_id,
            user_id=user_id,
            scheduler=scheduler or AsyncioScheduler(),
            on_posture_update=on_posture_update,
            on_rep_count=on_rep_count,
            source=source,
        )
        self.sessions[session_id] = session
        if start:
            session.start()
        return session

    def get_session(self, session_id: str) -> Optional[TrackingSession]:
        return self.sessions.get(session_id)

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.sessions.values()]

    def stop_session(self, session_id: str) -> Optional[SessionSummary]:
        """Stop a session and drop it from the registry."""
        session = self.sessions.pop(session_id, None)
        if not session:
            return None
        return session.stop()

    def stop_all(self) -> int:
        count = 0
        for session_id in list(self.sessions):
            self.stop_session(session_id)
            count += 1
        return count


# ═══════════════════════════════════════════════════════════════════════════════
# MODULE-LEVEL SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_manager_instance: Optional[TrackingSessionManager] = None


def get_session_manager() -> TrackingSessionManager:
    """Get or create the global session manager instance."""
    global _manager_instance
    if _manager_instance is None:
        _manager_instance = TrackingSessionManager()
    return _manager_instance
