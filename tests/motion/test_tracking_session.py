"""Tests for the tracking session lifecycle, timers and callbacks."""

import pytest

from motion_service.models import (
    MovementDirection,
    PostureScorer,
    RepCounter,
    SessionStatus,
    TooManySessions,
    TrackingSession,
    TrackingSessionManager,
)


class Recorder:
    def __init__(self):
        self.scores = []
        self.counts = []

    def on_posture_update(self, score):
        self.scores.append(score)

    def on_rep_count(self, count):
        self.counts.append(count)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def session(scheduler, recorder):
    return TrackingSession(
        session_id="s1",
        user_id="user-1",
        scheduler=scheduler,
        on_posture_update=recorder.on_posture_update,
        on_rep_count=recorder.on_rep_count,
        scorer=PostureScorer(emit_interval=1.0, scale=200.0, min_visibility=0.5),
        counter=RepCounter(threshold=0.02, debounce_seconds=1.0, min_visibility=0.5),
    )


def test_rep_counting_timeline(session, scheduler, recorder, frame_factory):
    session.start()

    session.process_frame(frame_factory(hip_y=0.50))
    assert session.rep_count == 0

    scheduler.advance(0.033)
    session.process_frame(frame_factory(hip_y=0.55))
    assert session.counter_state.direction == MovementDirection.DOWN
    assert session.rep_count == 0

    scheduler.advance(0.033)
    outcome = session.process_frame(frame_factory(hip_y=0.50))
    assert outcome.rep_completed is True
    assert session.counter_state.direction == MovementDirection.UP
    assert session.rep_count == 1
    assert session.counter_state.rep_in_progress is True
    assert recorder.counts == [1]

    scheduler.advance(0.2)
    session.process_frame(frame_factory(hip_y=0.45))
    assert session.rep_count == 1

    scheduler.advance(1.0)
    assert session.counter_state.rep_in_progress is False
    session.process_frame(frame_factory(hip_y=0.50))
    session.process_frame(frame_factory(hip_y=0.45))
    assert session.rep_count == 2
    assert recorder.counts == [1, 2]


def test_debounce_blocks_second_rep_within_one_second(session, scheduler, recorder, frame_factory):
    session.start()
    for y in (0.50, 0.55, 0.50):
        session.process_frame(frame_factory(hip_y=y))
    assert session.rep_count == 1

    scheduler.advance(0.3)
    session.process_frame(frame_factory(hip_y=0.55))
    session.process_frame(frame_factory(hip_y=0.50))
    assert session.rep_count == 1

    scheduler.advance(0.71)
    session.process_frame(frame_factory(hip_y=0.55))
    session.process_frame(frame_factory(hip_y=0.50))
    assert session.rep_count == 2
    assert recorder.counts == [1, 2]


def test_debounce_release_is_a_pending_timer(session, scheduler, frame_factory):
    session.start()
    for y in (0.50, 0.55, 0.50):
        session.process_frame(frame_factory(hip_y=y))

    assert session.pending_timers == 1
    assert scheduler.pending == 1

    scheduler.advance(1.0)
    assert session.pending_timers == 0
    assert session.counter_state.rep_in_progress is False


def test_posture_updates_at_most_once_per_second(session, scheduler, recorder, frame_factory):
    session.start()
    frame = frame_factory(nose_y=0.5, shoulder_y=0.3, hip_y=0.1)

    # bursty delivery: 30 frames at once, silence, then a trickle
    for _ in range(30):
        session.process_frame(frame)
    scheduler.advance(2.5)
    for _ in range(5):
        session.process_frame(frame)
        scheduler.advance(0.3)

    assert recorder.scores == [80, 80, 80]


def test_scorer_and_counter_are_independent(session, scheduler, recorder, frame_factory):
    session.start()

    # no nose: counter still runs
    for y in (0.50, 0.55, 0.50):
        session.process_frame(frame_factory(hip_y=y, nose_y=None))
    assert session.rep_count == 1
    assert recorder.scores == []

    # no hips: neither can run (scorer needs hips too)
    previous = session.counter_state.previous_hip_y
    session.process_frame(frame_factory(hip_y=None))
    assert session.counter_state.previous_hip_y == previous
    assert session.frames_dropped == 1


def test_frames_outside_active_session_are_ignored(session, recorder, frame_factory):
    outcome = session.process_frame(frame_factory())
    assert outcome.used is False
    assert session.frames_processed == 0
    assert recorder.scores == []


def test_stop_cancels_timers_and_silences_callbacks(session, scheduler, recorder, frame_factory):
    session.start()
    for y in (0.50, 0.55, 0.50):
        session.process_frame(frame_factory(hip_y=y, nose_y=0.5, shoulder_y=0.3))
    assert scheduler.pending == 1
    scores_before = list(recorder.scores)

    summary = session.stop()

    assert session.status == SessionStatus.STOPPED
    assert scheduler.pending == 0
    assert session.counter_state is None
    assert summary.total_reps == 1

    scheduler.advance(5.0)
    for y in (0.55, 0.50):
        outcome = session.process_frame(frame_factory(hip_y=y, nose_y=0.5, shoulder_y=0.3))
        assert outcome.posture_score is None
        assert outcome.rep_completed is False

    assert recorder.counts == [1]
    assert recorder.scores == scores_before


def test_stop_from_posture_callback_suppresses_rep_callback(scheduler, frame_factory):
    counts = []
    session = TrackingSession(
        session_id="s2",
        user_id="user-1",
        scheduler=scheduler,
        on_rep_count=counts.append,
        scorer=PostureScorer(emit_interval=1.0, scale=200.0, min_visibility=0.5),
        counter=RepCounter(threshold=0.02, debounce_seconds=1.0, min_visibility=0.5),
    )

    def stop_on_late_score(score):
        if scheduler.now() >= 1.0:
            session.stop()

    session.on_posture_update = stop_on_late_score
    session.start()
    session.process_frames([frame_factory(hip_y=0.50), frame_factory(hip_y=0.55)])

    scheduler.advance(1.1)
    outcome = session.process_frame(frame_factory(hip_y=0.50))

    assert outcome.rep_completed is True
    assert session.status == SessionStatus.STOPPED
    assert counts == []
    assert scheduler.pending == 0


def test_process_frames_returns_one_outcome_per_frame(session, frame_factory):
    session.start()

    outcomes = session.process_frames([frame_factory(hip_y=y) for y in (0.50, 0.55, 0.50)] + [None])

    assert len(outcomes) == 4
    assert [o.rep_completed for o in outcomes] == [False, False, True, False]
    assert outcomes[-1].used is False
    assert outcomes[-1].rep_count == 1


def test_stop_twice_returns_same_summary(session, frame_factory):
    assert session.stop() is None

    session.start()
    session.process_frame(frame_factory())
    first = session.stop()
    assert session.stop() is first


def test_restart_allocates_fresh_state(session, scheduler, recorder, frame_factory):
    session.start()
    for y in (0.50, 0.55, 0.50):
        session.process_frame(frame_factory(hip_y=y))
    old_state = session.counter_state
    session.stop()

    session.start()
    assert session.rep_count == 0
    assert session.counter_state is not old_state
    assert session.counter_state.previous_hip_y is None
    assert session.pending_timers == 0

    # a cancelled timer from the first run cannot clear the new flag
    for y in (0.50, 0.55, 0.50):
        session.process_frame(frame_factory(hip_y=y))
    assert session.counter_state.rep_in_progress is True
    scheduler.advance(0.5)
    assert session.counter_state.rep_in_progress is True
    assert recorder.counts == [1, 1]


def test_summary_totals(session, scheduler, frame_factory):
    session.start()
    session.process_frame(frame_factory(nose_y=0.5, shoulder_y=0.3, hip_y=0.10))
    session.process_frame(None)
    session.process_frame(frame_factory(hip_y=None, nose_y=None, shoulder_y=None))
    scheduler.advance(1.5)
    session.process_frame(frame_factory(nose_y=0.6, shoulder_y=0.3, hip_y=0.10))
    scheduler.advance(0.5)

    summary = session.stop()

    assert summary.frames_processed == 4
    assert summary.frames_dropped == 2
    assert summary.posture_emissions == 2
    assert summary.avg_posture_score == pytest.approx(70.0)
    assert summary.last_posture_score == 60
    assert summary.duration_seconds == pytest.approx(2.0)
    assert summary.to_dict()["session_id"] == "s1"


def test_to_dict_reports_live_state(session, frame_factory):
    session.start()
    session.process_frame(frame_factory(hip_y=0.5))

    data = session.to_dict()

    assert data["status"] == "active"
    assert data["rep_count"] == 0
    assert data["direction"] == "none"
    assert data["frames_processed"] == 1


# ═══════════════════════════════════════════════════════════════════════════════
# SESSION MANAGER
# ═══════════════════════════════════════════════════════════════════════════════

def test_manager_creates_started_sessions(scheduler):
    manager = TrackingSessionManager(max_sessions=5)

    session = manager.create_session("user-1", scheduler=scheduler)

    assert session.is_active
    assert manager.get_session(session.session_id) is session
    assert manager.active_count == 1
    assert manager.list_sessions()[0]["user_id"] == "user-1"


def test_manager_stop_removes_session(scheduler, frame_factory):
    manager = TrackingSessionManager(max_sessions=5)
    session = manager.create_session("user-1", scheduler=scheduler)
    session.process_frame(frame_factory())

    summary = manager.stop_session(session.session_id)

    assert summary.frames_processed == 1
    assert manager.get_session(session.session_id) is None
    assert manager.stop_session(session.session_id) is None


def test_manager_enforces_session_limit(scheduler):
    manager = TrackingSessionManager(max_sessions=2)
    manager.create_session("a", scheduler=scheduler)
    manager.create_session("b", scheduler=scheduler)

    with pytest.raises(TooManySessions):
        manager.create_session("c", scheduler=scheduler)

    assert manager.stop_all() == 2
    assert manager.active_count == 0
