import asyncio
from datetime import timedelta

from core.notifications import NotificationResult
from video_service.models import ParticipantRole, SessionTracker, format_duration


def make_tracker(notifier, clock, **kwargs) -> SessionTracker:
    return SessionTracker(
        notifier=notifier,
        recipient="+573000000000",
        clock=clock,
        report_timezone="America/Bogota",
        **kwargs
    )


def test_both_parties_leaving_sends_one_report(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. D1", ParticipantRole.DOCTOR)
        clock.advance(seconds=5)
        tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)
        clock.advance(minutes=12, seconds=30)

        assert tracker.track_disconnected("R1", "P1") is None
        clock.advance(seconds=10)
        dispatch = tracker.track_disconnected("R1", "Dr. D1")

        assert dispatch is not None
        return await dispatch

    result = asyncio.run(scenario())

    assert result.success
    assert len(notifier.messages) == 1
    recipient, body = notifier.messages[0]
    assert recipient == "+573000000000"
    assert "R1" in body
    assert "D1" in body
    assert "P1" in body
    assert "12m 45s" in body
    assert tracker.get_session("R1") is None


def test_report_uses_doctor_code_and_local_times(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. 4455", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "Ana", ParticipantRole.PATIENT)
        clock.advance(minutes=1)
        tracker.track_disconnected("R1", "Ana")
        return await tracker.track_disconnected("R1", "Dr. 4455")

    asyncio.run(scenario())

    body = notifier.messages[0][1]
    assert "• Code: 4455" in body
    assert "• Name: Ana" in body
    # 15:00 UTC is 10:00 in Bogota
    assert "• Connected: 10:00:00" in body
    assert "• Disconnected: 10:01:00" in body


def test_no_report_while_someone_is_still_connected(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. D1", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)
        return tracker.track_disconnected("R1", "Dr. D1")

    assert asyncio.run(scenario()) is None
    assert notifier.messages == []
    assert tracker.get_session("R1") is not None


def test_single_participant_never_completes(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. D1", ParticipantRole.DOCTOR)
        return tracker.track_disconnected("R1", "Dr. D1")

    assert asyncio.run(scenario()) is None
    session = tracker.get_session("R1")
    assert session is not None
    assert session.completed_at is None


def test_reconnect_clears_disconnect_and_defers_report(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. D1", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)
        tracker.track_disconnected("R1", "P1")
        clock.advance(seconds=20)
        tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)

        participant = tracker.get_session("R1").participants["P1"]
        assert participant.disconnected_at is None
        assert participant.connected_at == clock.now

        assert tracker.track_disconnected("R1", "Dr. D1") is None
        return await tracker.track_disconnected("R1", "P1")

    result = asyncio.run(scenario())

    assert result.success
    assert len(notifier.messages) == 1


def test_disconnect_for_unknown_room_is_ignored(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    assert tracker.track_disconnected("ghost", "P1") is None
    assert tracker.session_count == 0


def test_disconnect_after_report_does_not_resend(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. D1", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)
        tracker.track_disconnected("R1", "P1")
        await tracker.track_disconnected("R1", "Dr. D1")
        # Duplicate event delivered late by the client SDK
        return tracker.track_disconnected("R1", "Dr. D1")

    assert asyncio.run(scenario()) is None
    assert len(notifier.messages) == 1


def test_two_doctors_without_patient_is_left_unreported(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. A", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "Dr. B", ParticipantRole.DOCTOR)
        tracker.track_disconnected("R1", "Dr. A")
        first = tracker.track_disconnected("R1", "Dr. B")
        second = tracker.track_disconnected("R1", "Dr. B")
        return first, second

    assert asyncio.run(scenario()) == (None, None)
    assert notifier.messages == []

    session = tracker.get_session("R1")
    assert session is not None
    assert session.completed_at is None


def test_real_visit_after_unreported_doctors_is_reported(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. A", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "Dr. B", ParticipantRole.DOCTOR)
        tracker.track_disconnected("R1", "Dr. A")
        assert tracker.track_disconnected("R1", "Dr. B") is None

        clock.advance(minutes=5)
        tracker.track_connected("R1", "Dr. A", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)
        clock.advance(minutes=10)
        tracker.track_disconnected("R1", "Dr. A")
        dispatch = tracker.track_disconnected("R1", "P1")
        assert dispatch is not None
        return await dispatch

    result = asyncio.run(scenario())

    assert result.success
    assert len(notifier.messages) == 1
    recipient, body = notifier.messages[0]
    assert "• Code: A" in body
    assert "• Name: P1" in body
    assert tracker.get_session("R1") is None


def test_completion_outside_event_loop_does_not_raise(notifier, clock) -> None:
    outcomes = []
    tracker = make_tracker(notifier, clock, on_report=lambda report, result: outcomes.append((report, result)))

    tracker.track_connected("R1", "Dr. D1", ParticipantRole.DOCTOR)
    tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)
    tracker.track_disconnected("R1", "Dr. D1")
    dispatch = tracker.track_disconnected("R1", "P1")

    assert dispatch is None
    assert notifier.messages == []
    assert len(outcomes) == 1
    report, result = outcomes[0]
    assert report.room_name == "R1"
    assert not result.success
    assert result.error == "No running event loop"

    session = tracker.get_session("R1")
    assert session is not None
    assert session.completed_at is None


def test_failed_dispatch_still_removes_record(clock, make_notifier) -> None:
    notifier = make_notifier(result=NotificationResult(success=False, error="gateway down"))
    outcomes = []
    tracker = make_tracker(notifier, clock, on_report=lambda report, result: outcomes.append((report, result)))

    async def scenario():
        tracker.track_connected("R1", "Dr. D1", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)
        tracker.track_disconnected("R1", "Dr. D1")
        return await tracker.track_disconnected("R1", "P1")

    result = asyncio.run(scenario())

    assert not result.success
    assert result.error == "gateway down"
    assert tracker.get_session("R1") is None
    assert len(outcomes) == 1
    assert outcomes[0][0].room_name == "R1"


def test_notifier_exception_becomes_failed_result(clock, make_notifier) -> None:
    notifier = make_notifier(error=RuntimeError("boom"))
    tracker = make_tracker(notifier, clock)

    async def scenario():
        tracker.track_connected("R1", "Dr. D1", ParticipantRole.DOCTOR)
        tracker.track_connected("R1", "P1", ParticipantRole.PATIENT)
        tracker.track_disconnected("R1", "Dr. D1")
        return await tracker.track_disconnected("R1", "P1")

    result = asyncio.run(scenario())

    assert not result.success
    assert "boom" in result.error
    assert tracker.get_session("R1") is None


def test_sweep_only_removes_sessions_past_retention(notifier, clock) -> None:
    tracker = make_tracker(notifier, clock)

    tracker.track_connected("old", "Dr. D1", ParticipantRole.DOCTOR)
    clock.advance(hours=23)
    tracker.track_connected("young", "Dr. D2", ParticipantRole.DOCTOR)

    assert tracker.clean_old_sessions() == 0

    clock.advance(hours=1, seconds=1)
    assert tracker.clean_old_sessions() == 1
    assert tracker.get_session("old") is None
    assert tracker.get_session("young") is not None


def test_duration_formatting() -> None:
    assert format_duration(timedelta(seconds=0)) == "0m 0s"
    assert format_duration(timedelta(minutes=61, seconds=7)) == "61m 7s"
    assert format_duration(timedelta(seconds=-3)) == "0m 0s"
