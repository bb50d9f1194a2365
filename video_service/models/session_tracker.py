"""
TELECONSULT+ Video Service - Session Presence Tracker

Follows who is inside each video room (fed by the browser SDK's own
connect / disconnect callbacks) and, once both parties have left, sends a
single completion report to the operations phone.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Callable, Any
from zoneinfo import ZoneInfo

from core.config import settings
from core.notifications import NotificationResult
from core.scheduler import PeriodicTask
from shared.utils import Clock, get_now, isoformat_or_none

logger = logging.getLogger(__name__)


class ParticipantRole(str, Enum):
    """Who a participant is in the visit."""
    DOCTOR = "doctor"
    PATIENT = "patient"


@dataclass
class SessionParticipant:
    identity: str
    role: ParticipantRole
    connected_at: datetime
    disconnected_at: Optional[datetime] = None

    @property
    def is_connected(self) -> bool:
        return self.disconnected_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "role": self.role.value,
            "connected_at": self.connected_at.isoformat(),
            "disconnected_at": isoformat_or_none(self.disconnected_at),
        }


@dataclass
class VideoSession:
    """Presence record of one video room."""
    room_name: str
    created_at: datetime
    participants: Dict[str, SessionParticipant] = field(default_factory=dict)
    completed_at: Optional[datetime] = None

    def all_disconnected(self) -> bool:
        return all(not p.is_connected for p in self.participants.values())

    def is_complete(self) -> bool:
        """Two or more participants seen and every one of them has left."""
        return len(self.participants) >= 2 and self.all_disconnected()

    def find_role(self, role: ParticipantRole) -> Optional[SessionParticipant]:
        return next((p for p in self.participants.values() if p.role == role), None)

    def duration(self) -> timedelta:
        """Earliest connect to latest disconnect, never negative."""
        participants = list(self.participants.values())
        if not participants:
            return timedelta(0)

        earliest = min(p.connected_at for p in participants)
        disconnects = [p.disconnected_at for p in participants if p.disconnected_at]
        if not disconnects:
            return timedelta(0)

        return max(max(disconnects) - earliest, timedelta(0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "room_name": self.room_name,
            "created_at": self.created_at.isoformat(),
            "completed_at": isoformat_or_none(self.completed_at),
            "participants": [p.to_dict() for p in self.participants.values()],
        }


@dataclass
class SessionReport:
    """Completed visit summary, ready to be sent."""
    room_name: str
    doctor: SessionParticipant
    patient: SessionParticipant
    duration: timedelta
    completed_at: datetime
    body: str


def format_duration(duration: timedelta) -> str:
    total_seconds = max(int(duration.total_seconds()), 0)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds}s"


def doctor_code(identity: str) -> str:
    return identity[len("Dr. "):] if identity.startswith("Dr. ") else identity


def format_session_report(
    session: VideoSession,
    doctor: SessionParticipant,
    patient: SessionParticipant,
    generated_at: datetime,
    tz: ZoneInfo
) -> str:
    """Render the WhatsApp text for a completed visit."""

    def clock_time(value: Optional[datetime]) -> str:
        return value.astimezone(tz).strftime("%H:%M:%S") if value else "N/A"

    lines = [
        "📹 *VIDEO CALL COMPLETED*",
        f"📅 {generated_at.astimezone(tz).strftime('%d/%m/%Y %H:%M:%S')}",
        "",
        "🏥 *ROOM*",
        f"• ID: {session.room_name}",
        f"• Duration: {format_duration(session.duration())}",
        "",
        "⚕️ *DOCTOR*",
        f"• Code: {doctor_code(doctor.identity)}",
        f"• Connected: {clock_time(doctor.connected_at)}",
        f"• Disconnected: {clock_time(doctor.disconnected_at)}",
        "",
        "👤 *PATIENT*",
        f"• Name: {patient.identity}",
        f"• Connected: {clock_time(patient.connected_at)}",
        f"• Disconnected: {clock_time(patient.disconnected_at)}",
        "",
        "✅ Session finished successfully",
    ]
    return "\n".join(lines)


ReportCallback = Callable[[SessionReport, NotificationResult], Any]


class SessionTracker:
    """
    In-memory presence tracker for video rooms.

    Features:
    - Participant connect / disconnect bookkeeping, reconnection aware
    - Completion detection (>= 2 participants, all disconnected)
    - At most one completion report per room lifecycle
    - Hourly sweep of records older than the retention window
    """

    def __init__(
        self,
        notifier,
        recipient: Optional[str] = None,
        clock: Clock = get_now,
        retention: Optional[timedelta] = None,
        sweep_interval: Optional[float] = None,
        report_timezone: Optional[str] = None,
        on_report: Optional[ReportCallback] = None
    ):
        """
        Args:
            notifier: Object with ``async send_text(recipient, body) -> NotificationResult``
            recipient: Phone that receives completion reports
            clock: Returns the current aware datetime
            retention: How long a record may live before the sweep drops it
            sweep_interval: Seconds between sweeps once started
            report_timezone: IANA zone used for wall-clock times in reports
            on_report: Called with (report, result) after every dispatch attempt
        """
        self.notifier = notifier
        self.recipient = settings.REPORT_RECIPIENT if recipient is None else recipient
        self.clock = clock
        self.retention = retention or timedelta(hours=settings.SESSION_RETENTION_HOURS)
        self.report_tz = ZoneInfo(report_timezone or settings.REPORT_TIMEZONE)
        self.on_report = on_report

        self._sessions: Dict[str, VideoSession] = {}
        self._sweeper = PeriodicTask(
            "presence-sweep",
            sweep_interval or settings.SESSION_SWEEP_INTERVAL,
            self.clean_old_sessions
        )

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def get_session(self, room_name: str) -> Optional[VideoSession]:
        return self._sessions.get(room_name)

    def track_connected(self, room_name: str, identity: str, role: ParticipantRole):
        """Record that ``identity`` joined ``room_name``."""
        role = ParticipantRole(role)
        now = self.clock()

        session = self._sessions.get(room_name)
        if session is None:
            session = VideoSession(room_name=room_name, created_at=now)
            self._sessions[room_name] = session

        session.participants[identity] = SessionParticipant(
            identity=identity,
            role=role,
            connected_at=now,
        )

        logger.info(
            f"🟢 {identity} ({role.value}) connected to {room_name} "
            f"- participants: {len(session.participants)}"
        )

    def track_disconnected(self, room_name: str, identity: str) -> Optional[asyncio.Task]:
        """
        Record that ``identity`` left ``room_name``.

        Returns the report dispatch task when this disconnect completed the
        session, otherwise None. Unknown rooms are ignored with a warning.
        """
        session = self._sessions.get(room_name)
        if session is None:
            logger.warning(f"⚠️ Disconnect for unknown room {room_name} ({identity}) ignored")
            return None

        participant = session.participants.get(identity)
        if participant is None:
            logger.warning(f"⚠️ Unknown participant {identity} in room {room_name}")
        else:
            participant.disconnected_at = self.clock()
            logger.info(f"🔴 {identity} disconnected from {room_name}")

        if session.completed_at is None and session.is_complete():
            return self._complete_session(session)

        return None

    def _complete_session(self, session: VideoSession) -> Optional[asyncio.Task]:
        logger.info(f"🏁 All participants left {session.room_name}, preparing report")

        doctor = session.find_role(ParticipantRole.DOCTOR)
        patient = session.find_role(ParticipantRole.PATIENT)

        if doctor is None or patient is None:
            # Nothing sent, so a later doctor + patient visit in this room still reports
            logger.warning(f"⚠️ Session {session.room_name} incomplete: missing doctor or patient")
            return None

        now = self.clock()
        report = SessionReport(
            room_name=session.room_name,
            doctor=doctor,
            patient=patient,
            duration=session.duration(),
            completed_at=now,
            body=format_session_report(session, doctor, patient, now, self.report_tz),
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(f"❌ No running event loop, report for room {session.room_name} not sent")
            self._notify_report(report, NotificationResult(success=False, error="No running event loop"))
            return None

        session.completed_at = now
        # Drop the record before any I/O so a slow send cannot report twice
        self._sessions.pop(session.room_name, None)

        return loop.create_task(self._dispatch_report(report))

    async def _dispatch_report(self, report: SessionReport) -> NotificationResult:
        try:
            result = await self.notifier.send_text(self.recipient, report.body)
        except Exception as e:
            result = NotificationResult(success=False, error=str(e))

        if result.success:
            logger.info(f"📨 Report sent for room {report.room_name}")
        else:
            logger.error(f"❌ Report for room {report.room_name} not sent: {result.error}")

        self._notify_report(report, result)
        return result

    def _notify_report(self, report: SessionReport, result: NotificationResult):
        if not self.on_report:
            return
        try:
            self.on_report(report, result)
        except Exception as e:
            logger.error(f"Report callback failed for {report.room_name}: {e}")

    def clean_old_sessions(self) -> int:
        """Remove records created before the retention window, complete or not."""
        cutoff = self.clock() - self.retention
        stale = [name for name, s in self._sessions.items() if s.created_at < cutoff]

        for room_name in stale:
            logger.info(f"🧹 Cleaning old session: {room_name}")
            del self._sessions[room_name]

        return len(stale)

    def start(self):
        self._sweeper.start()

    async def stop(self):
        await self._sweeper.stop()

    def get_stats(self) -> dict:
        return {
            "tracked_rooms": self.session_count,
            "sweeper_running": self._sweeper.is_running
        }
