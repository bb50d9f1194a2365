"""
TELECONSULT+ Video Service Models

Presence tracking and completion reports for video rooms.
"""

from .session_tracker import (
    ParticipantRole,
    SessionParticipant,
    VideoSession,
    SessionReport,
    SessionTracker,
    format_duration,
    format_session_report,
)

__all__ = [
    "ParticipantRole",
    "SessionParticipant",
    "VideoSession",
    "SessionReport",
    "SessionTracker",
    "format_duration",
    "format_session_report",
]
