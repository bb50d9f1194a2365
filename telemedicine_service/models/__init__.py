"""
TELECONSULT+ Telemedicine Service Models
"""

from .signaling import (
    AnalysisSession,
    SessionState,
    TelemedicineRelay,
)

__all__ = [
    "AnalysisSession",
    "SessionState",
    "TelemedicineRelay",
]
