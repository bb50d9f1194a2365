"""
TELECONSULT+ Telemedicine Service

Realtime pairing of doctor and patient for live posture analysis.
"""
