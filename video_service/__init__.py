"""
TELECONSULT+ Video Service

Access tokens, room management and presence tracking for video visits.
"""
