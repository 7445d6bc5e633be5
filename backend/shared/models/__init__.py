"""Shared data models for the shrine event services."""

from .shrine_event import ParticipationRecord, ShrineEventConfig

__all__ = [
    "ParticipationRecord",
    "ShrineEventConfig",
]
