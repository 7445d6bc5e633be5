"""Repository layer for the shrine event tables."""

from .participation import (
    DuplicateParticipationError,
    LedgerError,
    LedgerValidationError,
    ParticipationRepository,
)
from .shrine_event import ShrineEventConfigRepository

__all__ = [
    "DuplicateParticipationError",
    "LedgerError",
    "LedgerValidationError",
    "ParticipationRepository",
    "ShrineEventConfigRepository",
]
