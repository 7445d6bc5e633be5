"""Per-run scan state: counters and classified listings."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .models import Participant, ScannedMessage


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorKind:
    FETCH = "FetchError"
    CHANNEL_UNAVAILABLE = "ChannelUnavailable"
    UNKNOWN_MEMBER = "UnknownMember"
    ROLE_ASSIGNMENT = "RoleAssignmentError"
    PERMANENT_ROLE_ASSIGNMENT = "PermanentRoleAssignmentFailure"
    DATABASE = "DatabaseError"
    VALIDATION = "ValidationError"
    PROCESSING = "ProcessingError"


class EntryStatus:
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    ALREADY_HAD_ROLE = "already_had_role"
    RECORDED = "recorded"
    QUEUED = "queued_for_retry"
    UNKNOWN_MEMBER = "unknown_member"
    FAILED = "failed"


@dataclass
class UserEntry:
    user_id: int
    username: str


@dataclass
class UnknownMemberEntry:
    user_id: int
    username: str
    reason: str = "Unknown Member"


@dataclass
class MessageEntry:
    """A listed message (non-matching or marker-less)."""

    user_id: int
    username: str
    link: str
    timestamp: datetime
    sticker_ids: tuple[int, ...] = ()
    content: str = ""


@dataclass
class MatchingEntry:
    """A message carrying the configured sticker. Only one per user is acted upon."""

    user_id: int
    username: str
    link: str
    timestamp: datetime
    processed: bool = False
    status: str | None = None


@dataclass
class ErrorLogEntry:
    timestamp: datetime
    kind: str
    message: str
    user_id: int | None = None
    username: str | None = None
    details: str = ""


@dataclass
class ScanSession:
    """Everything one run observes. Owned by that run, dropped after its report."""

    guild_id: int
    channel_id: int
    event_id: str
    sticker_id: int
    role_id: int | None = None
    clock: Callable[[], datetime] = field(default=utcnow, repr=False)

    messages_scanned: int = 0
    pages_fetched: int = 0
    matching_stickers: int = 0
    roles_assigned: int = 0
    already_processed: int = 0
    errors: int = 0
    fetch_retries: int = 0
    aborted: bool = False
    # Pacer.summary() at the end of the run
    rate_limits: dict[str, Any] = field(default_factory=dict)

    assigned_users: list[UserEntry] = field(default_factory=list)
    unknown_members: list[UnknownMemberEntry] = field(default_factory=list)
    non_matching_stickers: list[MessageEntry] = field(default_factory=list)
    messages_without_stickers: list[MessageEntry] = field(default_factory=list)
    matching_sticker_messages: list[MatchingEntry] = field(default_factory=list)
    error_log: list[ErrorLogEntry] = field(default_factory=list)

    started_at: datetime | None = None
    finished_at: datetime | None = None
    _started_monotonic: float = field(default=0.0, repr=False)
    elapsed_seconds: float = 0.0

    def start(self) -> None:
        self.started_at = self.clock()
        self._started_monotonic = time.monotonic()

    def finish(self) -> None:
        self.finished_at = self.clock()
        self.elapsed_seconds = time.monotonic() - self._started_monotonic

    # -- recording helpers ---------------------------------------------

    def record_error(
        self,
        kind: str,
        message: str,
        participant: Participant | None = None,
        details: str = "",
    ) -> ErrorLogEntry:
        """Count a terminal failure and append it to the error log."""
        entry = ErrorLogEntry(
            timestamp=self.clock(),
            kind=kind,
            message=message,
            user_id=participant.user_id if participant else None,
            username=participant.username if participant else None,
            details=details,
        )
        self.errors += 1
        self.error_log.append(entry)
        return entry

    def record_assigned(self, participant: Participant) -> None:
        self.roles_assigned += 1
        self.assigned_users.append(UserEntry(participant.user_id, participant.username))
        self.mark_entry(participant, EntryStatus.PROCESSED, processed=True)

    def record_unknown_member(self, participant: Participant) -> None:
        self.unknown_members.append(UnknownMemberEntry(participant.user_id, participant.username))
        self.mark_entry(participant, EntryStatus.UNKNOWN_MEMBER)
        self.record_error(ErrorKind.UNKNOWN_MEMBER, "Unknown Member", participant)

    def record_without_sticker(self, message: ScannedMessage) -> None:
        self.messages_without_stickers.append(
            MessageEntry(
                user_id=message.author_id,
                username=message.author_name,
                link=message.link,
                timestamp=message.created_at,
                content=message.preview,
            )
        )

    def record_non_matching(self, message: ScannedMessage) -> None:
        self.non_matching_stickers.append(
            MessageEntry(
                user_id=message.author_id,
                username=message.author_name,
                link=message.link,
                timestamp=message.created_at,
                sticker_ids=message.sticker_ids,
            )
        )

    def record_matching(self, message: ScannedMessage) -> None:
        self.matching_stickers += 1
        self.matching_sticker_messages.append(
            MatchingEntry(
                user_id=message.author_id,
                username=message.author_name,
                link=message.link,
                timestamp=message.created_at,
            )
        )

    def mark_entry(self, participant: Participant, status: str, processed: bool = False) -> None:
        """Set the status of the matching entry for the participant's authoritative message."""
        for entry in self.matching_sticker_messages:
            if entry.user_id == participant.user_id and entry.link == participant.message_link:
                entry.status = status
                entry.processed = entry.processed or processed
                return

    # -- derived values ----------------------------------------------------

    @property
    def accounted_for(self) -> int:
        return self.roles_assigned + self.already_processed + len(self.unknown_members)

    @property
    def unaccounted_for(self) -> int:
        return self.matching_stickers - self.accounted_for

    @property
    def permanent_failures(self) -> list[ErrorLogEntry]:
        return [e for e in self.error_log if e.kind == ErrorKind.PERMANENT_ROLE_ASSIGNMENT]
