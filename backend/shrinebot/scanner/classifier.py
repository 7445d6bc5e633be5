"""Per-message classification and idempotent ledger writes."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from shared.models.shrine_event import ParticipationRecord
from shared.repositories.participation import (
    DuplicateParticipationError,
    LedgerValidationError,
    clean_key,
)

from .errors import GrantTransient, UnknownMember
from .grants import ParticipationLedger, RoleGranter
from .models import Participant, ScannedMessage
from .pacing import Pacer
from .retry_queue import RoleGrantRetryQueue
from .session import EntryStatus, ErrorKind, ScanSession

logger = logging.getLogger(__name__)


class BatchClassifier:
    """Classify messages in chronological order and act on each qualifying author once.

    The first qualifying message of an author encountered in a run is the
    one acted upon; pages arrive newest first, so that is the message on the
    newest page that has one. ``processed_users`` is shared across every
    page of a run. A ledger record with ``granted_role = TRUE`` is an
    idempotent skip; one with ``granted_role = FALSE`` is a grant left
    unfinished by an earlier run and is resumed, never recreated.
    """

    def __init__(
        self,
        ledger: ParticipationLedger,
        pacer: Pacer,
        sticker_id: int,
        event_id: str,
        granter: RoleGranter | None = None,
        retry_queue: RoleGrantRetryQueue | None = None,
        process_delay: float = 0.25,
    ):
        if granter is not None and retry_queue is None:
            raise ValueError("a granter needs a retry queue")
        self.ledger = ledger
        self.pacer = pacer
        self.sticker_id = sticker_id
        self.event_id = event_id
        self.granter = granter
        self.retry_queue = retry_queue
        self.process_delay = process_delay

    async def classify_page(
        self,
        messages: Iterable[ScannedMessage],
        session: ScanSession,
        processed_users: set[int],
    ) -> None:
        for message in messages:
            try:
                await self._classify(message, session, processed_users)
            except Exception as e:
                logger.exception(f"Error processing message {message.id}: {e}")
                session.record_error(
                    ErrorKind.PROCESSING,
                    str(e) or type(e).__name__,
                    Participant.from_message(message),
                    details=f"message {message.id} ({type(e).__name__})",
                )

    async def _classify(
        self, message: ScannedMessage, session: ScanSession, processed_users: set[int]
    ) -> None:
        if message.author_bot:
            return

        if not message.sticker_ids:
            session.record_without_sticker(message)
            return

        if self.sticker_id not in message.sticker_ids:
            session.record_non_matching(message)
            return

        session.record_matching(message)
        if message.author_id in processed_users:
            return

        participant = Participant.from_message(message)
        record = await self._ensure_record(participant, session)
        if record is None:
            return

        processed_users.add(participant.user_id)
        if record.granted_role:
            session.already_processed += 1
            session.mark_entry(participant, EntryStatus.ALREADY_PROCESSED, processed=True)
            return

        if self.granter is None or self.retry_queue is None:
            session.mark_entry(participant, EntryStatus.RECORDED)
        else:
            await self._grant(self.granter, self.retry_queue, participant, record.event_id, session)
        await self.pacer.pause(self.process_delay)

    async def _grant(
        self,
        granter: RoleGranter,
        retry_queue: RoleGrantRetryQueue,
        participant: Participant,
        event_id: str,
        session: ScanSession,
    ) -> None:
        try:
            result = await granter.grant(participant)
        except UnknownMember:
            logger.warning(f"Error assigning role to {participant.username}: Unknown Member")
            session.record_unknown_member(participant)
            return
        except GrantTransient as e:
            logger.error(f"Error assigning role to {participant.username}: {e}")
            session.record_error(ErrorKind.ROLE_ASSIGNMENT, str(e), participant)
            session.mark_entry(participant, EntryStatus.QUEUED)
            retry_queue.enqueue(participant, event_id)
            return

        await granter.complete(session, participant, event_id, result)

    async def _ensure_record(
        self, participant: Participant, session: ScanSession
    ) -> ParticipationRecord | None:
        """Find or create the participant's ledger record. None means the ledger failed."""
        try:
            existing = await self.ledger.find(participant.guild_id, participant.user_id, self.event_id)
            if existing is not None:
                return existing
            return await self._create(
                ParticipationRecord(participant.guild_id, participant.user_id, self.event_id),
                participant,
                session,
            )
        except Exception as e:
            logger.error(f"Database error for {participant.username} in event {self.event_id}: {e}")
            session.record_error(ErrorKind.DATABASE, str(e) or type(e).__name__, participant)
            return None

    async def _create(
        self,
        record: ParticipationRecord,
        participant: Participant,
        session: ScanSession,
        cleaned: bool = False,
    ) -> ParticipationRecord | None:
        try:
            return await self.ledger.create(record)
        except DuplicateParticipationError:
            # Another writer created it first; its state is authoritative.
            logger.info(f"Duplicate entry detected for {participant.username} in event {record.event_id}")
            existing = await self.ledger.find(record.guild_id, record.user_id, record.event_id)
            return existing or record
        except LedgerValidationError as e:
            if cleaned:
                session.record_error(
                    ErrorKind.VALIDATION,
                    "Participation record rejected after cleaning",
                    participant,
                    details=str(e),
                )
                return None
            logger.warning(f"Ledger rejected record for {participant.username} ({e}), retrying with cleaned data")
            guild_id, user_id, event_id = clean_key(record.guild_id, record.user_id, record.event_id)
            return await self._create(
                ParticipationRecord(guild_id, user_id, event_id),
                participant,
                session,
                cleaned=True,
            )
