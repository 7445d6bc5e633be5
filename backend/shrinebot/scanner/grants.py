"""The side-effecting half of a scan: resolving members, adding the role, persisting it."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from shared.models.shrine_event import ParticipationRecord

from .errors import RateLimited
from .models import Participant
from .pacing import Pacer
from .remote import ChannelService
from .session import EntryStatus, ErrorKind, ScanSession

logger = logging.getLogger(__name__)


class ParticipationLedger(Protocol):
    async def find(self, guild_id: int, user_id: int, event_id: str) -> ParticipationRecord | None:
        ...

    async def create(self, record: ParticipationRecord) -> ParticipationRecord:
        ...

    async def mark_granted(self, guild_id: int, user_id: int, event_id: str) -> bool:
        ...


class GrantResult(Enum):
    GRANTED = "granted"
    ALREADY_HAD_ROLE = "already_had_role"


class RoleGranter:
    """Grant the event role to one participant.

    Rate limits are honoured inline and the same call is reissued until it
    succeeds or fails some other way; they are never counted as errors.
    UnknownMember and GrantTransient propagate unchanged.
    """

    def __init__(
        self,
        service: ChannelService,
        ledger: ParticipationLedger,
        pacer: Pacer,
        role_id: int,
        grant_delay: float = 1.0,
    ):
        self.service = service
        self.ledger = ledger
        self.pacer = pacer
        self.role_id = role_id
        self.grant_delay = grant_delay

    async def grant(self, participant: Participant) -> GrantResult:
        while True:
            try:
                member = await self.service.fetch_member(participant.guild_id, participant.user_id)
                if member.has_role(self.role_id):
                    return GrantResult.ALREADY_HAD_ROLE
                await self.service.grant_role(member, self.role_id)
                return GrantResult.GRANTED
            except RateLimited as e:
                await self.pacer.honor(e)

    async def complete(
        self,
        session: ScanSession,
        participant: Participant,
        event_id: str,
        result: GrantResult,
    ) -> None:
        """Record a successful grant (or a role the member already held) and persist it."""
        if result is GrantResult.GRANTED:
            session.record_assigned(participant)
            logger.info(f"Assigned role {self.role_id} to {participant.username} ({participant.user_id})")
        else:
            session.already_processed += 1
            session.mark_entry(participant, EntryStatus.ALREADY_HAD_ROLE, processed=True)

        try:
            await self.ledger.mark_granted(participant.guild_id, participant.user_id, event_id)
        except Exception as e:
            logger.error(f"Ledger update failed for {participant.username} ({participant.user_id}): {e}")
            session.record_error(
                ErrorKind.DATABASE,
                f"Role held but ledger update failed: {e}",
                participant,
            )

        if result is GrantResult.GRANTED:
            await self.pacer.pause(self.grant_delay)
