"""Bounded retry of role grants that failed during the history walk."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import GrantTransient, UnknownMember
from .grants import RoleGranter
from .models import Participant
from .pacing import Pacer
from .session import EntryStatus, ErrorKind, ScanSession

logger = logging.getLogger(__name__)

MAX_RETRY_ATTEMPTS = 3


@dataclass
class RetryItem:
    participant: Participant
    event_id: str
    attempts: int = 1


class RoleGrantRetryQueue:
    """Work queue of failed grants, drained in rounds after the scan.

    Each round snapshots the queue, clears it and tries every item once. A
    failed item goes back with ``attempts + 1`` while that stays below
    ``max_attempts``; otherwise it is logged as a permanent failure and never
    seen again. Rounds are separated by ``round_delay``.
    """

    def __init__(
        self,
        granter: RoleGranter,
        pacer: Pacer,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        round_delay: float = 1.0,
    ):
        self.granter = granter
        self.pacer = pacer
        self.max_attempts = max_attempts
        self.round_delay = round_delay
        self._items: list[RetryItem] = []
        self.exhausted: list[RetryItem] = []
        self.rounds = 0

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> tuple[RetryItem, ...]:
        return tuple(self._items)

    def enqueue(self, participant: Participant, event_id: str, attempts: int = 1) -> RetryItem:
        item = RetryItem(participant=participant, event_id=event_id, attempts=attempts)
        self._items.append(item)
        return item

    async def drain(self, session: ScanSession) -> None:
        while self._items:
            batch = list(self._items)
            self._items.clear()
            self.rounds += 1
            logger.info(f"Retrying {len(batch)} role assignment(s), round {self.rounds}")

            for item in batch:
                await self._retry(item, session)

            if self._items:
                await self.pacer.pause(self.round_delay)

    def _give_up(self, item: RetryItem, session: ScanSession, reason: str) -> None:
        self.exhausted.append(item)
        logger.error(
            f"Giving up on role assignment for {item.participant.username} "
            f"after {item.attempts} attempts: {reason}"
        )
        session.record_error(
            ErrorKind.PERMANENT_ROLE_ASSIGNMENT,
            f"Failed after {item.attempts} attempts: {reason}",
            item.participant,
        )
        session.mark_entry(item.participant, EntryStatus.FAILED)

    async def _retry(self, item: RetryItem, session: ScanSession) -> None:
        if item.attempts >= self.max_attempts:
            self._give_up(item, session, "retry budget exhausted")
            return

        try:
            result = await self.granter.grant(item.participant)
        except UnknownMember:
            logger.warning(f"Retry: Unknown Member for {item.participant.username}")
            session.record_unknown_member(item.participant)
            return
        except GrantTransient as e:
            attempts = item.attempts + 1
            logger.error(f"Retry attempt {attempts} failed for {item.participant.username}: {e}")
            if attempts < self.max_attempts:
                self._items.append(RetryItem(item.participant, item.event_id, attempts))
            else:
                self._give_up(RetryItem(item.participant, item.event_id, attempts), session, str(e))
            return

        await self.granter.complete(session, item.participant, item.event_id, result)
