from __future__ import annotations

import unittest

from fakes import (
    CHANNEL_ID,
    GUILD_ID,
    OTHER_STICKER_ID,
    ROLE_ID,
    STICKER_ID,
    FakeChannelService,
    FakeClock,
    FakeLedger,
    SleepRecorder,
    make_message,
)
from shrinebot.scanner import (
    BatchClassifier,
    GrantTransient,
    Pacer,
    RateLimited,
    RoleGranter,
    RoleGrantRetryQueue,
    ScanSession,
)
from shrinebot.scanner.session import EntryStatus, ErrorKind

EVENT_ID = "7"


class BatchClassifierTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.service = FakeChannelService(member_ids=(11, 12, 13))
        self.ledger = FakeLedger()
        self.sleep = SleepRecorder()
        self.session = ScanSession(
            guild_id=GUILD_ID,
            channel_id=CHANNEL_ID,
            event_id=EVENT_ID,
            sticker_id=STICKER_ID,
            role_id=ROLE_ID,
            clock=FakeClock(),
        )
        self.processed: set[int] = set()

    def _classifier(self, with_role: bool = True) -> BatchClassifier:
        pacer = Pacer(sleep=self.sleep)
        self.granter = None
        self.queue = None
        if with_role:
            self.granter = RoleGranter(
                self.service,
                self.ledger,
                pacer,
                role_id=ROLE_ID,
                grant_delay=1.0,
            )
            self.queue = RoleGrantRetryQueue(self.granter, pacer, max_attempts=3, round_delay=1.0)
        return BatchClassifier(
            self.ledger,
            pacer,
            sticker_id=STICKER_ID,
            event_id=EVENT_ID,
            granter=self.granter,
            retry_queue=self.queue,
            process_delay=0.25,
        )

    async def _classify(self, messages, **kwargs):
        classifier = self._classifier(**kwargs)
        await classifier.classify_page(messages, self.session, self.processed)
        return classifier

    async def test_first_qualifying_message_per_user_is_acted_upon(self):
        messages = [make_message(i, 11, (STICKER_ID,)) for i in (1, 2, 3)]

        await self._classify(messages)

        self.assertEqual(self.session.matching_stickers, 3)
        self.assertEqual(self.session.roles_assigned, 1)
        self.assertEqual(self.service.grant_calls, [11])
        entries = self.session.matching_sticker_messages
        self.assertEqual([e.processed for e in entries], [True, False, False])
        self.assertEqual(entries[0].status, EntryStatus.PROCESSED)
        self.assertIsNone(entries[1].status)
        self.assertTrue(self.ledger.get(11, EVENT_ID).granted_role)
        self.assertEqual(self.session.unaccounted_for, 2)

    async def test_processed_users_spans_pages(self):
        classifier = self._classifier()
        await classifier.classify_page([make_message(1, 11, (STICKER_ID,))], self.session, self.processed)
        await classifier.classify_page([make_message(2, 11, (STICKER_ID,))], self.session, self.processed)

        self.assertEqual(self.service.grant_calls, [11])
        self.assertEqual(len(self.ledger.create_calls), 1)

    async def test_bot_messages_are_ignored(self):
        await self._classify([make_message(1, 11, (STICKER_ID,), bot=True), make_message(2, 12, bot=True)])

        self.assertEqual(self.session.matching_stickers, 0)
        self.assertEqual(self.session.messages_without_stickers, [])
        self.assertEqual(self.ledger.create_calls, [])

    async def test_plain_and_non_matching_messages_are_listed(self):
        long_text = "x" * 80
        await self._classify(
            [make_message(1, 11, content=long_text), make_message(2, 12, (OTHER_STICKER_ID,))]
        )

        self.assertEqual(len(self.session.messages_without_stickers), 1)
        self.assertEqual(self.session.messages_without_stickers[0].content, "x" * 50 + "...")
        self.assertEqual(len(self.session.non_matching_stickers), 1)
        self.assertEqual(self.session.non_matching_stickers[0].sticker_ids, (OTHER_STICKER_ID,))
        self.assertEqual(self.session.matching_stickers, 0)
        self.assertEqual(self.sleep.waits, [])

    async def test_granted_record_is_an_idempotent_skip(self):
        self.ledger.seed(11, EVENT_ID, granted_role=True)

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.session.already_processed, 1)
        self.assertEqual(self.session.roles_assigned, 0)
        self.assertEqual(self.service.grant_calls, [])
        self.assertEqual(self.ledger.create_calls, [])
        self.assertEqual(self.session.matching_sticker_messages[0].status, EntryStatus.ALREADY_PROCESSED)

    async def test_ungranted_record_resumes_the_grant_without_recreating(self):
        self.ledger.seed(11, EVENT_ID, granted_role=False)

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.ledger.create_calls, [])
        self.assertEqual(self.service.grant_calls, [11])
        self.assertEqual(self.session.roles_assigned, 1)
        self.assertTrue(self.ledger.get(11, EVENT_ID).granted_role)

    async def test_duplicate_race_with_granted_winner_is_already_processed(self):
        self.ledger.race_winners[11] = True

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.session.errors, 0)
        self.assertEqual(self.session.already_processed, 1)
        self.assertEqual(self.service.grant_calls, [])

    async def test_duplicate_race_with_ungranted_winner_still_grants(self):
        self.ledger.race_winners[11] = False

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.session.errors, 0)
        self.assertEqual(self.session.roles_assigned, 1)
        self.assertTrue(self.ledger.get(11, EVENT_ID).granted_role)

    async def test_unknown_member_is_terminal_and_not_queued(self):
        await self._classify([make_message(1, 99, (STICKER_ID,))])

        self.assertEqual(len(self.session.unknown_members), 1)
        self.assertEqual(self.session.unknown_members[0].user_id, 99)
        self.assertEqual(self.session.errors, 1)
        self.assertEqual(self.session.error_log[0].kind, ErrorKind.UNKNOWN_MEMBER)
        self.assertEqual(len(self.queue), 0)
        self.assertEqual(self.session.unaccounted_for, 0)
        self.assertFalse(self.ledger.get(99, EVENT_ID).granted_role)

    async def test_member_already_holding_role_counts_as_already_processed(self):
        self.service.add_member(11, role_ids={ROLE_ID})

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.service.grant_calls, [])
        self.assertEqual(self.session.roles_assigned, 0)
        self.assertEqual(self.session.already_processed, 1)
        self.assertTrue(self.ledger.get(11, EVENT_ID).granted_role)
        self.assertEqual(self.session.matching_sticker_messages[0].status, EntryStatus.ALREADY_HAD_ROLE)

    async def test_transient_grant_failure_is_queued(self):
        self.service.grant_errors[11] = [GrantTransient("HTTP 500")]

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(len(self.queue), 1)
        self.assertEqual(self.queue.items[0].attempts, 1)
        self.assertEqual(self.session.errors, 1)
        self.assertEqual(self.session.error_log[0].kind, ErrorKind.ROLE_ASSIGNMENT)
        self.assertEqual(self.session.matching_sticker_messages[0].status, EntryStatus.QUEUED)
        self.assertFalse(self.ledger.get(11, EVENT_ID).granted_role)

    async def test_inline_rate_limit_is_honoured(self):
        self.service.grant_errors[11] = [RateLimited(retry_after=1.5, scope="roles")]

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.session.roles_assigned, 1)
        self.assertEqual(self.session.errors, 0)
        self.assertEqual(self.service.grant_calls, [11, 11])
        self.assertIn(1.5, self.sleep.waits)

    async def test_repeated_rate_limits_are_waited_out_inline(self):
        self.service.grant_errors[11] = [RateLimited(retry_after=1.0) for _ in range(6)]

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.session.errors, 0)
        self.assertEqual(self.session.error_log, [])
        self.assertEqual(len(self.queue), 0)
        self.assertEqual(self.session.roles_assigned, 1)
        self.assertEqual(self.service.grant_calls, [11] * 7)
        self.assertEqual(self.sleep.waits.count(1.0), 7)
        self.assertTrue(self.ledger.get(11, EVENT_ID).granted_role)

    async def test_rejected_record_is_retried_once_with_cleaned_key(self):
        self.ledger.reject_once.add(11)

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(len(self.ledger.create_calls), 2)
        self.assertEqual(self.session.roles_assigned, 1)
        self.assertEqual(self.session.errors, 0)

    async def test_record_rejected_twice_is_a_validation_error(self):
        self.ledger.reject_always.add(11)

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(len(self.ledger.create_calls), 2)
        self.assertEqual(self.session.errors, 1)
        self.assertEqual(self.session.error_log[0].kind, ErrorKind.VALIDATION)
        self.assertEqual(self.service.grant_calls, [])

    async def test_ledger_outage_is_a_database_error(self):
        self.ledger.fail_find = ConnectionError("db down")

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.session.errors, 1)
        self.assertEqual(self.session.error_log[0].kind, ErrorKind.DATABASE)
        self.assertEqual(self.session.error_log[0].user_id, 11)
        self.assertEqual(self.service.grant_calls, [])

    async def test_failed_ledger_update_after_grant_is_logged(self):
        self.ledger.fail_mark = ConnectionError("db down")

        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.session.roles_assigned, 1)
        self.assertEqual(self.session.errors, 1)
        self.assertEqual(self.session.error_log[0].kind, ErrorKind.DATABASE)

    async def test_without_role_participants_are_only_recorded(self):
        await self._classify([make_message(1, 11, (STICKER_ID,))], with_role=False)

        self.assertEqual(self.service.grant_calls, [])
        self.assertIsNotNone(self.ledger.get(11, EVENT_ID))
        self.assertFalse(self.ledger.get(11, EVENT_ID).granted_role)
        self.assertEqual(self.session.matching_sticker_messages[0].status, EntryStatus.RECORDED)

    async def test_grant_and_processing_delays(self):
        await self._classify([make_message(1, 11, (STICKER_ID,))])

        self.assertEqual(self.sleep.waits, [1.0, 0.25])

    def test_granter_requires_a_retry_queue(self):
        pacer = Pacer()
        granter = RoleGranter(self.service, self.ledger, pacer, role_id=ROLE_ID)
        with self.assertRaises(ValueError):
            BatchClassifier(self.ledger, pacer, STICKER_ID, EVENT_ID, granter=granter)


if __name__ == "__main__":
    unittest.main()
