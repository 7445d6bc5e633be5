from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from fakes import (
    OTHER_STICKER_ID,
    STICKER_ID,
    FakeChannelService,
    FakeClock,
    FakeLedger,
    SleepRecorder,
    make_config,
    make_message,
)
from shared.models.shrine_event import ShrineEventConfig
from shrinebot.config import ScanSettings
from shrinebot.scanner import (
    MAX_RETRY_ATTEMPTS,
    ChannelUnavailable,
    FetchTransient,
    GrantTransient,
    RateLimited,
    ScanEngine,
    ScanNotConfigured,
)
from shrinebot.scanner.session import ErrorKind

U1, U2 = 11, 12
PLAIN_AUTHORS = (13, 14)


def example_history():
    """25 messages: U1 uses the event sticker three times, U2 another sticker once."""
    history = []
    for i in range(1, 26):
        if i in (3, 12, 20):
            history.append(make_message(i, U1, (STICKER_ID,)))
        elif i == 15:
            history.append(make_message(i, U2, (OTHER_STICKER_ID,)))
        else:
            history.append(make_message(i, PLAIN_AUTHORS[i % 2]))
    return history


class ProgressRecorder:
    def __init__(self, fail: bool = False):
        self.texts: list[str] = []
        self.fail = fail

    async def notify(self, text: str) -> None:
        self.texts.append(text)
        if self.fail:
            raise RuntimeError("interaction expired")


class ChannelDeletedMidScan(FakeChannelService):
    """Serves the first page, then the channel disappears."""

    async def fetch_page(self, channel_id, *, before, limit):
        if self.fetch_calls:
            self.fetch_calls.append((channel_id, before, limit))
            raise ChannelUnavailable(f"Channel {channel_id}: 404 Not Found")
        return await super().fetch_page(channel_id, before=before, limit=limit)


class MalformedSecondPage(FakeChannelService):
    """Serves the first page, then fails with an error the adapter does not translate."""

    async def fetch_page(self, channel_id, *, before, limit):
        if self.fetch_calls:
            self.fetch_calls.append((channel_id, before, limit))
            raise ValueError("malformed message payload")
        return await super().fetch_page(channel_id, before=before, limit=limit)


class ScanEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.report_dir = Path(self._tmp.name) / "reports"
        self.ledger = FakeLedger()
        self.sleep = SleepRecorder()
        self.service = FakeChannelService(example_history(), member_ids=(U1, U2, *PLAIN_AUTHORS))

    async def asyncTearDown(self):
        self._tmp.cleanup()

    def _engine(self, service=None, **overrides) -> ScanEngine:
        settings = ScanSettings(report_dir=self.report_dir, **overrides)
        return ScanEngine(
            service or self.service,
            self.ledger,
            settings,
            sleep=self.sleep,
            clock=FakeClock(),
        )

    async def test_example_scenario(self):
        session = await self._engine().run(make_config())

        self.assertEqual(len(self.service.fetch_calls), 3)
        self.assertEqual(session.pages_fetched, 3)
        self.assertEqual(session.messages_scanned, 25)
        self.assertEqual(session.matching_stickers, 3)
        self.assertEqual(session.roles_assigned, 1)
        self.assertEqual([u.user_id for u in session.assigned_users], [U1])
        self.assertEqual([m.user_id for m in session.non_matching_stickers], [U2])
        self.assertEqual(len(session.messages_without_stickers), 21)
        self.assertEqual(session.errors, 0)
        self.assertEqual(self.service.grant_calls, [U1])

        processed = [m for m in session.matching_sticker_messages if m.processed]
        self.assertEqual(len(processed), 1)
        # The newest page is walked first, so message 20 is the first one seen
        self.assertTrue(processed[0].link.endswith("/20"))
        self.assertEqual(session.unaccounted_for, 2)

    async def test_second_run_is_idempotent(self):
        self.service.history[6] = make_message(7, 13, (STICKER_ID,))
        engine = self._engine()

        first = await engine.run(make_config())
        second = await engine.run(make_config())

        self.assertEqual(first.roles_assigned, 2)
        self.assertEqual(second.roles_assigned, 0)
        self.assertEqual(second.already_processed, 2)
        self.assertEqual(sorted(self.service.grant_calls), [U1, 13])
        self.assertTrue(all(r.granted_role for r in self.ledger.records.values()))

    async def test_event_id_is_the_config_id(self):
        await self._engine().run(make_config(config_id=42))

        self.assertEqual({key[2] for key in self.ledger.records}, {"42"})

    async def test_explicit_event_id_overrides_config(self):
        await self._engine().run(make_config(), "spring-2026")

        self.assertIsNotNone(self.ledger.get(U1, "spring-2026"))

    async def test_without_role_nothing_is_granted(self):
        session = await self._engine().run(make_config(role_id=None))

        self.assertEqual(self.service.grant_calls, [])
        self.assertEqual(session.roles_assigned, 0)
        self.assertFalse(self.ledger.get(U1, "7").granted_role)

    async def test_failed_grants_are_drained_after_the_walk(self):
        self.service.grant_errors[U1] = [GrantTransient("HTTP 503")]

        session = await self._engine().run(make_config())

        self.assertEqual(session.roles_assigned, 1)
        self.assertEqual(self.service.grant_calls, [U1, U1])
        self.assertEqual(session.errors, 1)
        self.assertEqual(session.error_log[0].kind, ErrorKind.ROLE_ASSIGNMENT)

    async def test_grant_attempts_are_bounded(self):
        self.service.grant_errors[U1] = [GrantTransient("HTTP 503")] * 20

        session = await self._engine().run(make_config())

        self.assertLessEqual(len(self.service.grant_calls), 1 + MAX_RETRY_ATTEMPTS)
        self.assertEqual(len(session.permanent_failures), 1)
        self.assertFalse(self.ledger.get(U1, "7").granted_role)

    async def test_transient_fetch_failures_are_not_errors(self):
        self.service.fetch_errors = [FetchTransient("HTTP 502")]

        session = await self._engine().run(make_config())

        self.assertEqual(session.errors, 0)
        self.assertEqual(session.fetch_retries, 1)
        self.assertEqual(session.messages_scanned, 25)

    async def test_rate_limits_are_summarised(self):
        self.service.fetch_errors = [RateLimited(retry_after=3.0, scope="history")]

        session = await self._engine().run(make_config())

        self.assertEqual(session.errors, 0)
        self.assertEqual(session.rate_limits["rate_limited_count"], 1)
        self.assertEqual(session.rate_limits["rate_limit_wait_seconds"], 3.0)
        self.assertIn(3.0, self.sleep.waits)

    async def test_channel_loss_ends_walk_but_still_drains_queue(self):
        service = ChannelDeletedMidScan(example_history(), member_ids=(U1, U2))
        service.grant_errors[U1] = [GrantTransient("HTTP 503")]

        session = await self._engine(service=service).run(make_config())

        self.assertTrue(session.aborted)
        self.assertEqual(session.pages_fetched, 1)
        self.assertEqual(session.roles_assigned, 1)
        kinds = [e.kind for e in session.error_log]
        self.assertIn(ErrorKind.CHANNEL_UNAVAILABLE, kinds)
        self.assertIsNotNone(session.finished_at)

    async def test_unexpected_walk_error_still_ends_with_a_report(self):
        service = MalformedSecondPage(example_history(), member_ids=(U1, U2))
        service.grant_errors[U1] = [GrantTransient("HTTP 503")]
        engine = self._engine(service=service)

        with self.assertLogs("shrinebot.scanner.engine", "ERROR"):
            session, artifact = await engine.run_and_report(make_config())

        self.assertTrue(session.aborted)
        self.assertEqual(session.roles_assigned, 1)
        self.assertEqual(session.error_log[-1].kind, ErrorKind.FETCH)
        self.assertIn("ValueError", session.error_log[-1].message)
        self.assertIsNotNone(session.finished_at)
        self.assertFalse(artifact.degraded)
        self.assertFalse(engine.busy)

    async def test_progress_is_reported_every_n_pages(self):
        progress = ProgressRecorder()

        await self._engine(progress_every=2).run(make_config(), progress=progress)

        self.assertEqual(len(progress.texts), 1)
        self.assertIn("Scanned 20 messages", progress.texts[0])

    async def test_progress_failures_are_ignored(self):
        progress = ProgressRecorder(fail=True)

        session = await self._engine(progress_every=1).run(make_config(), progress=progress)

        self.assertEqual(len(progress.texts), 3)
        self.assertEqual(session.errors, 0)
        self.assertEqual(session.messages_scanned, 25)

    async def test_incomplete_config_is_refused(self):
        config = ShrineEventConfig(id=1, guild_id=make_config().guild_id, channel_id=None, sticker_id=STICKER_ID)

        with self.assertRaises(ScanNotConfigured):
            await self._engine().run(config)
        self.assertEqual(self.service.fetch_calls, [])

    async def test_run_and_report_writes_the_report(self):
        session, artifact = await self._engine().run_and_report(make_config())

        self.assertFalse(artifact.degraded)
        self.assertEqual(artifact.path.parent, self.report_dir)
        self.assertIn("# Shrine Event Scan Report", artifact.content)
        self.assertIn(f"- **Matching Stickers Found**: {session.matching_stickers}", artifact.content)

    async def test_engine_is_idle_after_a_run(self):
        engine = self._engine()
        await engine.run(make_config())

        self.assertFalse(engine.busy)


if __name__ == "__main__":
    unittest.main()
