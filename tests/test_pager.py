from __future__ import annotations

import unittest

from fakes import CHANNEL_ID, FakeChannelService, SleepRecorder, make_message
from shrinebot.scanner import ChannelUnavailable, FetchTransient, HistoryPager, Pacer, RateLimited


def _history(count: int):
    return [make_message(i, author_id=10 + i % 3) for i in range(1, count + 1)]


class HistoryPagerTests(unittest.IsolatedAsyncioTestCase):
    def _pager(self, service, page_size=10, fetch_delay=1.0, backoff_max=60.0, default_retry_after=5.0):
        self.sleep = SleepRecorder()
        pacer = Pacer(default_retry_after=default_retry_after, sleep=self.sleep)
        return HistoryPager(service, pacer, page_size=page_size, fetch_delay=fetch_delay, backoff_max=backoff_max)

    async def _walk(self, pager):
        return [page async for page in pager.walk(CHANNEL_ID)]

    async def test_exact_multiple_of_page_size_ends_with_empty_fetch(self):
        service = FakeChannelService(_history(20))
        pages = await self._walk(self._pager(service))

        self.assertEqual(len(service.fetch_calls), 3)
        self.assertEqual([len(p.messages) for p in pages], [10, 10, 0])
        self.assertTrue(pages[-1].exhausted)
        self.assertFalse(pages[0].exhausted)

    async def test_remainder_page_ends_the_walk(self):
        service = FakeChannelService(_history(25))
        pages = await self._walk(self._pager(service))

        self.assertEqual(len(service.fetch_calls), 3)
        self.assertEqual([len(p.messages) for p in pages], [10, 10, 5])
        self.assertTrue(pages[-1].exhausted)

    async def test_cursor_walks_backward_and_pages_are_chronological(self):
        service = FakeChannelService(_history(25))
        pages = await self._walk(self._pager(service))

        self.assertEqual([call[1] for call in service.fetch_calls], [None, 16, 6])
        self.assertEqual([m.id for m in pages[0].messages], list(range(16, 26)))
        self.assertEqual([m.id for m in pages[2].messages], [1, 2, 3, 4, 5])
        all_ids = [m.id for p in pages for m in p.messages]
        self.assertEqual(sorted(all_ids), list(range(1, 26)))

    async def test_empty_channel_is_a_single_fetch(self):
        service = FakeChannelService([])
        pages = await self._walk(self._pager(service))

        self.assertEqual(len(service.fetch_calls), 1)
        self.assertEqual(pages[0].messages, [])
        self.assertTrue(pages[0].exhausted)

    async def test_pauses_between_pages_but_not_before_the_first(self):
        service = FakeChannelService(_history(25))
        await self._walk(self._pager(service, fetch_delay=1.0))

        self.assertEqual(self.sleep.waits, [1.0, 1.0])

    async def test_rate_limit_waits_then_reissues_identical_request(self):
        service = FakeChannelService(_history(5))
        service.fetch_errors = [RateLimited(retry_after=2.5, scope="history")]
        pager = self._pager(service)

        page = await pager.page_messages(CHANNEL_ID, before=None)

        self.assertEqual(len(page.messages), 5)
        self.assertEqual(service.fetch_calls[0], service.fetch_calls[1])
        self.assertGreaterEqual(self.sleep.waits[0], 2.5)
        self.assertEqual(pager.fetch_retries, 0)
        self.assertEqual(pager.pacer.stats.rate_limited_count, 1)

    async def test_rate_limit_without_retry_after_uses_default(self):
        service = FakeChannelService(_history(5))
        service.fetch_errors = [RateLimited(retry_after=None)]
        pager = self._pager(service, default_retry_after=5.0)

        await pager.page_messages(CHANNEL_ID, before=None)

        self.assertEqual(self.sleep.waits, [5.0])

    async def test_transient_failures_back_off_by_doubling(self):
        service = FakeChannelService(_history(5))
        service.fetch_errors = [FetchTransient("boom"), FetchTransient("boom"), FetchTransient("boom")]
        pager = self._pager(service, fetch_delay=1.0, backoff_max=60.0)

        page = await pager.page_messages(CHANNEL_ID, before=None)

        self.assertEqual(len(page.messages), 5)
        self.assertEqual(self.sleep.waits, [2.0, 4.0, 8.0])
        self.assertEqual(pager.fetch_retries, 3)
        self.assertEqual(len(set(service.fetch_calls)), 1)

    async def test_backoff_is_capped(self):
        service = FakeChannelService(_history(5))
        service.fetch_errors = [FetchTransient("boom")] * 4
        pager = self._pager(service, fetch_delay=1.0, backoff_max=3.0)

        await pager.page_messages(CHANNEL_ID, before=None)

        self.assertEqual(self.sleep.waits, [2.0, 3.0, 3.0, 3.0])

    async def test_channel_unavailable_propagates(self):
        service = FakeChannelService(_history(5))
        service.fetch_errors = [ChannelUnavailable("gone")]
        pager = self._pager(service)

        with self.assertRaises(ChannelUnavailable):
            await self._walk(pager)

    def test_page_size_must_be_positive(self):
        with self.assertRaises(ValueError):
            HistoryPager(FakeChannelService(), Pacer(), page_size=0)


if __name__ == "__main__":
    unittest.main()
