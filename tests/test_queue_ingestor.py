from __future__ import annotations

import asyncio
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pulsewire.queue.ingestor import OverflowPolicy, QueueClosedError, QueueIngestor
from pulsewire.queue.models import MalformedUpdateError, entry_from_update

from telegram_payloads import make_update


def _entry(update_id: int, **kwargs):
    return entry_from_update(make_update(update_id, **kwargs))


class TestEntryExtraction:
    """Denormalized filter fields."""

    def test_text_message(self):
        entry = _entry(5, text="/start now")

        assert entry.entry_id == "-100123-5"
        assert entry.chat_type == "supergroup"
        assert entry.message_type == "text"
        assert entry.is_command

    def test_media_message_with_caption(self):
        entry = _entry(6, text=None, photo=[{"file_id": "p1"}], caption="look")

        assert entry.message_type == "photo"
        assert "photo" in entry.content_keys
        assert not entry.is_command

    def test_channel_post_kind(self):
        entry = _entry(7, kind="channel_post", chat_type="channel")
        assert entry.kind == "channel_post"

    def test_update_without_message_is_skipped(self):
        assert entry_from_update({"update_id": 9, "callback_query": {"id": "x"}}) is None

    @pytest.mark.parametrize("payload", [{"message": {}}, "garbage", {"update_id": "nope"}])
    def test_malformed_payloads_raise(self, payload):
        with pytest.raises(MalformedUpdateError):
            entry_from_update(payload)


class TestQueueIngestor:
    """Bounded FIFO capture buffer."""

    @pytest.mark.asyncio
    async def test_fifo_and_at_most_once(self):
        ingestor = QueueIngestor(capacity=10)
        for update_id in range(1, 6):
            assert ingestor.capture(_entry(update_id))

        taken = [(await ingestor.take()).update_id for _ in range(5)]

        assert taken == [1, 2, 3, 4, 5]
        assert ingestor.take_nowait() is None
        assert ingestor.stats["delivered"] == 5

    def test_drop_oldest_keeps_newest_entries(self):
        ingestor = QueueIngestor(capacity=3, policy=OverflowPolicy.DROP_OLDEST)
        for update_id in range(1, 6):
            assert ingestor.capture(_entry(update_id))

        remaining = [ingestor.take_nowait().update_id for _ in range(3)]

        assert remaining == [3, 4, 5]
        assert ingestor.stats["dropped"] == 2
        assert ingestor.stats["captured"] == 5

    def test_reject_keeps_oldest_entries(self):
        ingestor = QueueIngestor(capacity=3, policy="reject")
        accepted = [ingestor.capture(_entry(update_id)) for update_id in range(1, 6)]

        remaining = [ingestor.take_nowait().update_id for _ in range(3)]

        assert accepted == [True, True, True, False, False]
        assert remaining == [1, 2, 3]
        assert ingestor.stats["rejected"] == 2

    @pytest.mark.asyncio
    async def test_take_waits_for_capture(self):
        ingestor = QueueIngestor()
        waiter = asyncio.create_task(ingestor.take())
        await asyncio.sleep(0)
        assert not waiter.done()

        ingestor.capture(_entry(1))

        entry = await asyncio.wait_for(waiter, timeout=1)
        assert entry.update_id == 1

    @pytest.mark.asyncio
    async def test_close_releases_blocked_consumer(self):
        ingestor = QueueIngestor()
        waiter = asyncio.create_task(ingestor.take())
        await asyncio.sleep(0)

        ingestor.close()

        with pytest.raises(QueueClosedError):
            await asyncio.wait_for(waiter, timeout=1)
        assert not ingestor.capture(_entry(2))

    @pytest.mark.asyncio
    async def test_two_consumers_never_share_an_entry(self):
        ingestor = QueueIngestor()
        first = asyncio.create_task(ingestor.take())
        second = asyncio.create_task(ingestor.take())
        await asyncio.sleep(0)

        ingestor.capture(_entry(1))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        done = [t for t in (first, second) if t.done()]
        assert len(done) == 1
        assert done[0].result().update_id == 1

        ingestor.close()
        pending = second if done[0] is first else first
        with pytest.raises(QueueClosedError):
            await asyncio.wait_for(pending, timeout=1)

    @pytest.mark.asyncio
    async def test_entries_drain_then_end_after_close(self):
        ingestor = QueueIngestor()
        ingestor.capture(_entry(1))
        ingestor.capture(_entry(2))
        ingestor.close()

        seen = [entry.update_id async for entry in ingestor.entries()]

        assert seen == [1, 2]

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            QueueIngestor(capacity=0)

    def test_built_outside_a_running_loop(self):
        ingestor = QueueIngestor()

        async def consume():
            waiter = asyncio.create_task(ingestor.take())
            await asyncio.sleep(0)
            ingestor.capture(_entry(1))
            return (await asyncio.wait_for(waiter, timeout=1)).update_id

        assert asyncio.run(consume()) == 1
