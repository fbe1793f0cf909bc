from __future__ import annotations

import asyncio
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pulsewire.config import TelegramConfig
from pulsewire.db.database import SqlCheckpointStore
from pulsewire.jobs.client import JobDescriptor, JobStatus, SearchResult
from pulsewire.jobs.poller import JobPoller
from pulsewire.pipeline import IngestionPipeline
from pulsewire.sources.retry import RetryPolicy
from pulsewire.state import MemoryCheckpointStore, StreamPhase
from pulsewire.stream.query import StreamQuery
from pulsewire.telegram.source import TelegramSource


class _FakeJobClient:
    def __init__(self, status=JobStatus.IN_PROGRESS, results=None):
        self.status = status
        self.results = results or []
        self.status_calls = 0
        self.closed = False

    async def submit_job(self, source_type, method, query, max_results, next_cursor=None):
        return "job-1"

    async def job_status(self, job_id):
        self.status_calls += 1
        return JobDescriptor(id=job_id, status=self.status)

    async def job_results(self, job_id):
        return list(self.results)

    async def close(self):
        self.closed = True


class _BlockingTransport:
    """getUpdates hangs until cancelled."""

    def __init__(self, config):
        self.config = config
        self.poll_cancelled = False

    async def get_me(self):
        return {"id": 999, "is_bot": True, "username": "pulse_bot"}

    async def delete_webhook(self, drop_pending_updates=False):
        return True

    async def get_updates(self, offset, timeout, limit, allowed_updates):
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.poll_cancelled = True
            raise
        return []

    async def close(self):
        return None


def _result(result_id: str) -> SearchResult:
    return SearchResult(id=result_id, source="twitter", content=f"post {result_id}")


async def _until(condition, rounds: int = 20) -> None:
    for _ in range(rounds):
        if condition():
            return
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_stop_interrupts_backoff_and_flushes_checkpoint():
    client = _FakeJobClient()
    store = MemoryCheckpointStore()
    pipeline = IngestionPipeline(
        poller=JobPoller(client, RetryPolicy(max_attempts=30, base_delay=30.0)),
        store=store,
    )
    await pipeline.start()

    async def sink(item):
        return None

    task = pipeline.add_query(StreamQuery(query="foo"), sink)
    await _until(lambda: client.status_calls > 0)

    await asyncio.wait_for(pipeline.stop(), timeout=1)

    assert task.cancelled()
    assert client.status_calls == 1
    assert client.closed
    assert store.saves == 1
    saved = await store.load_state("twitter:searchbyquery:foo")
    assert saved.phase is StreamPhase.BACKFILL


@pytest.mark.asyncio
async def test_finished_stream_feeds_sink_and_checkpoints():
    client = _FakeJobClient(JobStatus.DONE, results=[_result("105"), _result("104")])
    store = MemoryCheckpointStore()
    received = []

    async def sink(item):
        received.append(item.external_id)

    pipeline = IngestionPipeline(poller=JobPoller(client), store=store, sink=sink)
    await pipeline.start()

    query = StreamQuery(query="foo", max_backfill_results=2, backfill_page_size=2, enable_live=False)
    pipeline.add_query(query)
    await pipeline.wait()

    assert received == ["105", "104"]
    saved = await store.load_state(query.stream_key)
    assert saved.cursor.most_recent_id == "105"
    assert saved.cursor.oldest_seen_id == "104"
    assert saved.backfill_done
    assert saved.phase is StreamPhase.DONE
    assert pipeline.get_stats()["items"] == 2

    await pipeline.stop()


@pytest.mark.asyncio
async def test_duplicate_query_is_refused():
    pipeline = IngestionPipeline(
        poller=JobPoller(_FakeJobClient(), RetryPolicy(base_delay=30.0)),
    )
    await pipeline.start()

    async def sink(item):
        return None

    query = StreamQuery(query="foo")
    pipeline.add_query(query, sink)
    with pytest.raises(ValueError):
        pipeline.add_query(query, sink)

    await pipeline.stop()


def test_add_query_requires_job_api():
    with pytest.raises(RuntimeError):
        IngestionPipeline().add_query(StreamQuery(query="foo"))


@pytest.mark.asyncio
async def test_stop_cancels_polling_and_ends_listeners():
    config = TelegramConfig(bot_token="123:abc")
    transport = _BlockingTransport(config)
    pipeline = IngestionPipeline(telegram=TelegramSource(config, transport=transport))
    await pipeline.start()

    async def collect():
        return [item async for item in pipeline.listen()]

    listener = asyncio.create_task(collect())
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    await asyncio.wait_for(pipeline.stop(), timeout=1)

    assert await asyncio.wait_for(listener, timeout=1) == []
    assert transport.poll_cancelled
    assert not pipeline.is_running


@pytest.mark.asyncio
async def test_send_action_without_telegram_reports_failure():
    result = await IngestionPipeline().send_action("42", {"text": "hi"})
    assert not result.success


@pytest.mark.asyncio
async def test_stream_state_is_observable_while_live():
    client = _FakeJobClient(JobStatus.DONE, results=[_result("105"), _result("104")])
    received = []

    async def sink(item):
        received.append(item.external_id)

    pipeline = IngestionPipeline(poller=JobPoller(client), sink=sink)
    await pipeline.start()

    query = StreamQuery(query="foo", backfill_page_size=5, live_poll_interval_s=3600)
    pipeline.add_query(query)

    def is_live():
        state = pipeline.stream_state(query.stream_key)
        return state is not None and state.phase is StreamPhase.LIVE

    await _until(is_live)
    state = pipeline.stream_state(query.stream_key)

    assert state.phase is StreamPhase.LIVE
    assert state.backfill_done
    assert state.cursor.most_recent_id == "105"
    assert state.cursor.oldest_seen_id == "104"
    assert state.total_processed == len(received) == 4

    # Snapshots are copies; mutating one leaves the stream untouched
    state.cursor.most_recent_id = "1"
    assert pipeline.stream_state(query.stream_key).cursor.most_recent_id == "105"

    await pipeline.stop()
    assert pipeline.stream_state(query.stream_key) is None


@pytest.mark.asyncio
async def test_from_env_wires_database_settings(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PULSEWIRE_API_KEY", "key")
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'pulse.db'}")
    monkeypatch.setenv("DATABASE_ECHO", "true")

    pipeline = IngestionPipeline.from_env()

    assert pipeline.poller is not None
    assert pipeline.telegram is None
    assert isinstance(pipeline.store, SqlCheckpointStore)
    assert pipeline.store.db.config.echo is True

    await pipeline.start()
    assert pipeline.store.db.is_connected
    await pipeline.stop()
    assert not pipeline.store.db.is_connected
