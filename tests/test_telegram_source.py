from __future__ import annotations

import asyncio
from pathlib import Path
import sys

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pulsewire.config import TelegramConfig
from pulsewire.queue.filters import ListenFilter
from pulsewire.sources.base import ForbiddenError, TransportError, UnauthorizedError
from pulsewire.sources.retry import RetryPolicy
from pulsewire.telegram.poller import UpdatePoller
from pulsewire.telegram.source import TelegramSource

from telegram_payloads import make_update

BOT = {"id": 999, "is_bot": True, "first_name": "Pulse", "username": "pulse_bot"}


class _FakeTransport:
    """Bot API stand-in that records calls."""

    def __init__(self, config, updates=None, get_me_error=None, send_error=None):
        self.config = config
        self.updates = list(updates or [])
        self.get_me_error = get_me_error
        self.send_error = send_error
        self.calls = []
        self.offsets = []
        self.poller = None
        self.closed = False

    async def get_me(self):
        self.calls.append("getMe")
        if self.get_me_error:
            raise self.get_me_error
        return dict(BOT)

    async def set_webhook(self, url, secret_token=None):
        self.calls.append(("setWebhook", url, secret_token))
        return True

    async def delete_webhook(self, drop_pending_updates=False):
        self.calls.append("deleteWebhook")
        return True

    async def get_updates(self, offset, timeout, limit, allowed_updates):
        self.offsets.append(offset)
        if not self.updates:
            if self.poller is not None:
                self.poller.stop()
            return []
        answer = self.updates.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def send_message(self, chat_id, text, reply_to_message_id=None, parse_mode=None):
        self.calls.append(("sendMessage", chat_id, text, reply_to_message_id, parse_mode))
        if self.send_error:
            raise self.send_error
        return {"message_id": 77, "chat": {"id": int(chat_id)}}

    async def close(self):
        self.closed = True


def _source(**config_overrides):
    config = TelegramConfig(bot_token="123:abc", **config_overrides)
    transport = _FakeTransport(config)
    return TelegramSource(config, transport=transport), transport


@pytest.fixture
def recorded_sleep(monkeypatch):
    delays = []

    async def _sleep(seconds: float):
        delays.append(seconds)

    monkeypatch.setattr("pulsewire.telegram.poller.asyncio.sleep", _sleep)
    return delays


async def _drain(source, listen_filter=None):
    source.ingestor.close()
    return [item async for item in source.listen(listen_filter)]


@pytest.mark.asyncio
async def test_start_in_polling_mode_clears_webhook():
    source, transport = _source()

    await source.start()

    assert transport.calls == ["getMe", "deleteWebhook"]
    assert source.poller is not None
    assert source.webhook_url is None


@pytest.mark.asyncio
async def test_start_in_webhook_mode_registers_secret():
    source, transport = _source(webhook_domain="https://bot.example.com/", webhook_token="s3cret")

    await source.start()

    assert transport.calls[1] == ("setWebhook", "https://bot.example.com/telegram/webhook", "s3cret")
    assert source.poller is None


@pytest.mark.asyncio
async def test_rejected_token_is_unauthorized():
    config = TelegramConfig(bot_token="123:abc")
    transport = _FakeTransport(config, get_me_error=ForbiddenError("Forbidden", 403))
    source = TelegramSource(config, transport=transport)

    with pytest.raises(UnauthorizedError):
        await source.start()


@pytest.mark.asyncio
async def test_missing_token_fails_fast():
    config = TelegramConfig()
    source = TelegramSource(config, transport=_FakeTransport(config))

    with pytest.raises(UnauthorizedError):
        await source.start()


@pytest.mark.asyncio
async def test_malformed_payloads_are_discarded_without_stopping_capture():
    source, _ = _source()

    assert not source.handle_update({"message": {"text": "no ids"}})
    assert not source.handle_update("garbage")
    assert source.handle_update(make_update(5))

    items = await _drain(source)

    assert [item.external_id for item in items] == ["-100123-5"]
    assert source.stats["malformed"] == 2


@pytest.mark.asyncio
async def test_listen_builds_items():
    source, _ = _source()
    await source.start()

    source.handle_update(make_update(5, text="hey @pulse_bot"))
    source.handle_update(make_update(6, text=None, chat_username="kenyanews", photo=[{"file_id": "p"}]))
    source.handle_update(make_update(7, text="private", chat_id=42, chat_type="private"))

    mentioned, photo, private = await _drain(source)

    assert mentioned.is_mentioned
    assert mentioned.url == "https://t.me/c/100123/5"
    assert mentioned.authors[0].display_name == "Ann Lee"
    assert mentioned.content_type == "message"

    assert photo.content == "[Non-text message]"
    assert photo.url == "https://t.me/kenyanews/6"
    assert photo.extra["message_type"] == "photo"
    assert not photo.is_mentioned

    assert private.url is None


@pytest.mark.asyncio
async def test_reply_to_bot_counts_as_mention():
    source, _ = _source()
    await source.start()

    reply_to = {
        "message_id": 1,
        "date": 1_700_000_000,
        "chat": {"id": -100123, "type": "supergroup"},
        "from": BOT,
        "text": "earlier",
    }
    source.handle_update(make_update(8, text="thanks", reply_to_message=reply_to))

    (item,) = await _drain(source)
    assert item.is_mentioned


@pytest.mark.asyncio
async def test_listen_applies_filter():
    source, _ = _source()
    for update_id, text in [(1, "/start"), (2, "hi"), (3, "/start again"), (4, "yo")]:
        source.handle_update(make_update(update_id, text=text))

    items = await _drain(source, {"message_types": ["text"], "max_results": 1})

    assert [item.extra["update_id"] for item in items] == [2]


@pytest.mark.asyncio
async def test_send_action_reports_failures_instead_of_raising():
    source, transport = _source()

    ok = await source.send_action("-100123", {"text": "hi", "reply_to_message_id": 5, "parse_mode": "HTML"})
    assert ok.success
    assert ok.message_id == 77
    assert transport.calls[-1] == ("sendMessage", "-100123", "hi", 5, "HTML")

    transport.send_error = ForbiddenError("bot was kicked", 403)
    failed = await source.send_action("-100123", {"text": "hi"})
    assert not failed.success
    assert "kicked" in failed.error

    invalid = await source.send_action("-100123", {"text": ""})
    assert not invalid.success
    assert source.stats["actions_failed"] == 2


@pytest.mark.asyncio
async def test_stop_closes_queue_and_transport():
    source, transport = _source()
    await source.start()

    listener = asyncio.create_task(_collect(source))
    await asyncio.sleep(0)
    await source.stop()

    assert await asyncio.wait_for(listener, timeout=1) == []
    assert transport.closed


async def _collect(source):
    return [item async for item in source.listen()]


@pytest.mark.asyncio
async def test_poller_tracks_offset_and_backs_off(recorded_sleep):
    source, transport = _source()
    transport.updates = [
        [make_update(10), make_update(11)],
        TransportError("connection reset"),
        TransportError("connection reset"),
        [],
    ]
    poller = UpdatePoller(
        transport,
        source.handle_update,
        source.config,
        policy=RetryPolicy(max_attempts=100, base_delay=5.0, max_delay=60.0),
    )
    transport.poller = poller

    await poller.run()

    assert transport.offsets == [0, 12, 12, 12, 12]
    assert recorded_sleep == [5.0, 10.0, 1.0, 1.0]
    assert len(source.ingestor) == 2
    assert poller.stats["errors"] == 2


@pytest.mark.asyncio
async def test_poller_stops_on_permanent_error(recorded_sleep):
    source, transport = _source()
    transport.updates = [UnauthorizedError("Unauthorized", 401)]
    poller = UpdatePoller(transport, source.handle_update, source.config)

    with pytest.raises(UnauthorizedError):
        await poller.run()

    assert not poller.is_running
