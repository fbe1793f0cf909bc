from __future__ import annotations

import logging
import os
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pulsewire.config import PulsewireConfig, TelegramConfig, load_env_file
from pulsewire.logging_config import setup_logging
from pulsewire.sources.retry import RetryPolicy


def test_env_file_does_not_override_environment(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "PULSEWIRE_TEST_A='from-file'\n"
        "PULSEWIRE_TEST_B=\"file-b\"\n"
    )
    monkeypatch.setenv("PULSEWIRE_TEST_A", "from-env")
    monkeypatch.delenv("PULSEWIRE_TEST_B", raising=False)

    load_env_file(str(env_file))

    assert os.environ["PULSEWIRE_TEST_A"] == "from-env"
    assert os.environ["PULSEWIRE_TEST_B"] == "file-b"
    monkeypatch.delenv("PULSEWIRE_TEST_B")


def test_from_env_reads_every_section(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PULSEWIRE_API_KEY", "key")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:abc")
    monkeypatch.setenv("TELEGRAM_WEBHOOK_DOMAIN", "https://bot.example.com")
    monkeypatch.setenv("TELEGRAM_OVERFLOW_POLICY", "reject")
    monkeypatch.setenv("PULSEWIRE_BACKOFF_BASE_S", "2")
    monkeypatch.setenv("PULSEWIRE_CHECKPOINT_EVERY", "0")

    config = PulsewireConfig.from_env()

    assert config.job_api.is_configured()
    assert config.telegram.use_webhook
    assert config.telegram.overflow_policy == "reject"
    assert config.stream.checkpoint_every == 1

    policy = RetryPolicy.from_defaults(config.stream)
    assert list(policy.schedule())[:3] == [2.0, 4.0, 8.0]


def test_polling_mode_without_domain():
    config = TelegramConfig(bot_token="123:abc")
    assert config.is_configured()
    assert not config.use_webhook


def test_setup_logging_quiets_token_leaking_loggers():
    setup_logging(logging.DEBUG)

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("pulsewire").level == logging.DEBUG
