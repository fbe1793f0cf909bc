"""
Pulsewire Configuration

Loads API credentials and stream tuning from environment variables
or .env files. NEVER hardcode credentials in source code.
"""

from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger("pulsewire.config")


def load_env_file(env_path: Optional[str] = None) -> None:
    """
    Load environment variables from a .env file.

    Existing environment variables always win over file values.
    """
    if env_path is None:
        env_path = Path.cwd() / ".env"
    else:
        env_path = Path(env_path)

    if not env_path.exists():
        logger.debug(f"No .env file found at {env_path}")
        return

    try:
        with open(env_path, 'r') as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if '=' in line:
                    key, value = line.split('=', 1)
                    key = key.strip()
                    value = value.strip().strip('"').strip("'")
                    if key not in os.environ:
                        os.environ[key] = value
        logger.info(f"Loaded environment from {env_path}")
    except OSError as e:
        logger.warning(f"Failed to load .env file: {e}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass
class JobApiConfig:
    """Asynchronous search API configuration."""
    base_url: str = "https://data.masa.ai/api/v1"
    api_key: str = ""
    timeout_s: float = 30.0

    @classmethod
    def from_env(cls) -> "JobApiConfig":
        """Load from environment variables."""
        load_env_file()
        return cls(
            base_url=os.getenv("PULSEWIRE_API_BASE_URL", "https://data.masa.ai/api/v1"),
            api_key=os.getenv("PULSEWIRE_API_KEY", ""),
            timeout_s=float(os.getenv("PULSEWIRE_API_TIMEOUT_S", "30")),
        )

    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class TelegramConfig:
    """Telegram Bot API configuration."""
    bot_token: str = ""

    # Webhook mode when a domain is set, manual polling otherwise
    webhook_domain: str = ""
    webhook_token: str = ""

    poll_timeout_s: int = 30
    max_updates_per_poll: int = 100
    request_timeout_s: float = 45.0

    queue_size: int = 1000
    overflow_policy: str = "drop_oldest"

    @classmethod
    def from_env(cls) -> "TelegramConfig":
        load_env_file()
        return cls(
            bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            webhook_domain=os.getenv("TELEGRAM_WEBHOOK_DOMAIN", ""),
            webhook_token=os.getenv("TELEGRAM_WEBHOOK_TOKEN", ""),
            poll_timeout_s=int(os.getenv("TELEGRAM_POLL_TIMEOUT_S", "30")),
            max_updates_per_poll=int(os.getenv("TELEGRAM_MAX_UPDATES_PER_POLL", "100")),
            request_timeout_s=float(os.getenv("TELEGRAM_REQUEST_TIMEOUT_S", "45")),
            queue_size=max(1, int(os.getenv("TELEGRAM_QUEUE_SIZE", "1000"))),
            overflow_policy=os.getenv("TELEGRAM_OVERFLOW_POLICY", "drop_oldest"),
        )

    @property
    def use_webhook(self) -> bool:
        return bool(self.webhook_domain)

    def is_configured(self) -> bool:
        return bool(self.bot_token)


@dataclass
class StreamDefaults:
    """Backoff, paging and checkpoint tuning shared by job-poll streams."""

    # Job status backoff: 3s doubling, capped per sleep, ~30 checks
    backoff_base_delay_s: float = 3.0
    backoff_max_delay_s: float = 60.0
    backoff_max_attempts: int = 30
    backoff_jitter: bool = False

    backfill_page_size: int = 100
    live_page_size: int = 50
    gap_page_size: int = 20
    live_poll_interval_s: float = 60.0

    checkpoint_every: int = 50

    @classmethod
    def from_env(cls) -> "StreamDefaults":
        load_env_file()
        return cls(
            backoff_base_delay_s=float(os.getenv("PULSEWIRE_BACKOFF_BASE_S", "3")),
            backoff_max_delay_s=float(os.getenv("PULSEWIRE_BACKOFF_MAX_S", "60")),
            backoff_max_attempts=int(os.getenv("PULSEWIRE_BACKOFF_MAX_ATTEMPTS", "30")),
            backoff_jitter=_env_bool("PULSEWIRE_BACKOFF_JITTER", False),
            backfill_page_size=int(os.getenv("PULSEWIRE_BACKFILL_PAGE_SIZE", "100")),
            live_page_size=int(os.getenv("PULSEWIRE_LIVE_PAGE_SIZE", "50")),
            gap_page_size=int(os.getenv("PULSEWIRE_GAP_PAGE_SIZE", "20")),
            live_poll_interval_s=float(os.getenv("PULSEWIRE_LIVE_POLL_S", "60")),
            checkpoint_every=max(1, int(os.getenv("PULSEWIRE_CHECKPOINT_EVERY", "50"))),
        )


@dataclass
class PulsewireConfig:
    """
    Master configuration.

    Usage:
        config = PulsewireConfig.from_env()
        if config.telegram.is_configured():
            ...
    """
    job_api: JobApiConfig = field(default_factory=JobApiConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    stream: StreamDefaults = field(default_factory=StreamDefaults)
    database_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "PulsewireConfig":
        """Load all configuration from environment."""
        return cls(
            job_api=JobApiConfig.from_env(),
            telegram=TelegramConfig.from_env(),
            stream=StreamDefaults.from_env(),
            database_url=os.getenv("DATABASE_URL"),
        )
