# Telegram package for Pulsewire
"""
Telegram Bot API push source: transport, manual polling and the source
that feeds the capture queue.
"""

from .transport import TelegramTransport
from .poller import UpdatePoller
from .source import ActionResult, SendAction, TelegramSource, WEBHOOK_PATH

__all__ = [
    "TelegramTransport",
    "UpdatePoller",
    "ActionResult",
    "SendAction",
    "TelegramSource",
    "WEBHOOK_PATH",
]
