"""Alert batching, formatting and Telegram delivery."""

from propalert.notifiers.batcher import DEFAULT_BATCH_CAP, NotificationBatcher
from propalert.notifiers.formatter import (
    escape_mdv2,
    escape_url,
    format_batch,
    format_failure,
    format_flush_failure,
)
from propalert.notifiers.notifier import Notifier
from propalert.notifiers.telegram import TelegramDispatcher

__all__ = [
    "DEFAULT_BATCH_CAP",
    "NotificationBatcher",
    "Notifier",
    "TelegramDispatcher",
    "escape_mdv2",
    "escape_url",
    "format_batch",
    "format_failure",
    "format_flush_failure",
]
