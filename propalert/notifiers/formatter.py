"""Telegram MarkdownV2 alert formatter.

Turns a :class:`~propalert.core.models.NotificationBatch` (or a run
failure) into a ready-to-send Telegram ``MarkdownV2`` message string.

Telegram MarkdownV2 escaping rules
-----------------------------------
The following characters **must** be escaped with a leading backslash when
they appear in ordinary message text::

    _ * [ ] ( ) ~ ` > # + - = | { } . !

Inside a ``[text](url)`` construct only ``)`` and ``\\`` need escaping.

Reference: https://core.telegram.org/bots/api#markdownv2-style

Public API
----------
:func:`escape_mdv2`: escape plain text for the message body.

:func:`escape_url`: escape a URL for use inside ``[text](url)``.

:func:`format_batch`: the new-listings alert.

:func:`format_failure`: the alert sent when a run ends in error.

:func:`format_flush_failure`: the alert sent when listings were delivered
    but could not be recorded (they may be delivered again).

Typical usage::

    from propalert.notifiers.formatter import format_batch

    text = format_batch(batch)
    await dispatcher.send(text, parse_mode="MarkdownV2")
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Final

from propalert.core.models import CandidateListing, NotificationBatch

__all__ = [
    "PARSE_MODE",
    "escape_mdv2",
    "escape_url",
    "format_batch",
    "format_failure",
    "format_flush_failure",
]

logger = logging.getLogger(__name__)

#: Parse mode every message from this module is written for.
PARSE_MODE: Final[str] = "MarkdownV2"

#: Longest error description included in a failure alert.
ERROR_MAX_CHARS: Final[int] = 300

#: Most keys listed in a flush-failure alert before summarising.
FLUSH_KEYS_MAX: Final[int] = 10

# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------

_MDV2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_mdv2(text: str) -> str:
    """Escape a plain-text string for safe embedding in a MarkdownV2 body.

    Examples:
        >>> escape_mdv2("£1,350 pcm - 2 bed.")
        '£1,350 pcm \\\\- 2 bed\\\\.'
    """
    return _MDV2_SPECIAL.sub(r"\\\1", text)


_URL_SPECIAL = re.compile(r"([)\\])")


def escape_url(url: str) -> str:
    """Escape a URL for use inside the ``(url)`` part of a MarkdownV2 link."""
    return _URL_SPECIAL.sub(r"\\\1", url)


# ---------------------------------------------------------------------------
# Field formatters (all return escaped MarkdownV2 fragments)
# ---------------------------------------------------------------------------


def _fmt_rooms(listing: CandidateListing) -> str | None:
    """``"2 bed | 1 bath"``; bath omitted when absent or zero."""
    parts: list[str] = []
    if listing.bedrooms is not None:
        parts.append(f"{listing.bedrooms} bed")
    if listing.bathrooms:
        parts.append(f"{listing.bathrooms} bath")
    if not parts:
        return None
    return escape_mdv2(" | ".join(parts))


def _fmt_entry(position: int, listing: CandidateListing) -> str:
    lines = [
        f"*{escape_mdv2(f'{position}. {listing.address or listing.listing_id}')}*",
        f"💷 {escape_mdv2(listing.price)}",
    ]
    rooms = _fmt_rooms(listing)
    if rooms:
        lines.append(f"🛏 {rooms}")
    lines.append(f"[🔗 View listing]({escape_url(listing.url)})")
    return "\n".join(lines)


def _truncate(text: str, limit: int = ERROR_MAX_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        return text[: limit - 1].rstrip() + "…"
    return text


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def format_batch(batch: NotificationBatch) -> str:
    """Format a batch of new listings as one MarkdownV2 message.

    Layout:

    1. **Header**: ``"N New Property Alert(s)"`` and the search name.
    2. **Summary**: ``"Found X new, showing top N"`` when the batch cap cut
       some listings.
    3. **Entries**: numbered, best first, each with address, price,
       bedrooms/bathrooms (when known) and a link.

    Raises:
        ValueError: If *batch* is empty; empty batches are never sent.
    """
    if batch.is_empty:
        raise ValueError("refusing to format an empty notification batch")

    count = len(batch.entries)
    plural = "" if count == 1 else "s"
    lines: list[str] = [
        f"🏠 *{escape_mdv2(f'{count} New Property Alert{plural}')}*",
        f"_{escape_mdv2(batch.search_name)}_",
    ]
    if batch.truncated:
        lines.append(escape_mdv2(f"Found {batch.total_new} new, showing top {count}"))

    for position, entry in enumerate(batch.entries, start=1):
        lines.append("")
        lines.append(_fmt_entry(position, entry.listing))

    return "\n".join(lines)


def format_failure(search_name: str, error: BaseException | str) -> str:
    """Format the alert for a run that ended in error."""
    description = str(error) or type(error).__name__
    return "\n".join(
        [
            f"⚠️ *{escape_mdv2('Monitor Error')}*",
            f"Search: {escape_mdv2(search_name)}",
            f"Error: {escape_mdv2(_truncate(description))}",
        ]
    )


def format_flush_failure(
    search_name: str,
    keys: Sequence[str],
    error: BaseException | str,
) -> str:
    """Format the alert for delivered listings that could not be recorded.

    Lists the affected listing keys (up to :data:`FLUSH_KEYS_MAX`) so the
    operator knows which alerts may repeat on the next run.
    """
    lines = [
        f"🚨 *{escape_mdv2('Tracking Save Failed')}*",
        f"Search: {escape_mdv2(search_name)}",
        escape_mdv2(
            f"{len(keys)} listing(s) were sent but not recorded and may be sent again:"
        ),
    ]
    for key in keys[:FLUSH_KEYS_MAX]:
        lines.append(f"• `{escape_mdv2(key)}`")
    if len(keys) > FLUSH_KEYS_MAX:
        lines.append(escape_mdv2(f"…and {len(keys) - FLUSH_KEYS_MAX} more"))
    lines.append(f"Error: {escape_mdv2(_truncate(str(error) or type(error).__name__))}")
    return "\n".join(lines)
