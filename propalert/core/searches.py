"""Loader for the saved-searches file.

``searches.json`` maps a search key (which doubles as the tracking
partition) to the search's filters::

    {
      "bristol-flats": {
        "name": "Bristol 2-bed flats",
        "searchType": "RENT",
        "locationId": "REGION^219",
        "minBedrooms": 2,
        "maxPrice": 1600
      }
    }

Any problem with the file (missing, unreadable, not JSON, or an entry that
fails validation) is reported as a :class:`~propalert.core.exceptions.ConfigError`
naming the offending key, before any run starts.

Typical usage::

    from propalert.core.searches import load_searches

    searches = load_searches(settings.searches_file_resolved)
    config = searches["bristol-flats"]
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from propalert.core.exceptions import ConfigError
from propalert.core.models import SearchConfiguration

__all__ = ["load_searches", "parse_searches"]

logger = logging.getLogger(__name__)


def parse_searches(raw: Any) -> dict[str, SearchConfiguration]:
    """Validate an already-decoded searches mapping.

    Args:
        raw: The decoded JSON document.

    Returns:
        Search key → :class:`SearchConfiguration`, in file order.

    Raises:
        ConfigError: If *raw* is not an object or any entry is invalid.
    """
    if not isinstance(raw, dict):
        raise ConfigError(
            f"searches file must contain a JSON object, got {type(raw).__name__}"
        )

    searches: dict[str, SearchConfiguration] = {}
    for key, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"search {key!r}: expected an object, got {type(entry).__name__}")
        try:
            searches[key] = SearchConfiguration.model_validate({**entry, "key": key})
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'entry'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ConfigError(f"search {key!r} is invalid: {problems}") from exc
    return searches


def load_searches(path: Path | str) -> dict[str, SearchConfiguration]:
    """Read and validate the searches file at *path*.

    Raises:
        ConfigError: If the file is missing, unreadable, not valid JSON or
            contains an invalid entry.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"searches file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"cannot read searches file {path}: {exc}") from exc

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"searches file {path} is not valid JSON: {exc}") from exc

    searches = parse_searches(raw)
    logger.debug("Loaded %d search(es) from %s", len(searches), path)
    return searches
