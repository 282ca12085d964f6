"""SQLite database initialisation for the tracking store.

This module is responsible for:

* Opening (or creating) the SQLite file at an explicit path.
* Configuring PRAGMA settings (WAL journal mode).
* Bootstrapping the schema via ``CREATE TABLE IF NOT EXISTS``; safe to call
  on every startup because the statements are idempotent.

Used only when ``TRACKING_BACKEND=sqlite``.  The runner opens one connection
per invocation and hands it to
:class:`~propalert.storage.backends.SqliteBackend`; every search's partition
shares that connection.

Typical usage::

    from propalert.storage.database import open_db

    conn = await open_db(settings.database_path_resolved)
    try:
        backend = SqliteBackend(conn)
        ...
    finally:
        await conn.close()
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from propalert.core.exceptions import StoreLoadError

__all__ = [
    "open_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: ``tracked_listings`` holds every listing alerted on, per search partition.
#:
#: Column notes
#: ------------
#: partition   Search key.  Partitions never read each other's rows.
#: key         Listing key (``"<id>-<normalised address>"``).
#: listing_id  Source-assigned id.
#: first_seen  ISO-8601 UTC timestamp of the delivering run.
#: seq         Insertion order within the partition; breaks ``first_seen``
#:             ties when pruning.
_DDL_TRACKED_LISTINGS = """\
CREATE TABLE IF NOT EXISTS tracked_listings (
    partition   TEXT     NOT NULL,
    key         TEXT     NOT NULL,
    listing_id  TEXT     NOT NULL,
    address     TEXT     NOT NULL DEFAULT '',
    price       TEXT     NOT NULL DEFAULT '',
    bedrooms    INTEGER,
    bathrooms   INTEGER,
    url         TEXT     NOT NULL DEFAULT '',
    first_seen  TEXT     NOT NULL,
    seq         INTEGER  NOT NULL,
    PRIMARY KEY (partition, key)
)"""

_DDL_PARTITION_INDEX = """\
CREATE INDEX IF NOT EXISTS ix_tracked_listings_partition_seq
    ON tracked_listings (partition, seq)"""

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str) -> aiosqlite.Connection:
    """Open (or create) the SQLite database and bootstrap the schema.

    Steps performed on every call:

    1. Create parent directories for the DB file if they do not exist.
    2. Open the ``aiosqlite`` connection with ``row_factory = aiosqlite.Row``.
    3. Enable WAL journal mode.
    4. Call :func:`create_schema` (idempotent).

    Args:
        path: Filesystem path of the SQLite file, or ``":memory:"``.

    Returns:
        An open :class:`aiosqlite.Connection`.  The caller closes it.

    Raises:
        StoreLoadError: If the file cannot be opened or is not a usable
            SQLite database.  Partition ``"*"``: no search can load.
    """
    db_path = str(path)
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    logger.debug("Opening SQLite database at %s", db_path)

    conn: aiosqlite.Connection | None = None
    try:
        conn = await aiosqlite.connect(db_path)
        conn.row_factory = aiosqlite.Row
        await _configure_pragmas(conn)
        await create_schema(conn)
    except aiosqlite.Error as exc:
        # The worker thread must be stopped or interpreter shutdown blocks.
        if conn is not None:
            await conn.close()
        raise StoreLoadError("*", f"cannot open tracking database {db_path}: {exc}") from exc

    logger.info("SQLite tracking database ready at %s", db_path)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Create the tracking tables if they do not already exist."""
    await conn.execute(_DDL_TRACKED_LISTINGS)
    await conn.execute(_DDL_PARTITION_INDEX)
    await conn.commit()
    logger.debug("Schema bootstrap complete (tracked_listings verified)")


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _configure_pragmas(conn: aiosqlite.Connection) -> None:
    """Enable WAL so readers never block the single writer."""
    result = await conn.execute("PRAGMA journal_mode=WAL")
    row = await result.fetchone()
    mode = row[0] if row else "unknown"
    if mode != "wal":
        logger.debug(
            "Requested WAL journal mode but SQLite reported %r "
            "(expected for ':memory:' databases).",
            mode,
        )
    else:
        logger.debug("SQLite journal_mode set to WAL")
