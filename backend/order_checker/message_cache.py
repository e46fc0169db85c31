"""
Parsed Message Cache

Persistent cache of per-message extraction results, keyed by Gmail message ID.
Avoids re-fetching and re-parsing unchanged messages across scans.

Backed by a SQLite file through SQLAlchemy:
- One dedicated writer connection (SQLite serializes writes anyway); writes are
  additionally serialized in-process so callers block briefly instead of
  hitting "database is locked".
- A separate reader pool; WAL journaling lets reads run alongside the writer.
- Entries expire `ttl_seconds` after they were written. Expiry is lazy on read;
  `purge_expired()` deletes old rows and runs from a background sweeper thread
  or the Celery beat task.
"""

import json
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import Column, Index, Integer, LargeBinary, String, create_engine, delete, event, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from order_checker.error_tracking import CacheError
from order_checker.logging_config import get_logger
from order_checker.models import CachedResult

logger = get_logger(__name__)

# Declarative base for cache models
Base = declarative_base()

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 60
READER_POOL_SIZE = 8

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA cache_size=-64000",
    "PRAGMA busy_timeout=5000",
    "PRAGMA temp_store=MEMORY",
)


class ParsedResult(Base):
    """One cached extraction result."""

    __tablename__ = "parsed_results"

    message_id = Column(String, primary_key=True)
    result_data = Column(LargeBinary, nullable=False)  # JSON-encoded CachedResult
    created_at = Column(Integer, nullable=False)  # Unix seconds

    __table_args__ = (
        Index("idx_parsed_created_at", "created_at"),
        {"sqlite_with_rowid": False},
    )

    def __repr__(self) -> str:
        return f"<ParsedResult(message_id={self.message_id}, created_at={self.created_at})>"


@dataclass
class CacheStats:
    total_messages: int
    total_size: int

    def to_dict(self) -> dict:
        return {"total_messages": self.total_messages, "total_size": self.total_size}


def resolve_cache_path(cache_path: str) -> str:
    """
    Directory paths get a messages.db file inside them; file paths are used as-is.
    Parent directories are created.
    """
    if not os.path.splitext(cache_path)[1]:
        os.makedirs(cache_path, exist_ok=True)
        return os.path.join(cache_path, "messages.db")

    parent = os.path.dirname(cache_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    return cache_path


def _apply_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def _build_engine(db_path: str, pool_size: int):
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        pool_size=pool_size,
        max_overflow=0,
        pool_timeout=30,
        echo=False,
    )
    event.listen(engine, "connect", _apply_pragmas)
    return engine


class MessageCache:
    """TTL cache of CachedResult rows, safe for concurrent pipeline workers."""

    def __init__(
        self,
        cache_path: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError("Cache TTL must be greater than 0")

        self.db_path = resolve_cache_path(cache_path)
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._write_lock = threading.Lock()
        self._sweeper: Optional[threading.Thread] = None
        self._sweeper_stop = threading.Event()

        self._writer = _build_engine(self.db_path, pool_size=1)
        self._reader = _build_engine(self.db_path, pool_size=READER_POOL_SIZE)
        self._WriteSession = sessionmaker(bind=self._writer, autoflush=False)
        self._ReadSession = sessionmaker(bind=self._reader, autoflush=False)

        try:
            Base.metadata.create_all(self._writer)
        except SQLAlchemyError as e:
            raise CacheError(f"failed to create cache table: {e}") from e

    @contextmanager
    def _write_session(self):
        with self._write_lock:
            session = self._WriteSession()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def _cutoff(self) -> int:
        return int(self._clock()) - self.ttl_seconds

    def get(self, message_id: str) -> Optional[CachedResult]:
        """
        Cached result for a message, or None if absent or older than the TTL.

        Expired rows are left in place; the sweeper removes them.
        """
        stmt = select(ParsedResult.result_data).where(
            ParsedResult.message_id == message_id,
            ParsedResult.created_at >= self._cutoff(),
        )
        try:
            with self._ReadSession() as session:
                data = session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning(f"Cache read error for '{message_id}': {e}", extra={"message_id": message_id})
            return None

        if data is None:
            logger.debug(f"Cache MISS: {message_id}", extra={"message_id": message_id})
            return None

        try:
            return CachedResult.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Corrupt cache entry for '{message_id}': {e}", extra={"message_id": message_id})
            return None

    def set(self, message_id: str, result: CachedResult) -> None:
        """
        Insert or replace the cached result for a message, refreshing its timestamp.

        Raises:
            CacheError: if the row could not be written
        """
        payload = json.dumps(result.to_dict()).encode("utf-8")
        created_at = int(self._clock())

        stmt = sqlite_insert(ParsedResult).values(
            message_id=message_id, result_data=payload, created_at=created_at
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ParsedResult.message_id],
            set_={"result_data": stmt.excluded.result_data, "created_at": stmt.excluded.created_at},
        )
        try:
            with self._write_session() as session:
                session.execute(stmt)
        except SQLAlchemyError as e:
            raise CacheError(f"cache write failed for {message_id}: {e}") from e
        logger.debug(f"Cache SET: {message_id}", extra={"message_id": message_id})

    def clear(self) -> None:
        """Delete every entry and reclaim the file space."""
        try:
            with self._write_lock:
                with self._writer.begin() as conn:
                    conn.execute(delete(ParsedResult))
                # VACUUM cannot run inside a transaction
                with self._writer.connect() as conn:
                    conn.execution_options(isolation_level="AUTOCOMMIT").exec_driver_sql("VACUUM")
        except SQLAlchemyError as e:
            raise CacheError(f"cache clear failed: {e}") from e
        logger.info("Cleared message cache")

    def stats(self) -> CacheStats:
        stmt = select(
            func.count(ParsedResult.message_id),
            func.coalesce(func.sum(func.length(ParsedResult.result_data)), 0),
        )
        try:
            with self._ReadSession() as session:
                count, size = session.execute(stmt).one()
        except SQLAlchemyError as e:
            raise CacheError(f"cache stats failed: {e}") from e
        return CacheStats(total_messages=int(count), total_size=int(size))

    def purge_expired(self) -> int:
        """Delete rows older than the TTL. Returns the number removed."""
        try:
            with self._write_session() as session:
                result = session.execute(
                    delete(ParsedResult).where(ParsedResult.created_at < self._cutoff())
                )
                removed = result.rowcount or 0
        except SQLAlchemyError as e:
            raise CacheError(f"cache purge failed: {e}") from e

        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed

    def start_sweeper(self, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        """Run purge_expired every `interval_seconds` in a daemon thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._sweeper_stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, args=(interval_seconds,), name="cache-sweeper", daemon=True
        )
        self._sweeper.start()

    def _sweep_loop(self, interval_seconds: float) -> None:
        while not self._sweeper_stop.wait(interval_seconds):
            try:
                self.purge_expired()
            except CacheError as e:
                logger.warning(f"Cache sweep failed: {e}")

    def stop_sweeper(self) -> None:
        self._sweeper_stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None

    def close(self) -> None:
        self.stop_sweeper()
        self._reader.dispose()
        self._writer.dispose()
