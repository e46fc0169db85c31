"""
Order Scan Pipeline

Fetches Walmart messages for a date window and folds them into an OrderLedger.

Flow per scan:
1. List every message ID for the query (fatal on failure)
2. Report the total
3. A fixed pool of worker threads drains a bounded job queue of message IDs
4. Each worker: cache lookup -> fetch with retry on transient errors ->
   classify -> extract -> cache store -> ledger merge -> progress
5. Cancellation is cooperative through a threading.Event checked at dispatch,
   at every job boundary and before every upstream call

A single message failing never aborts the scan; it is logged and counted.
"""

import queue
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from order_checker.classifier import classify_subject
from order_checker.error_tracking import (
    CacheError,
    ErrorStage,
    ExtractionError,
    ListingError,
    MailClientError,
    ScanCancelledError,
    ScanErrorRecord,
    TransientMailError,
)
from order_checker.gmail_client import DEFAULT_SENDER, MailMessage, build_scan_query
from order_checker.ledger import OrderLedger
from order_checker.logging_config import get_logger
from order_checker.message_cache import MessageCache
from order_checker.models import CachedResult, Order, ShippedOrder
from order_checker.parsers import extract

logger = get_logger(__name__)

# Pipeline defaults
DEFAULT_WORKERS = 8
FETCH_MAX_ATTEMPTS = 5
BACKOFF_INITIAL_SECONDS = 1.0
BACKOFF_MULTIPLIER = 2
MAX_MESSAGES_PER_SCAN = 5000
QUEUE_POLL_SECONDS = 0.2

ProgressCallback = Callable[[int, int], None]


class MailClient(Protocol):
    def list_message_ids(self, query: str) -> list[str]: ...

    def get_message(self, message_id: str) -> MailMessage: ...


_STOP = object()


@dataclass
class ScanResult:
    """Counts and ledger snapshot for a finished scan."""
    scan_id: str
    total: int = 0
    processed: int = 0
    failed: int = 0
    cache_hits: int = 0
    orders: dict[str, Order] = field(default_factory=dict)
    shipped: list[ShippedOrder] = field(default_factory=list)


class _Counters:
    def __init__(self):
        self.lock = threading.Lock()
        self.processed = 0
        self.failed = 0
        self.cache_hits = 0


class ScanPipeline:
    """Concurrent fetch/parse/merge of Walmart order emails."""

    def __init__(
        self,
        cache: Optional[MessageCache] = None,
        workers: int = DEFAULT_WORKERS,
        max_attempts: int = FETCH_MAX_ATTEMPTS,
        backoff_initial: float = BACKOFF_INITIAL_SECONDS,
        max_messages: int = MAX_MESSAGES_PER_SCAN,
        sender: str = DEFAULT_SENDER,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        if workers <= 0:
            raise ValueError("workers must be greater than 0")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be greater than 0")

        self.cache = cache
        self.workers = workers
        self.max_attempts = max_attempts
        self.backoff_initial = backoff_initial
        self.max_messages = max_messages
        self.sender = sender
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Retry helpers
    # ------------------------------------------------------------------

    def _backoff(self, delay: float, cancel_event: threading.Event) -> bool:
        """Wait `delay` seconds. Returns True if the scan was cancelled meanwhile."""
        if self._sleep is not None:
            self._sleep(delay)
            return cancel_event.is_set()
        return cancel_event.wait(delay)

    def _with_retry(self, call: Callable, cancel_event: threading.Event, what: str, scan_id: str):
        """
        Run `call`, retrying TransientMailError with exponential backoff.

        Raises:
            ScanCancelledError: cancelled before or between attempts
            TransientMailError: attempts exhausted
            MailClientError / ExtractionError: non-retryable failures, immediately
        """
        delay = self.backoff_initial
        for attempt in range(1, self.max_attempts + 1):
            if cancel_event.is_set():
                raise ScanCancelledError("Scan cancelled")
            try:
                return call()
            except TransientMailError as e:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    f"{what}: transient Gmail error (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:g}s: {e}",
                    extra={"scan_id": scan_id},
                )
                if self._backoff(delay, cancel_event):
                    raise ScanCancelledError("Scan cancelled") from e
                delay *= BACKOFF_MULTIPLIER
        raise TransientMailError(f"{what}: max retries exceeded")

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_messages(self, client: MailClient, days: int, cancel_event: threading.Event, scan_id: str) -> list[str]:
        query = build_scan_query(days, sender=self.sender)
        logger.info(f"Search query: {query}", extra={"scan_id": scan_id})

        try:
            message_ids = self._with_retry(
                lambda: client.list_message_ids(query), cancel_event, "list messages", scan_id
            )
        except (MailClientError, ExtractionError) as e:
            ScanErrorRecord.from_exception(e, ErrorStage.LIST, context={"query": query}).log(scan_id=scan_id)
            raise ListingError(f"list messages: {e}") from e

        # Duplicate IDs across pages would double count progress
        message_ids = list(dict.fromkeys(message_ids))
        if len(message_ids) > self.max_messages:
            logger.warning(f"Hit message limit ({self.max_messages})", extra={"scan_id": scan_id})
            message_ids = message_ids[: self.max_messages]
        return message_ids

    # ------------------------------------------------------------------
    # Per-message processing
    # ------------------------------------------------------------------

    def process_message(
        self, client: MailClient, message_id: str, cancel_event: threading.Event, scan_id: str
    ) -> tuple[Optional[CachedResult], bool]:
        """
        Produce the CachedResult for one message.

        Returns:
            (result, from_cache). result is None when the message was abandoned.

        Raises:
            ScanCancelledError: the scan was cancelled while fetching
        """
        context = {"message_id": message_id}

        if self.cache is not None:
            cached = self.cache.get(message_id)
            if cached is not None:
                return cached, True

        try:
            message = self._with_retry(
                lambda: client.get_message(message_id), cancel_event, f"get message {message_id}", scan_id
            )
        except (MailClientError, ExtractionError) as e:
            stage = ErrorStage.DECODE if isinstance(e, ExtractionError) else ErrorStage.FETCH
            ScanErrorRecord.from_exception(e, stage, context=context).log(scan_id=scan_id)
            return None, False

        kind = classify_subject(message.subject)
        context["kind"] = kind.value
        received = message.received_at.isoformat() if message.received_at else "unknown"
        logger.debug(f"Fetched message received {received}", extra={"scan_id": scan_id, **context})
        try:
            result = extract(kind, message.html_body, message.subject)
        except ExtractionError as e:
            ScanErrorRecord.from_exception(e, ErrorStage.EXTRACT, context=context).log(scan_id=scan_id)
            # The message body will not change; remember it contributed nothing
            self._store(message_id, CachedResult(), scan_id)
            return None, False

        self._store(message_id, result, scan_id)
        return result, False

    def _store(self, message_id: str, result: CachedResult, scan_id: str) -> None:
        if self.cache is None:
            return
        try:
            self.cache.set(message_id, result)
        except CacheError as e:
            ScanErrorRecord.from_exception(e, ErrorStage.CACHE, context={"message_id": message_id}).log(
                scan_id=scan_id
            )

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    def _worker(
        self,
        client: MailClient,
        jobs: queue.Queue,
        ledger: OrderLedger,
        counters: _Counters,
        total: int,
        on_progress: Optional[ProgressCallback],
        cancel_event: threading.Event,
        scan_id: str,
    ) -> None:
        while not cancel_event.is_set():
            try:
                message_id = jobs.get(timeout=QUEUE_POLL_SECONDS)
            except queue.Empty:
                continue
            if message_id is _STOP:
                return

            try:
                result, from_cache = self.process_message(client, message_id, cancel_event, scan_id)
            except ScanCancelledError:
                return
            except Exception as e:
                logger.warning(
                    f"Failed to process message {message_id}: {e}",
                    extra={"scan_id": scan_id, "message_id": message_id},
                    exc_info=True,
                )
                result, from_cache = None, False

            if cancel_event.is_set():
                return

            if result is not None:
                ledger.apply(result)

            with counters.lock:
                counters.processed += 1
                if result is None:
                    counters.failed += 1
                if from_cache:
                    counters.cache_hits += 1
                if on_progress is not None:
                    on_progress(counters.processed, total)

    def _put(self, jobs: queue.Queue, item, cancel_event: threading.Event) -> bool:
        while not cancel_event.is_set():
            try:
                jobs.put(item, timeout=QUEUE_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def run(
        self,
        client: MailClient,
        user: str,
        days: int,
        ledger: OrderLedger,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        scan_id: Optional[str] = None,
    ) -> ScanResult:
        """
        Scan `days` of mail for `user` into `ledger`.

        Args:
            client: Authenticated mail client
            user: Mailbox owner (for logging)
            days: Trailing window size in days
            ledger: Ledger to merge into; keeps partial results on failure
            on_progress: Called with (processed, total) after the listing and each message
            cancel_event: Set to stop the scan cooperatively
            scan_id: Identifier used in logs

        Returns:
            ScanResult with counters and a ledger snapshot

        Raises:
            ListingError: messages could not be listed
            ScanCancelledError: cancel_event was set before the queue drained
        """
        scan_id = scan_id or uuid.uuid4().hex[:12]
        cancel_event = cancel_event or threading.Event()
        started = time.monotonic()

        logger.info(f"Scan started: {days} days for {user}", extra={"scan_id": scan_id, "user": user})

        message_ids = self.list_messages(client, days, cancel_event, scan_id)
        total = len(message_ids)
        logger.info(f"Processing {total} messages...", extra={"scan_id": scan_id})
        if on_progress is not None:
            on_progress(0, total)

        counters = _Counters()
        worker_count = max(1, min(self.workers, total))
        jobs: queue.Queue = queue.Queue(maxsize=worker_count * 2)

        executor = ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="scan-worker")
        try:
            futures = [
                executor.submit(
                    self._worker, client, jobs, ledger, counters, total, on_progress, cancel_event, scan_id
                )
                for _ in range(worker_count)
            ]

            for message_id in message_ids:
                if not self._put(jobs, message_id, cancel_event):
                    break
            for _ in range(worker_count):
                if not self._put(jobs, _STOP, cancel_event):
                    break

            # Poll so a cancel returns promptly even if a worker is stuck in a request
            pending = set(futures)
            while pending and not cancel_event.is_set():
                done, pending = wait(pending, timeout=QUEUE_POLL_SECONDS)
                for future in done:
                    future.result()
        finally:
            # Workers stuck in HTTP calls are abandoned; they re-check the cancel
            # event before touching the ledger
            executor.shutdown(wait=not cancel_event.is_set())

        orders, shipped = ledger.snapshot()
        elapsed = time.monotonic() - started

        if cancel_event.is_set():
            logger.warning(
                f"Scan cancelled after {counters.processed}/{total} messages",
                extra={"scan_id": scan_id},
            )
            raise ScanCancelledError(f"Scan cancelled after {counters.processed}/{total} messages")

        logger.info(
            f"Scan completed: {len(orders)} orders, {len(shipped)} shipments, "
            f"{counters.failed} failed, {counters.cache_hits} from cache in {elapsed:.1f}s",
            extra={"scan_id": scan_id},
        )
        return ScanResult(
            scan_id=scan_id,
            total=total,
            processed=counters.processed,
            failed=counters.failed,
            cache_hits=counters.cache_hits,
            orders=orders,
            shipped=shipped,
        )
