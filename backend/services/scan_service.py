"""
Scan Service - Business Logic

Owns the single active order scan: starts it on a background thread, wires
the stall watchdog, tracks progress and serves the finished report.
Routes are thin controllers that delegate here.
"""

import os
import threading
import time
import uuid
from typing import Callable, Iterable, Optional

from config import ScanConfig, load_scan_config
from order_checker.analytics import build_report
from order_checker.error_tracking import (
    AuthError,
    ListingError,
    ScanAlreadyRunningError,
    ScanCancelledError,
)
from order_checker.gmail_client import GmailClient, build_gmail_session
from order_checker.ledger import OrderLedger, merge_ledgers
from order_checker.logging_config import get_logger
from order_checker.message_cache import CacheStats, MessageCache
from order_checker.pipeline import MailClient, ScanPipeline
from order_checker.progress import ScanProgress, StallWatchdog

logger = get_logger(__name__)

MailClientFactory = Callable[[str], MailClient]


def env_mail_client(user: str) -> GmailClient:
    """
    Mail client built from GMAIL_ACCESS_TOKEN / GMAIL_REFRESH_TOKEN.

    Raises:
        AuthError: If no access token is configured
    """
    access_token = os.getenv("GMAIL_ACCESS_TOKEN", "").strip()
    if not access_token:
        raise AuthError("Not authenticated: GMAIL_ACCESS_TOKEN is not set")
    refresh_token = os.getenv("GMAIL_REFRESH_TOKEN", "").strip() or None
    return GmailClient(build_gmail_session(access_token, refresh_token))


class ScanService:
    """Single-scan coordinator shared by the HTTP layer."""

    def __init__(
        self,
        get_mail_client: MailClientFactory = env_mail_client,
        cache: Optional[MessageCache] = None,
        config: Optional[ScanConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config or load_scan_config()
        self.cache = cache
        self.progress = ScanProgress(clock=clock)
        self._clock = clock
        self.pipeline = ScanPipeline(
            cache=cache,
            workers=self.config.workers,
            max_attempts=self.config.fetch_max_attempts,
            backoff_initial=self.config.backoff_initial_seconds,
            max_messages=self.config.max_messages,
            sender=self.config.sender,
            sleep=sleep,
        )
        self._get_mail_client = get_mail_client
        self._lock = threading.Lock()
        self._cancel_event: Optional[threading.Event] = None
        self._runner: Optional[threading.Thread] = None
        self._watchdog: Optional[StallWatchdog] = None

    # ------------------------------------------------------------------
    # Scan lifecycle
    # ------------------------------------------------------------------

    def start_scan(self, user: str, days=None, clear_cache: bool = False) -> str:
        """
        Start a background scan of `days` of mail for `user`.

        Args:
            user: Mailbox owner passed to the mail client factory
            days: Window in days; missing or non-positive uses the default
            clear_cache: Drop every cached result before scanning

        Returns:
            The new scan ID

        Raises:
            ScanAlreadyRunningError: If a scan is in progress
            AuthError: If the mail client cannot be built for `user`
        """
        with self._lock:
            if self.progress.in_progress:
                raise ScanAlreadyRunningError("Scan already in progress")

            days = self.config.clamp_days(days)
            client = self._get_mail_client(user)

            if clear_cache and self.cache is not None:
                self.cache.clear()
                logger.info("Cache cleared before scan", extra={"user": user})

            scan_id = uuid.uuid4().hex[:12]
            ledger = OrderLedger()
            cancel_event = threading.Event()

            # One record per scan; a stale runner only writes to its own
            progress = ScanProgress(clock=self._clock)
            progress.begin(scan_id, user, days)
            watchdog = StallWatchdog(
                progress,
                cancel_event,
                poll_interval=self.config.watchdog_interval_seconds,
                stall_threshold=self.config.stall_threshold_seconds,
            )
            runner = threading.Thread(
                target=self._run,
                args=(scan_id, client, user, days, ledger, progress, cancel_event, watchdog),
                name=f"scan-{scan_id}",
                daemon=True,
            )

            self.progress = progress
            self._cancel_event = cancel_event
            self._watchdog = watchdog
            self._runner = runner

            watchdog.start()
            runner.start()

        logger.info(f"Scan queued: {days} days", extra={"scan_id": scan_id, "user": user})
        return scan_id

    def _run(
        self,
        scan_id: str,
        client: MailClient,
        user: str,
        days: int,
        ledger: OrderLedger,
        progress: ScanProgress,
        cancel_event: threading.Event,
        watchdog: StallWatchdog,
    ) -> None:
        def on_progress(processed: int, total: int) -> None:
            if processed == 0:
                progress.set_total(total)
            else:
                progress.update(processed)

        try:
            result = self.pipeline.run(
                client,
                user,
                days,
                ledger,
                on_progress=on_progress,
                cancel_event=cancel_event,
                scan_id=scan_id,
            )
        except ScanCancelledError:
            orders, shipped = ledger.snapshot()
            if watchdog.fired:
                # Timed out: the watchdog already set the terminal state
                progress.attach_results(orders, shipped)
            elif not progress.fail("Scan cancelled", orders, shipped):
                progress.attach_results(orders, shipped)
        except ListingError as e:
            progress.fail(f"Failed to list messages: {e}")
        except Exception as e:
            logger.error(f"Scan failed: {e}", extra={"scan_id": scan_id, "user": user}, exc_info=True)
            orders, shipped = ledger.snapshot()
            progress.fail(f"Scan failed: {e}", orders, shipped)
        else:
            progress.update(result.processed, failed=result.failed)
            if not progress.complete(result.orders, result.shipped):
                progress.attach_results(result.orders, result.shipped)
        finally:
            watchdog.stop()

    def wait(self, timeout: float = None) -> bool:
        """Block until the current scan thread exits. Returns True if it has."""
        runner = self._runner
        if runner is None:
            return True
        runner.join(timeout)
        return not runner.is_alive()

    def cancel(self) -> bool:
        """Request cancellation of the running scan. Returns False if none is running."""
        with self._lock:
            if not self.progress.in_progress or self._cancel_event is None:
                return False
            self._cancel_event.set()
            return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        return self.progress.to_dict()

    def get_report(self) -> dict:
        """
        Report for the last scan with results.

        Raises:
            LookupError: If no scan has produced results yet
        """
        orders, shipped, days = self.progress.results()
        if orders is None:
            raise LookupError("No scan results available")
        return build_report(orders, shipped or [], days or self.config.default_days)

    def cache_stats(self) -> dict:
        if self.cache is None:
            return CacheStats(total_messages=0, total_size=0).to_dict()
        return self.cache.stats().to_dict()

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()
            logger.info("Cache cleared")

    # ------------------------------------------------------------------
    # Multi-account
    # ------------------------------------------------------------------

    def scan_accounts(self, users: Iterable[str], days=None) -> OrderLedger:
        """
        Scan several mailboxes synchronously and merge them into one ledger.

        Accounts whose client cannot be built or whose listing fails are
        skipped; the rest still contribute.
        """
        days = self.config.clamp_days(days)
        combined = OrderLedger()
        for user in users:
            try:
                client = self._get_mail_client(user)
                ledger = OrderLedger()
                self.pipeline.run(client, user, days, ledger)
            except (AuthError, ListingError) as e:
                logger.warning(f"Skipping account: {e}", extra={"user": user})
                continue
            merge_ledgers(combined, ledger)
        return combined

    def close(self) -> None:
        self.cancel()
        self.wait(timeout=self.config.watchdog_interval_seconds)
        if self.cache is not None:
            self.cache.close()


def build_scan_service(config: Optional[ScanConfig] = None) -> ScanService:
    """Service backed by the on-disk cache, with the hourly sweeper running."""
    config = config or load_scan_config()
    cache = MessageCache(config.cache_path, ttl_seconds=config.cache_ttl_seconds)
    cache.start_sweeper(config.cache_sweep_interval_seconds)
    return ScanService(cache=cache, config=config)
