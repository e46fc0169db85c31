"""
Scan Configuration Management
Handles environment variables, validation, and defaults for order scans
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PATH = Path(__file__).parent.parent / ".env"

DEFAULT_SCAN_DAYS = 10
MAX_SCAN_DAYS = 365


@dataclass
class ScanConfig:
    """Scan configuration object"""
    workers: int = 8
    fetch_max_attempts: int = 5
    backoff_initial_seconds: float = 1.0
    stall_threshold_seconds: float = 30.0
    watchdog_interval_seconds: float = 5.0
    default_days: int = DEFAULT_SCAN_DAYS
    max_days: int = MAX_SCAN_DAYS
    max_messages: int = 5000
    cache_path: str = ".cache/messages"
    cache_ttl_hours: float = 24.0
    cache_sweep_interval_seconds: float = 3600.0
    sender: str = "help@walmart.com"

    def __post_init__(self):
        """Validate configuration after initialization"""
        self.validate()

    def validate(self):
        """Validate scan configuration"""
        if self.workers <= 0:
            raise ValueError("SCAN_WORKERS must be greater than 0")

        if self.fetch_max_attempts <= 0:
            raise ValueError("SCAN_FETCH_MAX_ATTEMPTS must be greater than 0")

        if self.backoff_initial_seconds < 0:
            raise ValueError("SCAN_BACKOFF_INITIAL_SECONDS must not be negative")

        if self.stall_threshold_seconds <= 0:
            raise ValueError("SCAN_STALL_THRESHOLD_SECONDS must be greater than 0")

        if self.watchdog_interval_seconds <= 0:
            raise ValueError("SCAN_WATCHDOG_INTERVAL_SECONDS must be greater than 0")

        if self.default_days <= 0 or self.max_days <= 0:
            raise ValueError("SCAN_DEFAULT_DAYS and SCAN_MAX_DAYS must be greater than 0")

        if self.default_days > self.max_days:
            raise ValueError("SCAN_DEFAULT_DAYS cannot exceed SCAN_MAX_DAYS")

        if self.max_messages <= 0:
            raise ValueError("SCAN_MAX_MESSAGES must be greater than 0")

        if not self.cache_path:
            raise ValueError("CACHE_PATH is required")

        if self.cache_ttl_hours <= 0:
            raise ValueError("CACHE_TTL_HOURS must be greater than 0")

        if self.cache_sweep_interval_seconds <= 0:
            raise ValueError("CACHE_SWEEP_INTERVAL_SECONDS must be greater than 0")

        if "@" not in self.sender:
            raise ValueError(f"Invalid WALMART_SENDER: {self.sender}")

    @property
    def cache_ttl_seconds(self) -> int:
        return int(self.cache_ttl_hours * 3600)

    def clamp_days(self, days) -> int:
        """Missing or non-positive windows use the default; large ones are capped."""
        try:
            days = int(days)
        except (TypeError, ValueError):
            return self.default_days
        if days <= 0:
            return self.default_days
        return min(days, self.max_days)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (expected an integer)")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Invalid {name}: {value} (expected a number)")


def load_scan_config() -> ScanConfig:
    """
    Load scan configuration from environment variables.

    Environment Variables:
    - SCAN_WORKERS: Concurrent fetch workers (default: 8)
    - SCAN_FETCH_MAX_ATTEMPTS: Attempts per Gmail call on transient errors (default: 5)
    - SCAN_BACKOFF_INITIAL_SECONDS: First retry delay, doubled each retry (default: 1.0)
    - SCAN_STALL_THRESHOLD_SECONDS: Idle time before the watchdog times a scan out (default: 30)
    - SCAN_WATCHDOG_INTERVAL_SECONDS: Watchdog poll interval (default: 5)
    - SCAN_DEFAULT_DAYS: Window used when none is given (default: 10)
    - SCAN_MAX_DAYS: Largest accepted window (default: 365)
    - SCAN_MAX_MESSAGES: Message cap per scan (default: 5000)
    - CACHE_PATH: Result cache directory or database file (default: .cache/messages)
    - CACHE_TTL_HOURS: Cached result lifetime (default: 24)
    - CACHE_SWEEP_INTERVAL_SECONDS: Expired row purge interval (default: 3600)
    - WALMART_SENDER: Sender address searched for (default: help@walmart.com)

    Returns:
        ScanConfig object
    """
    # Reload .env file to pick up any changes
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH, override=True)

    defaults = ScanConfig()
    return ScanConfig(
        workers=_env_int("SCAN_WORKERS", defaults.workers),
        fetch_max_attempts=_env_int("SCAN_FETCH_MAX_ATTEMPTS", defaults.fetch_max_attempts),
        backoff_initial_seconds=_env_float("SCAN_BACKOFF_INITIAL_SECONDS", defaults.backoff_initial_seconds),
        stall_threshold_seconds=_env_float("SCAN_STALL_THRESHOLD_SECONDS", defaults.stall_threshold_seconds),
        watchdog_interval_seconds=_env_float("SCAN_WATCHDOG_INTERVAL_SECONDS", defaults.watchdog_interval_seconds),
        default_days=_env_int("SCAN_DEFAULT_DAYS", defaults.default_days),
        max_days=_env_int("SCAN_MAX_DAYS", defaults.max_days),
        max_messages=_env_int("SCAN_MAX_MESSAGES", defaults.max_messages),
        cache_path=os.getenv("CACHE_PATH", defaults.cache_path).strip(),
        cache_ttl_hours=_env_float("CACHE_TTL_HOURS", defaults.cache_ttl_hours),
        cache_sweep_interval_seconds=_env_float(
            "CACHE_SWEEP_INTERVAL_SECONDS", defaults.cache_sweep_interval_seconds
        ),
        sender=os.getenv("WALMART_SENDER", defaults.sender).strip(),
    )
