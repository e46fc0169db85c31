"""Backend configuration module"""

from .scan_config import (
    DEFAULT_SCAN_DAYS,
    MAX_SCAN_DAYS,
    ScanConfig,
    load_scan_config,
)

__all__ = [
    "ScanConfig",
    "load_scan_config",
    "DEFAULT_SCAN_DAYS",
    "MAX_SCAN_DAYS",
]
