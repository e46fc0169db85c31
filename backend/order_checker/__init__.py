"""Walmart order checker core.

This package contains:
- Gmail REST client and message decoding
- Subject classification and per-template HTML extraction
- Persistent TTL result cache
- Concurrent scan pipeline with retry, progress and stall watchdog
- Order ledger merge rules and report analytics
"""
