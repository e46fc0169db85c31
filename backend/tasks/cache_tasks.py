"""Celery tasks for result cache maintenance."""

from celery_app import celery_app
from config import load_scan_config
from order_checker.logging_config import get_logger
from order_checker.message_cache import MessageCache

logger = get_logger(__name__)


@celery_app.task(bind=True)
def purge_expired_cache_task(self):
    """
    Delete cached results older than the configured TTL.

    Returns:
        dict: Purge statistics
    """
    config = load_scan_config()
    cache = MessageCache(config.cache_path, ttl_seconds=config.cache_ttl_seconds)
    try:
        removed = cache.purge_expired()
        stats = cache.stats()
    finally:
        cache.close()

    logger.info(f"Purged {removed} expired cache entries")
    return {"status": "completed", "removed": removed, **stats.to_dict()}
