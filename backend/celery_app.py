"""Celery application configuration for background cache maintenance."""

import os

from celery import Celery
from dotenv import load_dotenv

from config import load_scan_config

# Load environment variables from .env file
load_dotenv()

# Initialize Celery
celery_app = Celery(
    "order_checker_tasks",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
    include=["tasks.cache_tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    task_soft_time_limit=270,
    result_expires=3600,  # Keep results for 1 hour
    beat_schedule={
        "purge-expired-cache": {
            "task": "tasks.cache_tasks.purge_expired_cache_task",
            "schedule": load_scan_config().cache_sweep_interval_seconds,
        },
    },
)
