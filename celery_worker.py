#!/usr/bin/env python3
"""
Celery worker script for the shop backend.
Run this script to start the Celery worker for order and password emails.
"""

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from core.celery import EMAIL_QUEUE, celery_app
    from core.config import settings
    from core.logging_config import configure_logging

    configure_logging()

    # Start Celery worker
    celery_app.start([
        "worker",
        f"--loglevel={settings.LOG_LEVEL.lower()}",
        "--concurrency=4",
        f"--queues={EMAIL_QUEUE}",
        "--without-gossip",
        "--without-mingle",
        "--without-heartbeat",
    ])
