"""Scheduler module for periodic relay jobs and outbound notifications.

Provides:
- APScheduler integration for the drain, cleanup and sweep jobs
- Pluggable outbound notifications (custom-bot webhook)
"""

from cmdrelay.core.scheduler.manager import SchedulerManager, get_scheduler
from cmdrelay.core.scheduler.notification import (
    NotificationProtocol,
    WebhookNotifier,
    sign_webhook,
)

__all__ = [
    "NotificationProtocol",
    "SchedulerManager",
    "WebhookNotifier",
    "get_scheduler",
    "sign_webhook",
]
