"""Notification delivery collaborators.

Delivery is emit-and-forget: a notifier logs its own failures and never
raises back into the engine, and nothing is retried.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

import requests
from requests import Session

from hail_intel.http import create_session
from hail_intel.models import NotificationLogEntry, entry_to_dict

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, entry: NotificationLogEntry) -> None: ...


class LogNotifier:
    """Writes alerts to the log; the default when no webhook is configured."""

    def send(self, entry: NotificationLogEntry) -> None:
        logger.info("[%s] %s (storm %s)", entry.type.value, entry.message, entry.storm_id)


class WebhookNotifier:
    """POSTs each entry as JSON to a push gateway or chat webhook."""

    def __init__(self, url: str, session: Session | None = None, timeout: float = 10.0) -> None:
        self.url = url
        self.session = session if session is not None else create_session(retries=0)
        self.timeout = timeout

    def send(self, entry: NotificationLogEntry) -> None:
        payload = {
            "type": "hail_alert",
            "alert": entry_to_dict(entry),
            "title": entry.message,
            "body": "Tap to view hail map and start canvassing",
        }
        try:
            resp = self.session.post(self.url, json=payload, timeout=self.timeout)
            if resp.status_code >= 400:
                logger.warning(
                    "Webhook rejected alert %s with HTTP %d", entry.id, resp.status_code
                )
        except requests.RequestException:
            logger.warning("Failed to deliver alert %s", entry.id, exc_info=True)


def in_quiet_hours(start: int | None, end: int | None, moment: datetime) -> bool:
    """True if *moment*'s hour falls in [start, end), wrapping past midnight."""
    if start is None or end is None or start == end:
        return False
    hour = moment.hour
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end
