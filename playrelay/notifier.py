"""
Simple webhook notifier, plus the fan-out used by sources and clients.

- Sends a POST with JSON body to NOTIFY_WEBHOOK_URL.
- Respects NOTIFY_MIN_LEVEL (e.g., WARNING and above).
- Best-effort: failures are logged at debug and never reach the caller.
"""

from __future__ import annotations
import os
import logging
from typing import Iterable, Protocol

import requests

_LEVELS = {
    "DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50
}

# notification priority -> log level name
PRIORITY_LEVELS = {"info": "INFO", "warn": "WARNING", "error": "ERROR"}

DEFAULT_APP_TAG = "playrelay"


def level_value(level: str, default: int = 30) -> int:
    return _LEVELS.get(level.upper(), default)


class Sender(Protocol):
    def send(self, level: str, title: str, message: str, extra: dict | None = None): ...


class Notifier:
    def __init__(self, webhook_url: str | None, min_level: str = "WARNING", app_tag: str = DEFAULT_APP_TAG):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.min_level = level_value(min_level)
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.webhook_url:
            return
        if level_value(level) < self.min_level:
            return

        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": extra or {},
        }
        try:
            # Most webhooks accept JSON; Slack/Discord-compatible webhooks also work.
            requests.post(self.webhook_url, json=payload, timeout=5)
        except Exception as e:
            logging.getLogger("notifier").debug("Notification send failed: %s", e)


class Notifiers:
    """Fans one notification out to every configured sender."""

    def __init__(self, senders: Iterable[Sender] = (), logger: logging.Logger | None = None):
        self.senders = list(senders)
        self.logger = logger or logging.getLogger("notifier")

    def notify(self, title: str, message: str, priority: str = "info", extra: dict | None = None) -> None:
        level = PRIORITY_LEVELS.get(priority, "INFO")
        for sender in self.senders:
            try:
                sender.send(level, title, message, extra)
            except Exception as e:
                self.logger.debug("Notifier %s failed: %s", type(sender).__name__, e)


def from_env() -> Notifier:
    return Notifier(
        webhook_url=os.getenv("NOTIFY_WEBHOOK_URL"),
        min_level=os.getenv("NOTIFY_MIN_LEVEL", "WARNING"),
        app_tag=os.getenv("APP_TAG", DEFAULT_APP_TAG),
    )
