"""
Gotify notifier: POST /message with app token.

Env:
- GOTIFY_URL (e.g., http://nas:8080)
- GOTIFY_TOKEN (App token)
- GOTIFY_MIN_LEVEL (DEBUG|INFO|WARNING|ERROR|CRITICAL; default WARNING)
- GOTIFY_PRIORITY_INFO / _WARN / _ERROR (1..10; default 5 / 7 / 10)
"""

from __future__ import annotations
import os
import logging
import requests

from .notifier import DEFAULT_APP_TAG, level_value

DEFAULT_PRIORITIES = {"INFO": 5, "WARNING": 7, "ERROR": 10}


class GotifyNotifier:
    def __init__(self, url: str | None, token: str | None, min_level: str = "WARNING",
                 priorities: dict | None = None, app_tag: str = DEFAULT_APP_TAG):
        self.url = url.rstrip("/") if url else None
        self.token = token.strip() if token else None
        self.min_level = level_value(min_level)
        self.priorities = {**DEFAULT_PRIORITIES, **(priorities or {})}
        self.app_tag = app_tag

    def priority_for(self, level: str) -> int:
        level = level.upper()
        if level == "CRITICAL":
            level = "ERROR"
        return self.priorities.get(level, self.priorities["INFO"])

    def send(self, level: str, title: str, message: str, extra: dict | None = None, priority: int | None = None):
        if not self.url or not self.token:
            return
        if level_value(level) < self.min_level:
            return

        body = {
            "title": f"{self.app_tag}: {title}",
            "message": message if not extra else f"{message}\n\n{extra}",
            "priority": priority if priority is not None else self.priority_for(level),
        }
        headers = {"X-Gotify-Key": self.token}
        try:
            requests.post(f"{self.url}/message", json=body, headers=headers, timeout=5)
        except Exception as e:
            logging.getLogger("notifier").debug("Gotify send failed: %s", e)


def from_env() -> GotifyNotifier:
    priorities = {
        "INFO": int(os.getenv("GOTIFY_PRIORITY_INFO", "5")),
        "WARNING": int(os.getenv("GOTIFY_PRIORITY_WARN", "7")),
        "ERROR": int(os.getenv("GOTIFY_PRIORITY_ERROR", "10")),
    }
    return GotifyNotifier(
        os.getenv("GOTIFY_URL"),
        os.getenv("GOTIFY_TOKEN"),
        min_level=os.getenv("GOTIFY_MIN_LEVEL", "WARNING"),
        priorities=priorities,
        app_tag=os.getenv("APP_TAG", DEFAULT_APP_TAG),
    )
