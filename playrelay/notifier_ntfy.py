"""
ntfy notifier: POST the message body to <NTFY_URL>/<NTFY_TOPIC>.

Env:
- NTFY_URL (default https://ntfy.sh)
- NTFY_TOPIC (required to enable)
- NTFY_TOKEN (optional bearer token) or NTFY_USERNAME + NTFY_PASSWORD
- NTFY_MIN_LEVEL (default WARNING)
"""

from __future__ import annotations
import os
import logging
import requests

from .notifier import DEFAULT_APP_TAG, level_value

# ntfy priorities are 1 (min) .. 5 (max)
_PRIORITIES = {"DEBUG": 2, "INFO": 3, "WARNING": 4, "ERROR": 5, "CRITICAL": 5}


class NtfyNotifier:
    def __init__(self, url: str | None, topic: str | None, token: str | None = None,
                 username: str | None = None, password: str | None = None,
                 min_level: str = "WARNING", app_tag: str = DEFAULT_APP_TAG):
        self.url = (url or "https://ntfy.sh").rstrip("/")
        self.topic = topic.strip() if topic else None
        self.token = token
        self.auth = (username, password) if username and password else None
        self.min_level = level_value(min_level)
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.topic:
            return
        if level_value(level) < self.min_level:
            return

        headers = {
            "Title": f"{self.app_tag}: {title}",
            "Priority": str(_PRIORITIES.get(level.upper(), 3)),
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        body = message if not extra else f"{message}\n\n{extra}"
        try:
            requests.post(f"{self.url}/{self.topic}", data=body.encode("utf-8"),
                          headers=headers, auth=self.auth, timeout=5)
        except Exception as e:
            logging.getLogger("notifier").debug("ntfy send failed: %s", e)


def from_env() -> NtfyNotifier:
    return NtfyNotifier(
        url=os.getenv("NTFY_URL"),
        topic=os.getenv("NTFY_TOPIC"),
        token=os.getenv("NTFY_TOKEN"),
        username=os.getenv("NTFY_USERNAME"),
        password=os.getenv("NTFY_PASSWORD"),
        min_level=os.getenv("NTFY_MIN_LEVEL", "WARNING"),
        app_tag=os.getenv("APP_TAG", DEFAULT_APP_TAG),
    )
