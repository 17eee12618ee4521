import pytest

from conftest import RecordingSender
from playrelay.notifier import Notifier, Notifiers
from playrelay.notifier_gotify import GotifyNotifier
from playrelay.notifier_ntfy import NtfyNotifier


class BrokenSender:
    def send(self, level, title, message, extra=None):
        raise RuntimeError("webhook down")


@pytest.fixture
def posts(monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))

    monkeypatch.setattr("requests.post", fake_post)
    return calls


def test_fan_out_continues_past_failing_sender():
    recorder = RecordingSender()
    Notifiers([BrokenSender(), recorder]).notify("Title", "body", "warn")
    assert recorder.sent == [("WARNING", "Title", "body")]


def test_unknown_priority_is_info():
    recorder = RecordingSender()
    Notifiers([recorder]).notify("Title", "body", "loud")
    assert recorder.levels() == ["INFO"]


def test_webhook_respects_min_level(posts):
    notifier = Notifier("http://hooks.local/x", min_level="WARNING")
    notifier.send("INFO", "Title", "ignored")
    notifier.send("ERROR", "Title", "sent")

    assert len(posts) == 1
    url, kwargs = posts[0]
    assert url == "http://hooks.local/x"
    assert kwargs["json"]["level"] == "ERROR"
    assert kwargs["json"]["title"] == "playrelay: Title"


def test_webhook_swallows_post_errors(monkeypatch):
    def failing_post(url, **kwargs):
        raise ConnectionError("refused")

    monkeypatch.setattr("requests.post", failing_post)
    Notifier("http://hooks.local/x").send("ERROR", "Title", "body")


def test_gotify_priorities(posts):
    gotify = GotifyNotifier("http://gotify.local/", "token", min_level="INFO", priorities={"WARNING": 6})
    assert gotify.priority_for("CRITICAL") == 10

    gotify.send("WARNING", "Title", "body")

    url, kwargs = posts[0]
    assert url == "http://gotify.local/message"
    assert kwargs["headers"] == {"X-Gotify-Key": "token"}
    assert kwargs["json"]["priority"] == 6


def test_gotify_disabled_without_token(posts):
    GotifyNotifier("http://gotify.local", None).send("ERROR", "Title", "body")
    assert posts == []


def test_ntfy_headers(posts):
    ntfy = NtfyNotifier(None, "relay", token="tk")
    ntfy.send("ERROR", "Title", "body")

    url, kwargs = posts[0]
    assert url == "https://ntfy.sh/relay"
    assert kwargs["headers"]["Priority"] == "5"
    assert kwargs["headers"]["Authorization"] == "Bearer tk"
    assert kwargs["data"] == b"body"
