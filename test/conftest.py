"""
Shared fixtures for playrelay tests.

Provides fake source/client adapters, a controllable clock, a recording
notifier and a play factory.
"""

import time
from datetime import datetime, timedelta, timezone

import pytest

from playrelay.adapters import ClientAdapter, SourceAdapter
from playrelay.models import make_play
from playrelay.notifier import Notifiers

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=BASE_TIME):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingSender:
    def __init__(self):
        self.sent = []

    def send(self, level, title, message, extra=None):
        self.sent.append((level, title, message))

    def levels(self):
        return [s[0] for s in self.sent]


class FakeClientAdapter(ClientAdapter):
    requires_auth = False

    def __init__(self, history=(), errors=()):
        self.history = list(history)
        # raised by submit in order; once exhausted, submit succeeds
        self.errors = list(errors)
        self.always_raise = None
        self.submitted = []
        self.submit_times = []

    def get_recent_history(self, limit):
        return list(self.history[-limit:])

    def submit(self, play):
        self.submit_times.append(time.monotonic())
        if self.always_raise is not None:
            raise self.always_raise
        if self.errors:
            raise self.errors.pop(0)
        self.submitted.append(play)
        return play


class FakeSourceAdapter(SourceAdapter):
    source_type = "fake"

    def __init__(self, responses=None, now_playing_only=False, error=None):
        self.responses = list(responses or [])
        self.now_playing_only = now_playing_only
        self.error = error
        self.fetches = 0

    def fetch_recent(self, limit):
        self.fetches += 1
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0] if self.responses else []


class RecordingClient:
    def __init__(self, name="recorder"):
        self.name = name
        self.queued = []

    def queue_scrobble(self, plays, source):
        self.queued.extend(plays)


def generate_play(track="Sonora", artists=("The Bongo Hop",), album="Satingarona Pt. 2",
                  play_date=BASE_TIME, duration=240, source="fake", **meta):
    return make_play(track=track, artists=artists, album=album, duration=duration,
                     play_date=play_date, source=source, **meta)


def wait_for(predicate, timeout=3.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def notifier(sender):
    return Notifiers([sender])
