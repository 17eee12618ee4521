import time
from datetime import timedelta

import pytest

from conftest import BASE_TIME, FakeSourceAdapter, RecordingClient, generate_play, wait_for
from playrelay.errors import UpstreamError
from playrelay.models import utcnow
from playrelay.source import ERRORED, IDLE, POLLING, Source, SourceOptions, backoff_seconds


def fast_options(**overrides):
    opts = dict(interval=0.02, max_interval=0.05, retry_multiplier=0.01, handoff_delay=0.01)
    opts.update(overrides)
    return SourceOptions(**opts)


@pytest.fixture
def polling():
    started = []

    def _start(source):
        assert source.start_polling()
        started.append(source)
        return source

    yield _start
    for source in started:
        source.try_stop_polling(timeout=3)


def test_backoff_formula():
    assert backoff_seconds(1, 10, 30) == 5
    assert backoff_seconds(2, 10, 30) == 9
    assert backoff_seconds(3, 10, 30) == 20
    assert backoff_seconds(50, 10, 30) == 20


class TestNextSleep:
    @pytest.fixture
    def source(self):
        return Source("test", FakeSourceAdapter(), options=SourceOptions(interval=10, max_interval=30))

    def test_interval_while_recently_active(self, source):
        source.last_activity_at = BASE_TIME
        assert source.next_sleep(False, BASE_TIME + timedelta(seconds=200)) == 10
        assert source.check_count == 0

    def test_grows_when_inactive_and_resets_on_activity(self, source):
        source.last_activity_at = BASE_TIME
        now = BASE_TIME + timedelta(seconds=301)

        assert [source.next_sleep(False, now) for _ in range(4)] == [15, 19, 30, 30]

        assert source.next_sleep(True, now) == 10
        assert source.check_count == 0
        assert source.last_activity_at == now
        assert source.next_sleep(False, now + timedelta(seconds=60)) == 10


class TestDiscovery:
    def test_same_play_discovered_once(self):
        source = Source("test", FakeSourceAdapter())
        play = generate_play()

        assert len(source.discover([play])) == 1
        assert source.discover([play.with_data(play_date=BASE_TIME + timedelta(seconds=2))]) == []
        assert source.tracks_discovered == 1

    def test_repeat_listen_later_is_new(self):
        source = Source("test", FakeSourceAdapter())
        play = generate_play(duration=200)
        source.discover([play])

        assert len(source.discover([play.with_data(play_date=BASE_TIME + timedelta(hours=1))])) == 1

    def test_discovered_plays_sorted_and_flagged(self):
        source = Source("test", FakeSourceAdapter())
        late = generate_play(track="Late", play_date=BASE_TIME + timedelta(minutes=5))
        early = generate_play(track="Early")

        found = source.discover([late, early])

        assert [p.data.track for p in found] == ["Early", "Late"]
        assert all(p.meta.new_from_source for p in found)
        assert source.last_play_date == late.data.play_date


class TestBacklog:
    def test_backlog_routed_to_every_client(self):
        plays = [generate_play(track=f"Track {i}", play_date=BASE_TIME + timedelta(minutes=i)) for i in range(3)]
        first, second = RecordingClient("first"), RecordingClient("second")
        source = Source("test", FakeSourceAdapter([plays]), clients=[first, second])

        assert source.process_backlog() == 3

        for client in (first, second):
            assert [p.data.track for p in client.queued] == ["Track 0", "Track 1", "Track 2"]
            assert not any(p.meta.new_from_source for p in client.queued)

    def test_backlog_fetch_failure_is_not_fatal(self):
        source = Source("test", FakeSourceAdapter(error=UpstreamError("unavailable")))
        assert source.process_backlog() == 0

    def test_now_playing_source_skips_backlog(self):
        adapter = FakeSourceAdapter([[generate_play()]], now_playing_only=True)
        source = Source("test", adapter)
        assert source.process_backlog() == 0
        assert adapter.fetches == 0


class TestNowPlaying:
    def test_plays_confirmed_through_detector(self, clock):
        adapter = FakeSourceAdapter([[generate_play(source=None)]], now_playing_only=True)
        source = Source("test", adapter, clock=clock)

        assert source.get_recently_played() == []
        clock.advance(30)
        confirmed = source.get_recently_played()

        assert len(confirmed) == 1
        assert confirmed[0].meta.source == "fake"
        assert confirmed[0].data.play_date == BASE_TIME


class TestPolling:
    def test_new_plays_handed_to_clients(self, polling):
        old = generate_play(track="Old")
        new = generate_play(track="New", play_date=BASE_TIME + timedelta(minutes=5))
        client = RecordingClient()
        source = Source("test", FakeSourceAdapter([[old], [old, new]]), clients=[client], options=fast_options())
        source.discover([old])

        polling(source)

        assert wait_for(lambda: len(client.queued) == 1)
        assert client.queued[0].data.track == "New"
        assert source.polling

    def test_just_started_play_waits_for_handoff(self, polling):
        client = RecordingClient()
        play = generate_play(play_date=utcnow())
        source = Source("test", FakeSourceAdapter([[play]]), clients=[client],
                        options=fast_options(handoff_delay=0.3))

        started = time.monotonic()
        polling(source)

        assert wait_for(lambda: len(client.queued) == 1)
        assert time.monotonic() - started >= 0.3

    def test_retries_exhausted(self, polling, notifier, sender):
        source = Source("test", FakeSourceAdapter(error=UpstreamError("boom")),
                        options=fast_options(max_poll_retries=2), notifier=notifier)

        polling(source)

        assert wait_for(lambda: source.polling_state == ERRORED)
        assert sender.levels() == ["WARNING", "WARNING", "ERROR"]
        assert source.adapter.fetches == 3

    def test_stop_is_acknowledged(self, polling):
        source = polling(Source("test", FakeSourceAdapter(), options=fast_options()))
        assert source.polling_state == POLLING
        assert source.try_stop_polling(timeout=3)
        assert source.polling_state == IDLE

    def test_unauthenticated_source_does_not_poll(self, notifier, sender):
        class LockedAdapter(FakeSourceAdapter):
            requires_auth = True

            def test_auth(self):
                return False

        source = Source("test", LockedAdapter(), notifier=notifier)

        assert not source.poll()
        assert not source.polling
        assert sender.levels() == ["ERROR"]

    def test_poll_processes_backlog_then_starts(self):
        client = RecordingClient()
        source = Source("test", FakeSourceAdapter([[generate_play()]]), clients=[client], options=fast_options())

        try:
            assert source.poll()
            assert source.polling
            assert len(client.queued) == 1
            assert source.status()["tracks_discovered"] == 1
        finally:
            source.try_stop_polling(timeout=3)
