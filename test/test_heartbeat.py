import pytest

from conftest import FakeClientAdapter, FakeSourceAdapter, generate_play
from playrelay.client import ClientOptions, ScrobbleClient
from playrelay.errors import UpstreamError
from playrelay.heartbeat import Heartbeat
from playrelay.source import Source, SourceOptions


@pytest.fixture
def client():
    client = ScrobbleClient("test", FakeClientAdapter(), options=ClientOptions(scrobble_delay=0, scrobble_sleep=0.02))
    yield client
    client.try_stop_scrobbling(timeout=3)


@pytest.fixture
def source(client):
    source = Source("test", FakeSourceAdapter(), clients=[client], options=SourceOptions(interval=0.02, max_interval=0.05))
    yield source
    source.try_stop_polling(timeout=3)


def test_beat_starts_everything(client, source):
    Heartbeat([source], [client]).beat()

    assert client.is_ready()
    assert client.scrobbling
    assert source.polling


def test_beat_retries_dead_letters(client):
    client.initialize()
    client.queue.add_dead_letter("test", generate_play(), "service hiccup")

    Heartbeat([], [client]).beat()

    assert client.queue.dead_letter_size() == 0
    assert len(client.adapter.submitted) == 1


def test_failing_client_does_not_stop_the_beat(client, source):
    client.initialize()
    client.adapter.always_raise = UpstreamError("still failing")
    client.queue.add_dead_letter("test", generate_play(), "service hiccup")

    Heartbeat([source], [client]).beat()

    assert client.queue.dead_letters()[0].retries == 1
    assert source.polling


def test_start_stop():
    heartbeat = Heartbeat([], [], interval=0.01)
    heartbeat.start()
    heartbeat.stop()
    heartbeat._thread.join(timeout=1)
    assert not heartbeat._thread.is_alive()
