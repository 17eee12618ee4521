from datetime import timedelta

from conftest import BASE_TIME, generate_play
from playrelay.events import Event, EventChannel
from playrelay.scrobble_queue import ScrobbleQueue


def test_enqueue_keeps_oldest_first():
    queue = ScrobbleQueue()
    for minutes in (10, 0, 5):
        queue.enqueue("test", generate_play(track=str(minutes), play_date=BASE_TIME + timedelta(minutes=minutes)))

    assert [queue.pop_oldest().play.data.track for _ in range(3)] == ["0", "5", "10"]
    assert queue.pop_oldest() is None


def test_requeue_front_and_peek():
    queue = ScrobbleQueue()
    first = queue.enqueue("test", generate_play(track="first"))
    queue.enqueue("test", generate_play(track="last", play_date=BASE_TIME + timedelta(hours=1)))

    popped = queue.pop_oldest()
    queue.requeue_front(popped)

    assert popped is first
    assert queue.items()[0] is first
    assert queue.peek_newest().play.data.track == "last"


def test_dead_letter_retry_accounting():
    queue = ScrobbleQueue()
    dead = queue.add_dead_letter("test", generate_play(), "rejected")

    queue.record_dead_letter_failure(dead.id, "rejected again", BASE_TIME)
    queue.record_dead_letter_failure(dead.id, "rejected again", BASE_TIME)

    assert queue.get_dead_letter(dead.id).retries == 2
    assert list(queue.dead_letter_iter(2)) == []
    assert len(list(queue.dead_letter_iter(3))) == 1
    assert queue.clear_dead_letters() == 1
    assert not queue.remove_dead_letter(dead.id)


def test_event_channel_drops_oldest_when_full():
    channel = EventChannel(maxsize=2)
    for name in ("a", "b", "c"):
        channel.emit(Event(name=name, origin="client", component="test"))

    assert [e.name for e in channel.drain()] == ["b", "c"]
    assert channel.get(timeout=0.01) is None
