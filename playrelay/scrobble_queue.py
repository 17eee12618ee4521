"""
In-memory scrobble queue and dead-letter store for one client.

- Queue is kept ordered by play date, oldest first, no matter the order plays arrive in.
- Dead letters are plays whose submission failed with a non-fatal upstream error.
- Everything is guarded by one lock: sources enqueue from their own threads,
  the client's processing loop is the only consumer.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Iterator, List

from .models import DeadLetterScrobble, PlayRecord, QueuedScrobble, _date_key


class ScrobbleQueue:
    def __init__(self):
        self._lock = threading.Lock()
        self._q: List[QueuedScrobble] = []
        self._dead: List[DeadLetterScrobble] = []

    # -------- queue --------
    def enqueue(self, source: str, play: PlayRecord) -> QueuedScrobble:
        item = QueuedScrobble(source=source, play=play)
        with self._lock:
            self._q.append(item)
            # stable sort keeps arrival order for equal play dates
            self._q.sort(key=lambda x: _date_key(x.play))
        return item

    def requeue_front(self, item: QueuedScrobble) -> None:
        with self._lock:
            self._q.insert(0, item)

    def pop_oldest(self) -> QueuedScrobble | None:
        with self._lock:
            if not self._q:
                return None
            return self._q.pop(0)

    def peek_newest(self) -> QueuedScrobble | None:
        with self._lock:
            return self._q[-1] if self._q else None

    def items(self) -> List[QueuedScrobble]:
        with self._lock:
            return list(self._q)

    def size(self) -> int:
        with self._lock:
            return len(self._q)

    # -------- dead letters --------
    def add_dead_letter(self, source: str, play: PlayRecord, error: str) -> DeadLetterScrobble:
        dead = DeadLetterScrobble(source=source, play=play, error=error)
        with self._lock:
            self._dead.append(dead)
        return dead

    def dead_letters(self) -> List[DeadLetterScrobble]:
        with self._lock:
            return list(self._dead)

    def dead_letter_iter(self, max_retries: int) -> Iterator[DeadLetterScrobble]:
        """Snapshot of dead letters still eligible for retry."""
        for dead in self.dead_letters():
            if dead.retries < max_retries:
                yield dead

    def get_dead_letter(self, dead_id: str) -> DeadLetterScrobble | None:
        with self._lock:
            return next((d for d in self._dead if d.id == dead_id), None)

    def record_dead_letter_failure(self, dead_id: str, error: str, at: datetime) -> DeadLetterScrobble | None:
        with self._lock:
            dead = next((d for d in self._dead if d.id == dead_id), None)
            if dead is not None:
                dead.retries += 1
                dead.error = error
                dead.last_retry = at
            return dead

    def remove_dead_letter(self, dead_id: str) -> bool:
        with self._lock:
            before = len(self._dead)
            self._dead = [d for d in self._dead if d.id != dead_id]
            return len(self._dead) != before

    def clear_dead_letters(self) -> int:
        with self._lock:
            removed = len(self._dead)
            self._dead = []
            return removed

    def dead_letter_size(self) -> int:
        with self._lock:
            return len(self._dead)
