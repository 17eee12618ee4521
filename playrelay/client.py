"""
Per-client scrobble processor.

Sources hand confirmed plays to ``queue_scrobble``. One worker thread pops
them oldest-first, checks them against the client's history with the
duplicate matcher and submits whatever is new through the client adapter.

Failures while submitting:

- PlayValidationError: the play is dropped.
- non-fatal UpstreamError, or anything unclassified: the play goes to the dead-letter store.
- NetworkError, ClientAuthError, show-stopper UpstreamError: the play is put
  back at the front of the queue and the worker stops. It restarts after
  ``attempt * retry_multiplier`` seconds, at most ``max_processing_retries`` times.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Deque, Iterable, List

from . import events as ev
from .adapters import ClientAdapter
from .errors import ClientAuthError, PlayValidationError, is_fatal, is_network_error
from .events import Emitter, EventChannel
from .matcher import DuplicateMatcher, MatchOptions
from .models import (
    DeadLetterScrobble,
    PlayRecord,
    QueuedScrobble,
    ScrobbledPlayObject,
    build_track_string,
    sort_by_oldest,
    utcnow,
)
from .notifier import Notifiers
from .scrobble_queue import ScrobbleQueue
from .transforms import CANDIDATE, EXISTING, POST_COMPARE, PRE_COMPARE, TransformHooks, transform_play

NOT_INITIALIZED = "not initialized"
INITIALIZING = "initializing"
INITIALIZED = "initialized"
INIT_FAILED = "init failed"

IDLE = "idle"
SCROBBLING = "scrobbling"
ERRORED = "errored"

MAX_STORED_SCROBBLES = 40
STOP_ACK_TIMEOUT = 10

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass
class ClientOptions:
    check_existing: bool = True
    refresh_enabled: bool = True
    refresh_initial_count: int = 50
    refresh_stale_after: float | None = None  # seconds
    refresh_min_interval: float = 5
    scrobble_delay: float = 1
    scrobble_sleep: float = 2
    max_processing_retries: int = 3
    retry_multiplier: float = 1.5
    dead_letter_retries: int = 3
    verbose_on_match: bool = False
    verbose_on_no_match: bool = False
    verbose_confidence_breakdown: bool = False


def validate_play(play: PlayRecord) -> None:
    if play.data.play_date is None:
        raise PlayValidationError("Play has no play date")
    if play.data.track is None and not play.data.artists:
        raise PlayValidationError("Play has neither a track title nor any artists")


class ScrobbleClient:
    def __init__(
        self,
        name: str,
        adapter: ClientAdapter,
        options: ClientOptions | None = None,
        transforms: TransformHooks | None = None,
        notifier: Notifiers | None = None,
        events: EventChannel | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.name = name
        self.adapter = adapter
        self.options = options or ClientOptions()
        self.transforms = transforms or TransformHooks()
        self.notifier = notifier or Notifiers()
        self.logger = logger or logging.getLogger(f"client.{name}")
        self.clock = clock
        self.emitter = Emitter(events, "client", name)

        self.matcher = DuplicateMatcher(
            MatchOptions(
                check_existing=self.options.check_existing,
                on_match=self.options.verbose_on_match,
                on_no_match=self.options.verbose_on_no_match,
                confidence_breakdown=self.options.verbose_confidence_breakdown,
            ),
            logger=self.logger,
            candidate_transform=lambda p: transform_play(p, self.transforms, CANDIDATE, self.logger),
            existing_transform=lambda p: transform_play(p, self.transforms, EXISTING, self.logger),
        )

        self.init_state = NOT_INITIALIZED
        self.processing_state = IDLE
        self.authed = False

        self.queue = ScrobbleQueue()
        self.recent_scrobbles: List[PlayRecord] = []
        self.scrobbled: Deque[ScrobbledPlayObject] = deque(maxlen=MAX_STORED_SCROBBLES)
        self.oldest_scrobble_time: datetime | None = None
        self.newest_scrobble_time: datetime | None = None
        self.last_scrobble_check: datetime = _EPOCH
        self.tracks_scrobbled = 0

        # dedup + submit must not interleave between the worker and a dead-letter sweep
        self._deliver_lock = threading.RLock()
        self._last_submit: float | None = None
        self._stop = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()
        self._thread: threading.Thread | None = None
        self._restarts = 0

    # -------------------------
    # Init / auth
    # -------------------------
    def _set_init(self, state: str) -> None:
        self.init_state = state
        self.emitter.emit(ev.STATUS_CHANGE, init=state)

    def _set_processing(self, state: str) -> None:
        if state != self.processing_state:
            self.processing_state = state
            self.emitter.emit(ev.STATUS_CHANGE, processing=state)

    @property
    def initialized(self) -> bool:
        return self.init_state == INITIALIZED

    @property
    def scrobbling(self) -> bool:
        return self.processing_state == SCROBBLING

    def initialize(self) -> bool:
        if self.init_state == INITIALIZING:
            self.logger.warning("Already initializing")
            return False
        self._set_init(INITIALIZING)
        self.logger.info("Initializing...")
        try:
            connected = self.adapter.check_connection()
        except Exception as e:
            self.logger.error("Could not connect to client: %s", e)
            self._set_init(INIT_FAILED)
            return False
        if not connected:
            self.logger.error("Could not connect to client")
            self._set_init(INIT_FAILED)
            return False

        if self.adapter.requires_auth:
            self.test_auth()
        else:
            self.authed = True

        if self.authed and self.options.refresh_enabled:
            try:
                self.refresh_scrobbles()
            except Exception as e:
                # history is only needed for dedup; an empty cache means "not yet scrobbled"
                self.logger.warning("Initial scrobble history refresh failed: %s", e)

        self._set_init(INITIALIZED)
        self.logger.info("Initialized (auth %s)", "OK" if self.authed else "FAILED")
        return True

    def test_auth(self) -> bool:
        try:
            self.authed = bool(self.adapter.test_auth())
        except Exception as e:
            self.authed = False
            if is_network_error(e):
                self.logger.warning("Could not reach client to check auth: %s", e)
            else:
                self.logger.error("Authentication failed: %s", e)
        return self.authed

    def is_ready(self) -> bool:
        return self.initialized and (not self.adapter.requires_auth or self.authed)

    # -------------------------
    # History cache
    # -------------------------
    def refresh_scrobbles(self) -> None:
        plays = sort_by_oldest(self.adapter.get_recent_history(self.options.refresh_initial_count))
        with self._deliver_lock:
            self.recent_scrobbles = plays
            dated = [p for p in plays if p.data.play_date is not None]
            if dated:
                self.oldest_scrobble_time = dated[0].data.play_date
                self.newest_scrobble_time = dated[-1].data.play_date
            self.last_scrobble_check = self.clock()
            self._filter_scrobbled()
        self.logger.debug("Refreshed %s recent scrobbles (oldest %s, newest %s)",
                          len(plays), self.oldest_scrobble_time, self.newest_scrobble_time)

    def should_refresh(self, play: PlayRecord | None = None) -> bool:
        """Whether the cached history might not cover ``play`` (default: newest queued play)."""
        if not self.options.refresh_enabled:
            return False
        if play is None:
            newest = self.queue.peek_newest()
            if newest is None:
                return False
            play = newest.play

        since_check = (self.clock() - self.last_scrobble_check).total_seconds()
        if since_check < self.options.refresh_min_interval:
            return False
        if self.options.refresh_stale_after is not None and since_check > self.options.refresh_stale_after:
            return True
        play_date = play.data.play_date
        if play_date is None:
            return False
        if play_date > self.last_scrobble_check:
            return True
        if self.newest_scrobble_time is not None:
            # could sit between upstream scrobbles we have not seen
            if play_date < self.newest_scrobble_time or self.last_scrobble_check < self.newest_scrobble_time:
                return True
        return False

    def time_frame_is_valid(self, play: PlayRecord) -> tuple[bool, str]:
        if self.oldest_scrobble_time is None:
            return True, ""
        play_date = play.data.play_date
        if play_date is not None and play_date > self.oldest_scrobble_time:
            return True, ""
        return False, (
            f"occurred before the oldest scrobble returned by this client "
            f"({self.oldest_scrobble_time.isoformat(timespec='seconds')})"
        )

    def _filter_scrobbled(self) -> None:
        kept = [s for s in self.scrobbled if self.time_frame_is_valid(s.play)[0]]
        self.scrobbled = deque(kept, maxlen=MAX_STORED_SCROBBLES)

    def add_scrobbled_track(self, play: PlayRecord, scrobble: PlayRecord) -> None:
        with self._deliver_lock:
            self.scrobbled.append(ScrobbledPlayObject(play=play, scrobble=scrobble))
            history = sort_by_oldest([*self.recent_scrobbles, scrobble])
            # only the newest entries are kept between refreshes
            self.recent_scrobbles = history[-max(self.options.refresh_initial_count, MAX_STORED_SCROBBLES):]
            scrobble_date = scrobble.data.play_date
            if scrobble_date is not None and (self.newest_scrobble_time is None or scrobble_date > self.newest_scrobble_time):
                self.newest_scrobble_time = scrobble_date

    def already_scrobbled(self, play: PlayRecord) -> bool:
        with self._deliver_lock:
            result = self.matcher.existing_scrobble(play, list(self.recent_scrobbles), list(self.scrobbled))
        return result.duplicate

    # -------------------------
    # Queue
    # -------------------------
    def queue_scrobble(self, plays: PlayRecord | Iterable[PlayRecord], source: str) -> List[QueuedScrobble]:
        if isinstance(plays, PlayRecord):
            plays = [plays]
        queued = []
        for play in plays:
            transformed = transform_play(play, self.transforms, PRE_COMPARE, self.logger)
            item = self.queue.enqueue(source, transformed)
            queued.append(item)
            self.logger.debug("Queued scrobble from %s: %s (queue size %s)",
                              source, build_track_string(transformed), self.queue.size())
            self.emitter.emit(ev.SCROBBLE_QUEUED, source=source, play=transformed, id=item.id)
        return queued

    def _wait_for_spacing(self) -> None:
        if self._last_submit is None:
            return
        remaining = self.options.scrobble_delay - (time.monotonic() - self._last_submit)
        if remaining > 0:
            time.sleep(remaining)

    def _deliver(self, play: PlayRecord, source: str) -> PlayRecord | None:
        """Validity, dedup, submit. Returns what was scrobbled, None if it was skipped."""
        validate_play(play)
        with self._deliver_lock:
            valid, reason = self.time_frame_is_valid(play)
            if not valid:
                self.logger.debug("Will not scrobble %s from %s because it %s", build_track_string(play), source, reason)
                return None
            if self.already_scrobbled(play):
                self.logger.info("Already scrobbled (%s): %s", source, build_track_string(play))
                return None

            to_submit = transform_play(play, self.transforms, POST_COMPARE, self.logger)
            self._wait_for_spacing()
            try:
                accepted = self.adapter.submit(to_submit)
            finally:
                self._last_submit = time.monotonic()
            scrobble = accepted or to_submit
            self.add_scrobbled_track(play, scrobble)
            self.tracks_scrobbled += 1

        self.logger.info("Scrobbled (%s): %s", source, build_track_string(to_submit))
        self.emitter.emit(ev.SCROBBLE, source=source, play=to_submit)
        return scrobble

    def _handle_failure(self, item: QueuedScrobble, exc: Exception) -> None:
        track = build_track_string(item.play)
        if isinstance(exc, PlayValidationError):
            self.logger.warning("Dropping invalid play from %s (%s): %s", item.source, exc, track)
            return
        if is_fatal(exc):
            self.queue.requeue_front(item)
            if isinstance(exc, ClientAuthError):
                self.authed = False
            raise exc
        dead = self.queue.add_dead_letter(item.source, item.play, str(exc))
        self.logger.warning("Scrobble of %s failed, moved to dead letter queue: %s", track, exc)
        self.emitter.emit(ev.DEAD_LETTER, id=dead.id, source=item.source, play=item.play, error=str(exc))
        self.notifier.notify(f"Client - {self.name} - Scrobble Error",
                             f"Failed to scrobble {track}, added to dead letter queue: {exc}", "warn")

    # -------------------------
    # Processing loop
    # -------------------------
    def start_scrobbling(self) -> bool:
        if self._thread is not None and self._thread.is_alive():
            self.logger.warning("Scrobble processing is already running")
            return False
        if not self.is_ready():
            self.logger.warning("Cannot start scrobble processing, client is not ready")
            return False
        self._stop.clear()
        self._stopped.clear()
        self._set_processing(SCROBBLING)
        self._thread = threading.Thread(target=self._run, name=f"client-{self.name}", daemon=True)
        self._thread.start()
        self.logger.info("Scrobble processing started")
        return True

    def try_stop_scrobbling(self, timeout: float = STOP_ACK_TIMEOUT) -> bool:
        if self._thread is None or not self._thread.is_alive():
            if self.processing_state == SCROBBLING:
                self._set_processing(IDLE)
            return True
        self.logger.info("Stopping scrobble processing...")
        self._stop.set()
        if self._stopped.wait(timeout):
            self.logger.info("Scrobble processing stopped")
            return True
        self.logger.warning("Scrobble processing did not acknowledge stop within %ss", timeout)
        return False

    def _run(self) -> None:
        self._restarts = 0
        try:
            while not self._stop.is_set():
                try:
                    self._process_queue()
                    break
                except Exception as e:
                    self._restarts += 1
                    attempt = self._restarts
                    if attempt > self.options.max_processing_retries:
                        self.logger.error("Scrobble processing stopped after %s restarts: %s",
                                          self.options.max_processing_retries, e)
                        self.notifier.notify(f"Client - {self.name} - Processing Error",
                                             f"Scrobble processing stopped: {e}", "error")
                        self._set_processing(ERRORED)
                        return
                    delay = attempt * self.options.retry_multiplier
                    self.logger.warning("Scrobble processing interrupted (%s), restarting in %ss (attempt %s/%s)",
                                        e, delay, attempt, self.options.max_processing_retries)
                    self.notifier.notify(f"Client - {self.name} - Processing Interrupted",
                                         f"{e}. Restarting in {delay}s", "warn")
                    if self._stop.wait(delay):
                        break
                    if not self.authed and self.adapter.requires_auth:
                        self.test_auth()
            self._set_processing(IDLE)
        finally:
            self._stopped.set()

    def _process_queue(self) -> None:
        while not self._stop.is_set():
            item = self.queue.pop_oldest()
            if item is None:
                self._stop.wait(self.options.scrobble_sleep)
                continue
            self.emitter.emit(ev.SCROBBLE_DEQUEUED, id=item.id, source=item.source, play=item.play)

            if self.should_refresh(item.play):
                try:
                    self.refresh_scrobbles()
                except Exception as e:
                    if is_fatal(e):
                        self.queue.requeue_front(item)
                        raise
                    self.logger.warning("Could not refresh scrobble history, using cached history: %s", e)

            try:
                self._deliver(item.play, item.source)
            except Exception as e:
                self._handle_failure(item, e)
            else:
                self._restarts = 0

    # -------------------------
    # Dead letters
    # -------------------------
    def _retry_dead_letter(self, dead: DeadLetterScrobble) -> bool:
        track = build_track_string(dead.play)
        try:
            self._deliver(dead.play, dead.source)
        except Exception as e:
            if is_fatal(e):
                if isinstance(e, ClientAuthError):
                    self.authed = False
                raise
            updated = self.queue.record_dead_letter_failure(dead.id, str(e), self.clock())
            if updated is not None and updated.retries >= self.options.dead_letter_retries:
                self.logger.warning("Dead letter scrobble %s failed %s times and will not be retried again: %s",
                                    track, updated.retries, e)
            else:
                self.logger.warning("Dead letter scrobble %s failed again: %s", track, e)
            return False
        self.queue.remove_dead_letter(dead.id)
        self.logger.info("Dead letter scrobble %s resolved", track)
        return True

    def process_dead_letter_queue(self) -> int:
        """Retry every dead letter still under the retry ceiling. Returns how many were resolved."""
        if not self.is_ready():
            self.logger.debug("Skipping dead letter processing, client is not ready")
            return 0
        resolved = 0
        for dead in self.queue.dead_letter_iter(self.options.dead_letter_retries):
            try:
                if self._retry_dead_letter(dead):
                    resolved += 1
            except Exception as e:
                # client unusable right now; retries are not counted against the items
                self.logger.warning("Stopped processing dead letters: %s", e)
                break
        if resolved:
            self.logger.info("Resolved %s dead letter scrobbles, %s remaining", resolved, self.queue.dead_letter_size())
        return resolved

    def process_dead_letter_scrobble(self, dead_id: str) -> bool:
        dead = self.queue.get_dead_letter(dead_id)
        if dead is None:
            self.logger.warning("No dead letter scrobble with id %s", dead_id)
            return False
        try:
            return self._retry_dead_letter(dead)
        except Exception as e:
            self.logger.warning("Could not process dead letter scrobble %s: %s", dead_id, e)
            return False

    def remove_dead_letter_scrobble(self, dead_id: str) -> bool:
        removed = self.queue.remove_dead_letter(dead_id)
        if removed:
            self.logger.info("Removed dead letter scrobble %s", dead_id)
        return removed

    def remove_dead_letter_scrobbles(self) -> int:
        removed = self.queue.clear_dead_letters()
        self.logger.info("Removed %s dead letter scrobbles", removed)
        return removed

    # -------------------------
    # Status
    # -------------------------
    def status(self) -> dict:
        return {
            "name": self.name,
            "init": self.init_state,
            "processing": self.processing_state,
            "authed": self.authed,
            "ready": self.is_ready(),
            "queued": self.queue.size(),
            "dead_letters": self.queue.dead_letter_size(),
            "tracks_scrobbled": self.tracks_scrobbled,
            "last_scrobble_check": self.last_scrobble_check,
            "oldest_scrobble": self.oldest_scrobble_time,
            "newest_scrobble": self.newest_scrobble_time,
        }
