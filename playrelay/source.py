"""
Per-source polling loop.

Each cycle fetches from the adapter, turns now-playing snapshots into
confirmed plays, drops anything already discovered and hands the rest to
every routed client. The sleep between cycles grows while the source is
inactive and snaps back to ``interval`` on new activity.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Iterable, List, Sequence, Tuple

from . import events as ev
from .adapters import SourceAdapter
from .client import INIT_FAILED, INITIALIZED, INITIALIZING, NOT_INITIALIZED, STOP_ACK_TIMEOUT, ScrobbleClient
from .errors import is_network_error
from .events import Emitter, EventChannel
from .models import PlayerStateData, PlayRecord, build_track_string, play_data_match, sort_by_oldest, utcnow
from .notifier import Notifiers
from .state import StatefulPlayDetector
from .temporal import compare_play_temporally, has_acceptable_accuracy
from .transforms import PRE_COMPARE, TransformHooks, transform_play

IDLE = "idle"
POLLING = "polling"
ERRORED = "errored"

MAX_DISCOVERED_PER_PLATFORM = 30
MAX_CHECK_COUNT = 1000


@dataclass
class SourceOptions:
    interval: float = 10
    max_interval: float = 30
    check_active_for: float = 300
    max_poll_retries: int = 5
    retry_multiplier: float = 1.5
    recent_limit: int = 20
    backlog: bool = True
    # plays newer than handoff_window seconds wait handoff_delay seconds before being queued
    handoff_window: float = 5
    handoff_delay: float = 10


def backoff_seconds(check_count: int, interval: float, max_interval: float) -> float:
    n = min(check_count, MAX_CHECK_COUNT)
    return round(max(min(n * 2 * (1.1 * n), max_interval - interval), 5))


class Source:
    def __init__(
        self,
        name: str,
        adapter: SourceAdapter,
        clients: Sequence[ScrobbleClient] = (),
        options: SourceOptions | None = None,
        transforms: TransformHooks | None = None,
        notifier: Notifiers | None = None,
        events: EventChannel | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.name = name
        self.adapter = adapter
        self.clients = list(clients)
        self.options = options or SourceOptions()
        self.transforms = transforms or TransformHooks()
        self.notifier = notifier or Notifiers()
        self.logger = logger or logging.getLogger(f"source.{name}")
        self.clock = clock
        self.emitter = Emitter(events, "source", name)

        self.detector: StatefulPlayDetector | None = None
        if adapter.now_playing_only:
            self.detector = StatefulPlayDetector(
                logger=self.logger, clock=clock, use_existing_play_date=adapter.use_existing_play_date
            )

        self.init_state = NOT_INITIALIZED
        self.polling_state = IDLE
        self.authed = False

        self.discovered: Dict[Tuple[str, str], Deque[PlayRecord]] = {}
        self.tracks_discovered = 0
        self.last_activity_at: datetime | None = None
        self.last_play_date: datetime | None = None
        self.check_count = 0
        self.sleep_time = self.options.interval

        self._stop = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()
        self._thread: threading.Thread | None = None

    # -------------------------
    # Init / auth
    # -------------------------
    def _set_init(self, state: str) -> None:
        self.init_state = state
        self.emitter.emit(ev.STATUS_CHANGE, init=state)

    def _set_polling(self, state: str) -> None:
        if state != self.polling_state:
            self.polling_state = state
            self.emitter.emit(ev.STATUS_CHANGE, polling=state)

    @property
    def initialized(self) -> bool:
        return self.init_state == INITIALIZED

    @property
    def polling(self) -> bool:
        return self.polling_state == POLLING

    def initialize(self) -> bool:
        if self.init_state == INITIALIZING:
            self.logger.warning("Already initializing")
            return False
        self._set_init(INITIALIZING)
        try:
            connected = self.adapter.check_connection()
        except Exception as e:
            self.logger.error("Could not connect to source: %s", e)
            self._set_init(INIT_FAILED)
            return False
        if not connected:
            self.logger.error("Could not connect to source")
            self._set_init(INIT_FAILED)
            return False
        if self.adapter.requires_auth:
            self.test_auth()
        else:
            self.authed = True
        self._set_init(INITIALIZED)
        self.logger.info("Initialized")
        return True

    def test_auth(self) -> bool:
        try:
            self.authed = bool(self.adapter.test_auth())
        except Exception as e:
            self.authed = False
            if is_network_error(e):
                self.logger.warning("Could not reach source to check auth: %s", e)
            else:
                self.logger.error("Authentication failed: %s", e)
        return self.authed

    def is_ready(self) -> bool:
        return self.initialized and (not self.adapter.requires_auth or self.authed)

    # -------------------------
    # Fetching and discovery
    # -------------------------
    def _prepare(self, play: PlayRecord) -> PlayRecord:
        if play.meta.source is None:
            play = play.with_meta(source=self.adapter.source_type)
        return transform_play(play, self.transforms, PRE_COMPARE, self.logger)

    def get_recently_played(self) -> List[PlayRecord]:
        raw = self.adapter.fetch_recent(self.options.recent_limit)
        if self.detector is not None:
            observed = []
            for item in raw:
                if isinstance(item, PlayerStateData):
                    observed.append(replace(item, play=self._prepare(item.play)))
                else:
                    observed.append(self._prepare(item))
            return self.detector.process_recent_plays(observed)
        plays = [item.to_play() if isinstance(item, PlayerStateData) else item for item in raw]
        return sort_by_oldest(self._prepare(p) for p in plays)

    def _is_newer(self, play: PlayRecord) -> bool:
        # confirmed now-playing plays are already new by construction
        if self.detector is not None or self.last_play_date is None or play.data.play_date is None:
            return True
        return play.data.play_date > self.last_play_date

    def already_discovered(self, play: PlayRecord) -> bool:
        for seen in self.discovered.get(play.platform_id, ()):
            if play_data_match(seen, play) and has_acceptable_accuracy(compare_play_temporally(seen, play).match):
                return True
        return False

    def discover(self, plays: Iterable[PlayRecord], new_from_source: bool = True) -> List[PlayRecord]:
        """Remember and return the plays not seen before."""
        new_plays = []
        for play in sort_by_oldest(plays):
            if self.already_discovered(play):
                continue
            play = play.with_meta(new_from_source=new_from_source)
            self.discovered.setdefault(play.platform_id, deque(maxlen=MAX_DISCOVERED_PER_PLATFORM)).append(play)
            self.tracks_discovered += 1
            if play.data.play_date is not None and (self.last_play_date is None or play.data.play_date > self.last_play_date):
                self.last_play_date = play.data.play_date
            new_plays.append(play)
            self.logger.info("Discovered => %s", build_track_string(play))
            self.emitter.emit(ev.DISCOVERED, play=play)
        return new_plays

    def scrobble(self, plays: Sequence[PlayRecord]) -> None:
        if not plays:
            return
        for client in self.clients:
            try:
                client.queue_scrobble(plays, self.name)
            except Exception as e:
                self.logger.error("Could not queue %s plays for client %s: %s", len(plays), client.name, e)

    def process_backlog(self) -> int:
        if self.detector is not None or not self.adapter.supports_recent:
            return 0
        try:
            plays = self.get_recently_played()
        except Exception as e:
            self.logger.warning("Could not fetch backlog: %s", e)
            return 0
        backlog = self.discover(plays, new_from_source=False)
        self.logger.info("Found %s backlogged plays", len(backlog))
        self.scrobble(backlog)
        return len(backlog)

    # -------------------------
    # Polling
    # -------------------------
    def poll(self) -> bool:
        """Auth gate, backlog, then start the polling loop."""
        if not self.initialized and not self.initialize():
            self.logger.warning("Cannot poll, source failed to initialize")
            return False
        if self.adapter.requires_auth and not self.authed and not self.test_auth():
            self.logger.warning("Cannot poll, source is not authenticated")
            self.notifier.notify(f"Source - {self.name} - Auth Error", "Source is not authenticated, polling not started", "error")
            return False
        if self.options.backlog:
            self.process_backlog()
        return self.start_polling()

    def start_polling(self) -> bool:
        if self._thread is not None and self._thread.is_alive():
            self.logger.warning("Polling is already running")
            return False
        self._stop.clear()
        self._stopped.clear()
        self._set_polling(POLLING)
        self._thread = threading.Thread(target=self._run, name=f"source-{self.name}", daemon=True)
        self._thread.start()
        return True

    def try_stop_polling(self, timeout: float = STOP_ACK_TIMEOUT) -> bool:
        if self._thread is None or not self._thread.is_alive():
            if self.polling_state == POLLING:
                self._set_polling(IDLE)
            return True
        self.logger.info("Stopping polling...")
        self._stop.set()
        if self._stopped.wait(timeout):
            self.logger.info("Polling stopped")
            return True
        self.logger.warning("Polling did not acknowledge stop within %ss", timeout)
        return False

    def _run(self) -> None:
        retries = 0
        try:
            while not self._stop.is_set():
                try:
                    self._poll_loop()
                    break
                except Exception as e:
                    retries += 1
                    if retries > self.options.max_poll_retries:
                        self.logger.error("Polling stopped after %s retries: %s", self.options.max_poll_retries, e)
                        self.notifier.notify(f"Source - {self.name} - Polling Error",
                                             f"Polling stopped after {self.options.max_poll_retries} retries: {e}", "error")
                        self._set_polling(ERRORED)
                        return
                    delay = retries * self.options.retry_multiplier
                    self.logger.warning("Polling error (%s), retrying in %ss (%s/%s)",
                                        e, delay, retries, self.options.max_poll_retries)
                    self.notifier.notify(f"Source - {self.name} - Polling Retry",
                                         f"{e}. Retrying in {delay}s", "warn")
                    if self._stop.wait(delay):
                        break
            self._set_polling(IDLE)
        finally:
            self._stopped.set()

    def _is_playing(self) -> bool:
        return self.detector is not None and bool(self.detector.candidates())

    def next_sleep(self, active: bool, now: datetime) -> float:
        """Sleep before the next cycle; grows while inactive past ``check_active_for``."""
        opts = self.options
        if active:
            self.last_activity_at = now
            self.check_count = 0
            self.sleep_time = opts.interval
            return self.sleep_time
        if self.last_activity_at is None:
            self.last_activity_at = now
        if (now - self.last_activity_at).total_seconds() <= opts.check_active_for:
            self.sleep_time = opts.interval
            return self.sleep_time
        self.check_count = min(self.check_count + 1, MAX_CHECK_COUNT)
        if self.sleep_time < opts.max_interval:
            self.sleep_time = min(opts.interval + backoff_seconds(self.check_count, opts.interval, opts.max_interval),
                                  opts.max_interval)
        else:
            self.sleep_time = opts.max_interval
        return self.sleep_time

    def _poll_loop(self) -> None:
        self.logger.info("Polling every %ss (max %ss when inactive)", self.options.interval, self.options.max_interval)
        if self.last_activity_at is None:
            self.last_activity_at = self.clock()
        while not self._stop.is_set():
            plays = self.get_recently_played()
            pending = [p for p in plays if self._is_newer(p) and not self.already_discovered(p)]
            now = self.clock()
            window = timedelta(seconds=self.options.handoff_window)
            if any(p.data.play_date is not None and now - p.data.play_date <= window for p in pending):
                # let slower sources report the same listen first
                self.logger.debug("Waiting %ss before handing off a play that just started", self.options.handoff_delay)
                if self._stop.wait(self.options.handoff_delay):
                    return
            new_plays = self.discover(pending)
            self.scrobble(new_plays)

            sleep_for = self.next_sleep(bool(new_plays) or self._is_playing(), self.clock())
            if self._stop.wait(sleep_for):
                return

    # -------------------------
    # Status
    # -------------------------
    def status(self) -> dict:
        return {
            "name": self.name,
            "type": self.adapter.source_type,
            "init": self.init_state,
            "polling": self.polling_state,
            "authed": self.authed,
            "ready": self.is_ready(),
            "tracks_discovered": self.tracks_discovered,
            "last_activity": self.last_activity_at,
            "sleep_time": self.sleep_time,
            "candidates": len(self.detector.candidates()) if self.detector is not None else None,
        }
