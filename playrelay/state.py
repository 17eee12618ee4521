from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Iterable, List, Tuple

from .models import (
    PLAYER_STOPPED,
    PlayerStateData,
    PlayRecord,
    build_track_string,
    play_data_match,
    sort_by_oldest,
    utcnow,
)

PlatformId = Tuple[str, str]

CONFIRM_AFTER_SECONDS = 30
MAX_CONFIRMED_PER_PLATFORM = 30


class StatefulPlayDetector:
    """Turns repeated "now playing" snapshots into confirmed plays.

    A play seen in a snapshot becomes a candidate, dated the first time we saw
    it. Once a candidate has been seen continuously for 30 seconds it is
    confirmed, unless it is the same still-playing track that was already
    confirmed. When a source also reports playback position, the position
    must have advanced 30 seconds as well.

    Each platform (device + user) keeps its own candidates and confirmed plays.
    A track shorter than the poll interval may never be confirmed.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = utcnow,
        confirm_after: float = CONFIRM_AFTER_SECONDS,
        use_existing_play_date: bool = False,
    ):
        self.logger = logger or logging.getLogger("detector")
        self.clock = clock
        self.confirm_after = confirm_after
        self.use_existing_play_date = use_existing_play_date
        self.candidate_recently_played: Dict[PlatformId, List[PlayRecord]] = {}
        self.stateful_recently_played: Dict[PlatformId, Deque[PlayRecord]] = {}

    # -------- inspection --------
    def candidates(self) -> List[PlayRecord]:
        return sort_by_oldest(p for plays in self.candidate_recently_played.values() for p in plays)

    def confirmed(self) -> List[PlayRecord]:
        return sort_by_oldest(p for plays in self.stateful_recently_played.values() for p in plays)

    # -------- detection --------
    def _lock(self, observed: Iterable[PlayRecord | PlayerStateData], now: datetime) -> Dict[PlatformId, List[PlayRecord]]:
        grouped: Dict[PlatformId, List[PlayRecord]] = {}
        for item in observed:
            if isinstance(item, PlayerStateData):
                if item.status == PLAYER_STOPPED:
                    continue
                play = item.to_play()
            else:
                play = item
            if not self.use_existing_play_date or play.data.play_date is None:
                # the source cannot tell us when the play started, only that it is playing now
                play = play.with_data(play_date=now)
            grouped.setdefault(play.platform_id, []).append(play)
        return grouped

    def _progress_valid(self, candidate: PlayRecord, current: PlayRecord | None) -> bool:
        if current is None:
            return True
        start = candidate.meta.track_progress_position
        position = current.meta.track_progress_position
        if start is None or position is None:
            return True
        return position - start >= self.confirm_after

    def process_recent_plays(self, observed: Iterable[PlayRecord | PlayerStateData]) -> List[PlayRecord]:
        """Feed one snapshot of currently playing tracks. Returns plays confirmed by this call."""
        now = self.clock()
        grouped = self._lock(observed, now)
        newly_confirmed: List[PlayRecord] = []

        # platforms absent from this snapshot have stopped playing
        for platform_id in list(self.candidate_recently_played):
            if platform_id not in grouped:
                for dropped in self.candidate_recently_played.pop(platform_id):
                    self.logger.debug("[Platform %s] Candidate no longer playing, removed: %s",
                                      platform_id, build_track_string(dropped, ("artist", "track")))

        for platform_id, locked in grouped.items():
            candidates = self.candidate_recently_played.get(platform_id, [])
            if not candidates:
                for p in locked:
                    self.logger.debug("[Platform %s] New candidate: %s", platform_id, build_track_string(p, ("artist", "track")))
                self.candidate_recently_played[platform_id] = sort_by_oldest(locked)
                continue

            new_tracks = [p for p in locked if not any(play_data_match(c, p) for c in candidates)]
            for p in new_tracks:
                self.logger.debug("[Platform %s] New candidate: %s", platform_id, build_track_string(p, ("artist", "track")))
            kept = []
            for c in candidates:
                if any(play_data_match(c, p) for p in locked):
                    kept.append(c)
                else:
                    self.logger.debug("[Platform %s] Candidate no longer playing, removed: %s",
                                      platform_id, build_track_string(c, ("artist", "track")))
            candidates = sort_by_oldest(kept + new_tracks)
            self.candidate_recently_played[platform_id] = candidates

            confirmed = self.stateful_recently_played.setdefault(
                platform_id, deque(maxlen=MAX_CONFIRMED_PER_PLATFORM)
            )
            threshold = now - timedelta(seconds=self.confirm_after)
            for candidate in candidates:
                if candidate.data.play_date > threshold:
                    continue
                current = next((p for p in locked if play_data_match(p, candidate)), None)
                if not self._progress_valid(candidate, current):
                    continue
                if self._should_confirm(candidate, confirmed, platform_id):
                    confirmed.append(candidate)
                    newly_confirmed.append(candidate)

            ordered = sort_by_oldest(confirmed)
            confirmed.clear()
            confirmed.extend(ordered)

        return sort_by_oldest(newly_confirmed)

    def _should_confirm(self, candidate: PlayRecord, confirmed: Deque[PlayRecord], platform_id: PlatformId) -> bool:
        prefix = f"[Platform {platform_id}] (Stateful Play) {build_track_string(candidate, ('artist', 'track'))}"
        matching = next((p for p in reversed(confirmed) if play_data_match(p, candidate)), None)
        if matching is None:
            self.logger.debug("%s confirmed after being seen for %ss and not matching any prior plays",
                              prefix, self.confirm_after)
            return True
        if candidate.data.play_date == matching.data.play_date:
            # same still-playing candidate, already confirmed
            return False
        duration = candidate.data.duration
        if duration is not None:
            if candidate.data.play_date > matching.data.play_date + timedelta(seconds=duration):
                self.logger.debug("%s confirmed, prior play of the same track had finished", prefix)
                return True
            return False
        if not play_data_match(confirmed[-1], candidate):
            self.logger.debug("%s confirmed, duration unknown but it is not the most recently confirmed track", prefix)
            return True
        return False
