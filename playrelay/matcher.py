"""
Duplicate detection between a play about to be scrobbled and a client's history.

Two stages:

1. Plays this process already submitted to the client (``ScrobbledPlayObject``).
   Same track identity and an exact/close timestamp means duplicate.
2. Recent plays reported by the client. Each is scored on time, title and
   artist similarity; a weighted total at or above ``DUP_SCORE_THRESHOLD``
   means duplicate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from .models import PlayRecord, ScrobbledPlayObject, build_track_string, play_data_match
from .strings import compare_artists, compare_tracks, normalize_str
from .temporal import TemporalAccuracy, TemporalComparison, compare_play_temporally

ARTIST_WEIGHT = 0.3
TITLE_WEIGHT = 0.4
TIME_WEIGHT = 0.5
DUP_SCORE_THRESHOLD = 1.0

TIME_CLOSE_MATCH = 1.0
TIME_FUZZY_MATCH = 0.6

_CLOSE = (TemporalAccuracy.EXACT, TemporalAccuracy.CLOSE, TemporalAccuracy.DURING)


@dataclass
class MatchOptions:
    check_existing: bool = True
    on_match: bool = False
    on_no_match: bool = False
    confidence_breakdown: bool = False


@dataclass
class ScoreResult:
    existing: PlayRecord
    score: float
    time_match: float
    title_match: float
    artist_match: float
    whole_artist_matches: int
    artist_bonus: float = 0.0
    breakdowns: list[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.score >= DUP_SCORE_THRESHOLD

    @property
    def confidence(self) -> str:
        return f"Score {self.score:.2f} => {'Matched!' if self.matched else 'No Match'}"


@dataclass
class MatchResult:
    match: PlayRecord | None = None
    closest: ScoreResult | None = None
    confidence: str = "None"
    exact_submitted: bool = False

    @property
    def duplicate(self) -> bool:
        return self.match is not None


def comparing_multiple_artists(existing: PlayRecord, candidate: PlayRecord) -> bool:
    return len(existing.data.artists) > 1 or len(candidate.data.artists) > 1


class DuplicateMatcher:
    def __init__(
        self,
        options: MatchOptions | None = None,
        logger: logging.Logger | None = None,
        candidate_transform: Callable[[PlayRecord], PlayRecord] | None = None,
        existing_transform: Callable[[PlayRecord], PlayRecord] | None = None,
    ):
        self.options = options or MatchOptions()
        self.logger = logger or logging.getLogger("matcher")
        self.candidate_transform = candidate_transform or (lambda p: p)
        self.existing_transform = existing_transform or (lambda p: p)
        if self.options.on_match or self.options.on_no_match:
            self.logger.warning("Setting verbose matching may produce noisy logs! Use with care.")

    # -------- stage A --------
    def find_existing_submitted(
        self, play: PlayRecord, scrobbled: Iterable[ScrobbledPlayObject]
    ) -> tuple[ScrobbledPlayObject | None, list[ScrobbledPlayObject]]:
        """Previously submitted plays with the same identity, and the one that is also close in time."""
        data_matches = [s for s in scrobbled if play_data_match(play, s.play)]
        exact = next(
            (
                s for s in data_matches
                if compare_play_temporally(s.play, play).match in (TemporalAccuracy.EXACT, TemporalAccuracy.CLOSE)
            ),
            None,
        )
        return exact, data_matches

    # -------- stage B --------
    def compare_time(self, existing: PlayRecord, candidate: PlayRecord) -> float:
        return self._time_score(compare_play_temporally(existing, candidate, fuzzy_duration=True), candidate)

    def _time_score(self, result: TemporalComparison, candidate: PlayRecord) -> float:
        if result.match in _CLOSE:
            return TIME_CLOSE_MATCH
        if result.match is TemporalAccuracy.FUZZY and not candidate.data.repeat:
            return TIME_FUZZY_MATCH
        return 0.0

    def compare_title(self, existing: PlayRecord, candidate: PlayRecord) -> float:
        return min(compare_tracks(existing.data.track, candidate.data.track) / 100, 1.0)

    def compare_artist(self, existing: PlayRecord, candidate: PlayRecord) -> tuple[float, int]:
        norm_existing = {normalize_str(a, keep_single_whitespace=True) for a in existing.data.artists}
        norm_candidate = {normalize_str(a, keep_single_whitespace=True) for a in candidate.data.artists}
        whole_matches = len(norm_existing & norm_candidate)
        return min(compare_artists(existing.data.artists, candidate.data.artists) / 100, 1.0), whole_matches

    def score(self, existing: PlayRecord, candidate: PlayRecord) -> ScoreResult:
        temporal = compare_play_temporally(existing, candidate, fuzzy_duration=True)
        time_match = self._time_score(temporal, candidate)
        title_match = self.compare_title(existing, candidate)
        artist_match, whole_matches = self.compare_artist(existing, candidate)

        artist_score = ARTIST_WEIGHT * artist_match
        title_score = TITLE_WEIGHT * title_match
        time_score = TIME_WEIGHT * time_match
        score = artist_score + title_score + time_score
        bonus = 0.0
        artist_breakdown = f"Artist: {artist_match:.2f} * {ARTIST_WEIGHT} = {artist_score:.2f}"

        if (
            score < 1
            and time_match > 0
            and title_match > 0.98
            and artist_match > 0.1
            and whole_matches > 0
            and comparing_multiple_artists(existing, candidate)
        ):
            # one side reports only the primary artist, the other the full list
            bonus = max(artist_match * 0.5, (1 - artist_match) * 0.75, 0.1)
            artist_score = (ARTIST_WEIGHT + 0.05) * (artist_match + bonus)
            score = artist_score + title_score + time_score
            artist_breakdown = (
                f"Artist: ({artist_match:.2f} + Whole Match Bonus {bonus:.2f}) * "
                f"({ARTIST_WEIGHT} + Whole Match Bonus 0.05) = {artist_score:.2f}"
            )

        result = ScoreResult(
            existing=existing,
            score=score,
            time_match=time_match,
            title_match=title_match,
            artist_match=artist_match,
            whole_artist_matches=whole_matches,
            artist_bonus=bonus,
        )
        result.breakdowns = [
            artist_breakdown,
            f"Title: {title_match:.2f} * {TITLE_WEIGHT} = {title_score:.2f}",
            f"Time: {time_match} * {TIME_WEIGHT} = {time_score:.2f} ({temporal.summary()})",
            result.confidence,
        ]
        return result

    # -------- both --------
    def existing_scrobble(
        self,
        play: PlayRecord,
        recent: Sequence[PlayRecord],
        scrobbled: Iterable[ScrobbledPlayObject] = (),
    ) -> MatchResult:
        track_str = build_track_string(play)
        if not self.options.check_existing:
            if self.options.on_no_match:
                self.logger.debug("(Existing Check) %s => No Match because existing scrobble check is disabled", track_str)
            return MatchResult()

        exact, _ = self.find_existing_submitted(play, scrobbled)
        if exact is not None:
            result = MatchResult(
                match=exact.scrobble,
                confidence="Exact Match found in previously successfully scrobbled",
                exact_submitted=True,
            )
            self._log(play, result)
            return result

        # no history means nothing to be a duplicate of
        if not recent:
            if self.options.on_no_match:
                self.logger.debug("(Existing Check) %s => No Match because no recent scrobbles returned from client", track_str)
            return MatchResult()

        candidate = self.candidate_transform(play)
        result = MatchResult()
        for existing in recent:
            scored = self.score(self.existing_transform(existing), candidate)
            if scored.score > 0 and (result.closest is None or result.closest.score <= scored.score):
                result.closest = scored
                result.confidence = scored.confidence
            if scored.matched:
                result.match = existing
                result.closest = scored
                result.confidence = scored.confidence
                break

        self._log(play, result)
        return result

    def _log(self, play: PlayRecord, result: MatchResult) -> None:
        if not ((result.duplicate and self.options.on_match) or (not result.duplicate and self.options.on_no_match)):
            return
        closest = result.closest.existing if result.closest is not None else result.match
        self.logger.debug("(Existing Check) Source: %s => Closest Scrobble: %s => %s",
                          build_track_string(play), build_track_string(closest), result.confidence)
        if self.options.confidence_breakdown and result.closest is not None:
            self.logger.debug("Breakdown:\n%s", "\n".join(result.closest.breakdowns))
