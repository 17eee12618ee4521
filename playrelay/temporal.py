"""
Temporal closeness of two plays.

Buckets, most to least certain: EXACT, CLOSE, FUZZY, DURING, NONE. Sources
differ in how precise their timestamps are and in whether the timestamp marks
the start or the end of a play, so the comparison is tolerant of both.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from .models import SCROBBLE_TS_SOC_END, SCROBBLE_TS_SOC_START, PlayRecord, utcnow

# sources whose timestamps are only accurate to about a minute
LOW_GRANULARITY_SOURCES = ("subsonic", "ytmusic")
HIGH_GRANULARITY_THRESHOLD = 10
LOW_GRANULARITY_THRESHOLD = 60
DEFAULT_FUZZY_DIFF_THRESHOLD = 10


class TemporalAccuracy(Enum):
    EXACT = 1
    CLOSE = 2
    FUZZY = 3
    DURING = 4
    NONE = 99

    def __str__(self) -> str:
        return "no correlation" if self is TemporalAccuracy.NONE else self.name.lower()


DEFAULT_ACCEPTABLE_ACCURACY = (TemporalAccuracy.EXACT, TemporalAccuracy.CLOSE)


@dataclass
class TemporalComparison:
    match: TemporalAccuracy = TemporalAccuracy.NONE
    diff: float | None = None
    threshold: float | None = None
    fuzzy_duration_diff: float | None = None
    fuzzy_listened_diff: float | None = None
    range: tuple[str, datetime, datetime] | None = None
    during_references: tuple[str, ...] = field(default_factory=tuple)

    def summary(self) -> str:
        parts = [f"Temporal Sameness: {str(self.match).capitalize()}"]
        if self.diff is not None:
            parts.append(f"Play Diff: {self.diff:.0f}s (Needed <{self.threshold}s)")
        if self.fuzzy_duration_diff is not None:
            parts.append(f"Fuzzy Duration Diff: {self.fuzzy_duration_diff:.0f}s")
        if self.fuzzy_listened_diff is not None:
            parts.append(f"Fuzzy Listened Diff: {self.fuzzy_listened_diff:.0f}s")
        if self.range is not None:
            kind, start, end = self.range
            parts.append(f"Candidate played during Existing {kind} {start:%H:%M:%S} => {end:%H:%M:%S}")
        return " | ".join(parts)


def scrobble_ts_soc_date(play: PlayRecord) -> datetime:
    """The timestamp a play is anchored to, honouring its start/end semantics."""
    if play.meta.scrobble_ts_soc == SCROBBLE_TS_SOC_END and play.data.play_date_completed is not None:
        return play.data.play_date_completed
    return play.data.play_date if play.data.play_date is not None else utcnow()


def default_diff_threshold(play: PlayRecord) -> int:
    source = (play.meta.source or "").lower()
    if source in LOW_GRANULARITY_SOURCES:
        return LOW_GRANULARITY_THRESHOLD
    return HIGH_GRANULARITY_THRESHOLD


def compare_play_temporally(
    existing: PlayRecord,
    candidate: PlayRecord,
    *,
    diff_threshold: float | None = None,
    fuzzy_duration: bool = False,
    fuzzy_diff_threshold: float = DEFAULT_FUZZY_DIFF_THRESHOLD,
    during_references: tuple[str, ...] = ("range",),
) -> TemporalComparison:
    result = TemporalComparison(during_references=during_references)
    if existing.data.play_date is None or candidate.data.play_date is None:
        return result

    existing_date = scrobble_ts_soc_date(existing)
    candidate_date = scrobble_ts_soc_date(candidate)
    threshold = default_diff_threshold(existing) if diff_threshold is None else diff_threshold

    diff = abs((existing_date - candidate_date).total_seconds())
    result.diff = diff
    result.threshold = threshold

    if diff <= 1:
        result.match = TemporalAccuracy.EXACT
    elif diff <= threshold:
        result.match = TemporalAccuracy.CLOSE
    if result.match is not TemporalAccuracy.NONE:
        return result

    # candidate started while the existing play was being listened to
    if "range" in during_references:
        for start, end in existing.data.listen_ranges:
            if start < candidate_date < end:
                result.match = TemporalAccuracy.DURING
                result.range = ("range", start, end)
                return result
    if "listenedFor" in during_references and existing.data.listened_for is not None:
        end = existing_date + timedelta(seconds=existing.data.listened_for)
        if existing_date < candidate_date < end:
            result.match = TemporalAccuracy.DURING
            result.range = ("listenedFor", existing_date, end)
            return result
    if "duration" in during_references and existing.data.duration is not None:
        end = existing_date + timedelta(seconds=existing.data.duration)
        if existing_date < candidate_date < end:
            result.match = TemporalAccuracy.DURING
            result.range = ("duration", existing_date, end)
            return result

    # one source may stamp the start of a play and the other the end,
    # in which case the gap is roughly the track duration
    reference_duration = candidate.data.duration if candidate.data.duration is not None else existing.data.duration
    if reference_duration is not None:
        result.fuzzy_duration_diff = abs(diff - reference_duration)
        if result.fuzzy_duration_diff <= fuzzy_diff_threshold:
            result.match = TemporalAccuracy.FUZZY
            return result

    reference_listened = (
        candidate.data.listened_for if candidate.data.listened_for is not None else existing.data.listened_for
    )
    if fuzzy_duration and reference_listened is not None:
        result.fuzzy_listened_diff = abs(diff - reference_listened)
        if result.fuzzy_listened_diff <= fuzzy_diff_threshold:
            result.match = TemporalAccuracy.FUZZY

    return result


def has_acceptable_accuracy(found: TemporalAccuracy, expected=DEFAULT_ACCEPTABLE_ACCURACY) -> bool:
    return found in expected
