"""
Play data model shared by sources, the stateful detector and scrobble clients.

Plays are frozen dataclasses. Anything that needs a modified play builds a new
one with ``dataclasses.replace`` (see ``PlayRecord.with_data``/``with_meta``).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Tuple

SCROBBLE_TS_SOC_START = 1
SCROBBLE_TS_SOC_END = 2

NO_DEVICE = "NoDevice"
NO_USER = "SingleUser"
SINGLE_USER_PLATFORM_ID: Tuple[str, str] = (NO_DEVICE, NO_USER)

PLAYER_PLAYING = "playing"
PLAYER_PAUSED = "paused"
PLAYER_STOPPED = "stopped"
PLAYER_UNKNOWN = "unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PlayData:
    artists: Tuple[str, ...] = ()
    album_artists: Tuple[str, ...] = ()
    album: str | None = None
    track: str | None = None
    duration: float | None = None  # seconds
    play_date: datetime | None = None
    play_date_completed: datetime | None = None
    listened_for: float | None = None  # seconds
    listen_ranges: Tuple[Tuple[datetime, datetime], ...] = ()
    repeat: bool = False


@dataclass(frozen=True)
class PlayMeta:
    source: str | None = None
    track_id: str | None = None
    play_id: str | None = None
    new_from_source: bool = False
    device_id: str | None = None
    user: str | None = None
    scrobble_ts_soc: int = SCROBBLE_TS_SOC_START
    track_progress_position: float | None = None
    url: str | None = None
    extra: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class PlayRecord:
    """One listen."""

    data: PlayData
    meta: PlayMeta = field(default_factory=PlayMeta)

    def with_data(self, **changes) -> "PlayRecord":
        return replace(self, data=replace(self.data, **changes))

    def with_meta(self, **changes) -> "PlayRecord":
        return replace(self, meta=replace(self.meta, **changes))

    @property
    def platform_id(self) -> Tuple[str, str]:
        return (self.meta.device_id or NO_DEVICE, self.meta.user or NO_USER)


def make_play(
    *,
    track: str | None,
    artists: Iterable[str] = (),
    album: str | None = None,
    album_artists: Iterable[str] = (),
    duration: float | None = None,
    play_date: datetime | None = None,
    source: str | None = None,
    **meta: Any,
) -> PlayRecord:
    """Convenience constructor used by adapters and tests."""
    return PlayRecord(
        data=PlayData(
            artists=tuple(artists),
            album_artists=tuple(album_artists),
            album=album,
            track=track,
            duration=duration,
            play_date=play_date,
        ),
        meta=PlayMeta(source=source, **meta),
    )


@dataclass(frozen=True)
class PlayerStateData:
    """Observation of a playback surface for sources without a history API."""

    platform_id: Tuple[str, str]
    play: PlayRecord
    status: str = PLAYER_UNKNOWN
    position: float | None = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_play(self) -> PlayRecord:
        device_id, user = self.platform_id
        return self.play.with_meta(
            device_id=device_id,
            user=user,
            track_progress_position=self.position
            if self.position is not None
            else self.play.meta.track_progress_position,
        )


@dataclass
class QueuedScrobble:
    source: str
    play: PlayRecord
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class DeadLetterScrobble:
    source: str
    play: PlayRecord
    error: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    retries: int = 0
    last_retry: datetime | None = None


@dataclass(frozen=True)
class ScrobbledPlayObject:
    play: PlayRecord  # what we sent
    scrobble: PlayRecord  # what the client confirmed


# -------------------------
# Identity and ordering
# -------------------------
def play_data_match(a: PlayRecord, b: PlayRecord) -> bool:
    """Same logical track, ignoring time.

    Plays from the same source that both carry a source-native track id are
    compared by id. Otherwise track, album and the artist set must agree; a
    track or album missing on either side is not used.
    """
    if (
        a.meta.source == b.meta.source
        and a.meta.track_id is not None
        and b.meta.track_id is not None
    ):
        return a.meta.track_id == b.meta.track_id

    if a.data.track is not None and b.data.track is not None and a.data.track != b.data.track:
        return False
    if a.data.album is not None and b.data.album is not None and a.data.album != b.data.album:
        return False
    return set(a.data.artists) == set(b.data.artists)


def _date_key(play: PlayRecord) -> datetime:
    return play.data.play_date or datetime.min.replace(tzinfo=timezone.utc)


def sort_by_oldest(plays: Iterable[PlayRecord]) -> List[PlayRecord]:
    return sorted(plays, key=_date_key)


def build_track_string(play: PlayRecord | None, include: Iterable[str] = ("artist", "track", "time")) -> str:
    if play is None:
        return "(none)"
    include = set(include)
    parts = []
    if "artist" in include:
        # duplicates collapse when formatting
        artists = list(dict.fromkeys(play.data.artists))
        parts.append(" / ".join(artists) if artists else "(No Artist)")
    if "track" in include:
        parts.append(play.data.track or "(No Title)")
    out = " - ".join(parts)
    if "album" in include and play.data.album:
        out = f"{out} [{play.data.album}]"
    if "trackId" in include and play.meta.track_id:
        out = f"({play.meta.track_id}) {out}"
    if "time" in include and play.data.play_date is not None:
        out = f"{out} @ {play.data.play_date.isoformat(timespec='seconds')}"
    return out
