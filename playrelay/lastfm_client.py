from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

import pylast
import requests

from .adapters import ClientAdapter
from .errors import ClientAuthError, NetworkError, PlayValidationError, UpstreamError
from .models import SCROBBLE_TS_SOC_START, PlayRecord, make_play
from .temporal import scrobble_ts_soc_date

log = logging.getLogger("lastfm")

AUTH_ERROR_CODES = (9, 4, 14)    # 9=Invalid session, 4=Auth failed, 14=Token expired
RATE_LIMIT_CODES = (29,)         # 29=Rate limit exceeded
UNAVAILABLE_CODES = (11, 16)     # 11=Service offline, 16=Temporarily unavailable


def _ws_code(e: pylast.WSError) -> int | None:
    try:
        return int(e.get_id())
    except (TypeError, ValueError):
        return None


def map_lastfm_error(e: Exception) -> Exception:
    """Translate a pylast/requests failure into our error classes."""
    if isinstance(e, pylast.WSError):
        code = _ws_code(e)
        msg = str(e)
        if code in AUTH_ERROR_CODES:
            return ClientAuthError(msg)
        if code in RATE_LIMIT_CODES:
            return UpstreamError(f"Last.fm rate limit exceeded: {msg}")
        if code in UNAVAILABLE_CODES:
            return UpstreamError(f"Last.fm unavailable (code {code}): {msg}", show_stopper=True)
        return UpstreamError(f"Last.fm API error {code}: {msg}")
    if isinstance(e, (pylast.NetworkError, requests.ConnectionError, requests.Timeout, ConnectionError, TimeoutError)):
        return NetworkError(f"Could not reach Last.fm: {e}")
    if isinstance(e, pylast.MalformedResponseError):
        return UpstreamError(f"Last.fm returned a malformed response: {e}")
    return UpstreamError(f"Last.fm request failed: {e}")


class LastFMClient(ClientAdapter):
    """Thin wrapper over pylast for reading recent scrobbles and scrobbling."""

    requires_auth = True

    def __init__(self, api_key: str, api_secret: str, session_key: str | None,
                 username: str | None, password_md5: str | None):
        self.username = username
        if session_key:
            log.info("Using Last.fm session key auth")
            self.network = pylast.LastFMNetwork(
                api_key=api_key,
                api_secret=api_secret,
                session_key=session_key,
            )
        elif username and password_md5:
            log.info("Using Last.fm username + MD5 password auth")
            self.network = pylast.LastFMNetwork(
                api_key=api_key,
                api_secret=api_secret,
                username=username,
                password_hash=password_md5,
            )
        else:
            raise ValueError("Missing Last.fm credentials")

    def _user(self):
        if self.username:
            return self.network.get_user(self.username)
        return self.network.get_authenticated_user()

    def test_auth(self) -> bool:
        try:
            name = self.network.get_authenticated_user().get_name()
        except Exception as e:
            raise map_lastfm_error(e) from e
        log.info("Authenticated with Last.fm as %s", name)
        return True

    def played_to_play(self, played) -> PlayRecord:
        track = played.track
        return make_play(
            track=track.title,
            artists=[track.artist.name] if track.artist is not None else [],
            album=played.album or None,
            play_date=datetime.fromtimestamp(int(played.timestamp), tz=timezone.utc),
            source="lastfm",
            scrobble_ts_soc=SCROBBLE_TS_SOC_START,
        )

    def get_recent_history(self, limit: int) -> List[PlayRecord]:
        try:
            played = self._user().get_recent_tracks(limit=limit)
        except Exception as e:
            raise map_lastfm_error(e) from e
        # now playing entries have no timestamp
        return [self.played_to_play(p) for p in played if p.timestamp]

    def submit(self, play: PlayRecord) -> PlayRecord:
        """Submit a scrobble to Last.fm, anchored at the play's start time."""
        if not play.data.artists or not play.data.track:
            raise PlayValidationError("Last.fm requires an artist and a track title")
        timestamp = int(scrobble_ts_soc_date(play).timestamp())
        try:
            self.network.scrobble(
                artist=play.data.artists[0],
                title=play.data.track,
                timestamp=timestamp,
                album=play.data.album,
                album_artist=play.data.album_artists[0] if play.data.album_artists else None,
                duration=int(play.data.duration) if play.data.duration else None,
            )
        except Exception as e:
            raise map_lastfm_error(e) from e
        return play.with_meta(source="lastfm")
