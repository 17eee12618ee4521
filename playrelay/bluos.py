from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import List

import requests

from .adapters import SourceAdapter
from .errors import NetworkError, UpstreamError
from .models import (
    NO_USER,
    PLAYER_PAUSED,
    PLAYER_PLAYING,
    PLAYER_STOPPED,
    PLAYER_UNKNOWN,
    PlayerStateData,
    make_play,
    utcnow,
)

log = logging.getLogger("bluos")

_STATES = {
    "play": PLAYER_PLAYING,
    "stream": PLAYER_PLAYING,
    "pause": PLAYER_PAUSED,
    "stop": PLAYER_STOPPED,
}


@dataclass
class BluOSStatus:
    title: str | None
    artist: str | None
    album: str | None
    duration: int | None  # seconds
    secs: int | None      # elapsed seconds
    state: str | None     # 'play', 'pause', 'stop'


class BluOSClient:
    """
    Minimal BluOS client that fetches and parses /Status (XML).
    Uses recursive lookup + tag fallbacks: name/title1, artist, album, secs, totlen, state.
    """
    def __init__(self, host: str, port: int = 11000, timeout: int = 5):
        self.base = f"http://{host}:{port}"
        self.timeout = timeout

    def _findtext_any(self, root: ET.Element, *tags: str):
        for t in tags:
            el = root.find(f".//{t}")
            if el is not None and el.text:
                return el.text.strip()
        return None

    def _to_int(self, s):
        if s is None:
            return None
        try:
            return int(float(s))
        except ValueError:
            return None

    def parse_status(self, text: str) -> BluOSStatus:
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise UpstreamError(f"BluOS returned unparseable status XML: {e}", response_body=text) from e

        # title appears as <name> and also as <title1>
        title = self._findtext_any(root, "name", "title1", "title", "song")
        artist = self._findtext_any(root, "artist", "title2")
        album = self._findtext_any(root, "album", "title3")

        secs = self._findtext_any(root, "secs", "elapsed", "position", "time")
        duration = self._findtext_any(root, "totlen", "duration", "total", "trackLength", "length")

        state = self._findtext_any(root, "state", "status", "mode")
        state = state.lower() if state else None

        return BluOSStatus(
            title=title,
            artist=artist,
            album=album,
            duration=self._to_int(duration),
            secs=self._to_int(secs),
            state=state,
        )

    def get_status(self) -> BluOSStatus:
        try:
            resp = requests.get(f"{self.base}/Status", timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise NetworkError(f"Could not reach BluOS player at {self.base}: {e}") from e
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise UpstreamError(f"BluOS status request failed: {e}", response_body=resp.text) from e
        return self.parse_status(resp.text)


class BluOSSource(SourceAdapter):
    """Now-playing source for one BluOS player; the player has no history API."""

    source_type = "bluos"
    now_playing_only = True
    supports_recent = False

    def __init__(self, client: BluOSClient, device_id: str | None = None):
        self.client = client
        self.device_id = device_id or client.base

    def to_player_state(self, status: BluOSStatus) -> PlayerStateData | None:
        if not (status.artist and status.title):
            log.debug("Player has no usable metadata (state=%s); skipping.", status.state)
            return None
        play = make_play(
            track=status.title,
            artists=[status.artist],
            album=status.album,
            duration=status.duration,
            play_date=utcnow(),
            source=self.source_type,
        )
        return PlayerStateData(
            platform_id=(self.device_id, NO_USER),
            play=play,
            status=_STATES.get(status.state or "", PLAYER_UNKNOWN),
            position=status.secs,
        )

    def fetch_recent(self, limit: int) -> List[PlayerStateData]:
        status = self.client.get_status()
        log.debug("Parsed: state=%s artist=%s title=%s album=%s elapsed=%s duration=%s",
                  status.state, status.artist, status.title, status.album, status.secs, status.duration)
        state = self.to_player_state(status)
        return [state] if state is not None else []

    def fetch_now_playing(self):
        states = self.fetch_recent(1)
        if states and states[0].status == PLAYER_PLAYING:
            return states[0].to_play()
        return None

    def check_connection(self) -> bool:
        self.client.get_status()
        return True
