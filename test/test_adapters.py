from types import SimpleNamespace

import pylast
import pytest

from conftest import BASE_TIME, generate_play
from playrelay.bluos import BluOSClient, BluOSSource, BluOSStatus
from playrelay.errors import ClientAuthError, NetworkError, PlayValidationError, UpstreamError, is_fatal
from playrelay.lastfm_client import LastFMClient, map_lastfm_error
from playrelay.models import PLAYER_PAUSED, PLAYER_PLAYING

STATUS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<status etag="4e266c9fbfba6d13d1a4d6ff4bd2e1e6">
  <album>Satingarona Pt. 2</album>
  <artist>The Bongo Hop</artist>
  <name>Sonora</name>
  <secs>42</secs>
  <state>play</state>
  <title1>Sonora</title1>
  <totlen>240.5</totlen>
</status>
"""


class TestBluOS:
    def test_parse_status(self):
        status = BluOSClient("player.local").parse_status(STATUS_XML)
        assert status == BluOSStatus(title="Sonora", artist="The Bongo Hop", album="Satingarona Pt. 2",
                                     duration=240, secs=42, state="play")

    def test_parse_status_title_fallback(self):
        status = BluOSClient("player.local").parse_status(
            "<status><title1>Radio Song</title1><title2>DJ</title2><state>stream</state></status>"
        )
        assert status.title == "Radio Song"
        assert status.artist == "DJ"

    def test_unparseable_status(self):
        with pytest.raises(UpstreamError):
            BluOSClient("player.local").parse_status("<status><unclosed>")

    def test_player_state(self):
        source = BluOSSource(BluOSClient("player.local"), device_id="living-room")
        state = source.to_player_state(BluOSStatus("Sonora", "The Bongo Hop", None, 240, 42, "pause"))

        assert state.platform_id[0] == "living-room"
        assert state.status == PLAYER_PAUSED
        assert state.position == 42
        assert state.play.data.artists == ("The Bongo Hop",)
        assert state.play.meta.source == "bluos"

    def test_player_without_metadata(self):
        source = BluOSSource(BluOSClient("player.local"))
        assert source.to_player_state(BluOSStatus(None, None, None, None, None, "stop")) is None

    def test_fetch_recent_uses_status(self, monkeypatch):
        client = BluOSClient("player.local")
        monkeypatch.setattr(client, "get_status", lambda: client.parse_status(STATUS_XML))
        states = BluOSSource(client).fetch_recent(20)

        assert len(states) == 1
        assert states[0].status == PLAYER_PLAYING


class TestLastFMErrors:
    @pytest.mark.parametrize("code", ["4", "9", "14"])
    def test_auth_codes(self, code):
        assert isinstance(map_lastfm_error(pylast.WSError(None, code, "Invalid session key")), ClientAuthError)

    def test_rate_limit_is_not_fatal(self):
        err = map_lastfm_error(pylast.WSError(None, "29", "Rate limit exceeded"))
        assert isinstance(err, UpstreamError)
        assert not is_fatal(err)

    def test_service_offline_is_show_stopper(self):
        err = map_lastfm_error(pylast.WSError(None, "11", "Service Offline"))
        assert err.show_stopper

    def test_network_failure(self):
        err = map_lastfm_error(pylast.NetworkError(None, ConnectionError("reset")))
        assert isinstance(err, NetworkError)


class FakeNetwork:
    def __init__(self):
        self.scrobbles = []

    def scrobble(self, **kwargs):
        self.scrobbles.append(kwargs)


@pytest.fixture
def lastfm():
    client = LastFMClient("key", "secret", session_key="session", username="listener", password_md5=None)
    client.network = FakeNetwork()
    return client


class TestLastFMClient:
    def test_submit(self, lastfm):
        play = generate_play(artists=("The Bongo Hop", "Nidia Gongora"))

        scrobble = lastfm.submit(play)

        sent = lastfm.network.scrobbles[0]
        assert sent["artist"] == "The Bongo Hop"
        assert sent["title"] == "Sonora"
        assert sent["timestamp"] == int(BASE_TIME.timestamp())
        assert sent["duration"] == 240
        assert scrobble.meta.source == "lastfm"

    def test_submit_requires_artist_and_track(self, lastfm):
        with pytest.raises(PlayValidationError):
            lastfm.submit(generate_play(artists=()))
        assert lastfm.network.scrobbles == []

    def test_played_track_conversion(self, lastfm):
        played = SimpleNamespace(
            track=SimpleNamespace(title="Sonora", artist=SimpleNamespace(name="The Bongo Hop")),
            album="Satingarona Pt. 2",
            timestamp=str(int(BASE_TIME.timestamp())),
        )

        play = lastfm.played_to_play(played)

        assert play.data.track == "Sonora"
        assert play.data.artists == ("The Bongo Hop",)
        assert play.data.play_date == BASE_TIME
        assert play.meta.source == "lastfm"

    def test_missing_credentials(self):
        with pytest.raises(ValueError):
            LastFMClient("key", "secret", None, None, None)
