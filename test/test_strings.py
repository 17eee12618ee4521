from datetime import timedelta

from conftest import BASE_TIME, generate_play
from playrelay.strings import compare_tracks, normalize_str, parse_credits
from playrelay.temporal import TemporalAccuracy, compare_play_temporally


def test_normalize_strips_accents_symbols_and_case():
    assert normalize_str("Beyoncé - Halo!") == "beyoncehalo"
    assert normalize_str("  Beyoncé  -  Halo ", keep_single_whitespace=True) == "beyonce halo"


def test_parse_credits_splits_featured_artists():
    credits = parse_credits("Sonora (feat. Nidia Gongora & Someone)")
    assert credits.primary == "Sonora"
    assert credits.secondary == ("Nidia Gongora", "Someone")


def test_parse_credits_none_without_joiner():
    assert parse_credits("Just A Title") is None


def test_compare_tracks_missing_titles():
    assert compare_tracks(None, None) == 100
    assert compare_tracks("Song", None) == 0


def test_compare_tracks_token_order_independent():
    assert compare_tracks("Hop Bongo", "Bongo Hop") == 100


def test_temporal_buckets():
    existing = generate_play(duration=200)
    assert compare_play_temporally(existing, existing).match is TemporalAccuracy.EXACT
    close = existing.with_data(play_date=BASE_TIME + timedelta(seconds=8))
    assert compare_play_temporally(existing, close).match is TemporalAccuracy.CLOSE
    fuzzy = existing.with_data(play_date=BASE_TIME + timedelta(seconds=205))
    assert compare_play_temporally(existing, fuzzy).match is TemporalAccuracy.FUZZY
    unrelated = existing.with_data(play_date=BASE_TIME + timedelta(seconds=1000))
    assert compare_play_temporally(existing, unrelated).match is TemporalAccuracy.NONE


def test_candidate_during_listen_range():
    existing = generate_play(duration=600).with_data(
        listen_ranges=((BASE_TIME, BASE_TIME + timedelta(seconds=400)),)
    )
    candidate = existing.with_data(play_date=BASE_TIME + timedelta(seconds=120), listen_ranges=())
    assert compare_play_temporally(existing, candidate).match is TemporalAccuracy.DURING
