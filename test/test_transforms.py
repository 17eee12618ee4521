import pytest

from conftest import generate_play
from playrelay.errors import TransformConfigError
from playrelay.transforms import (
    CANDIDATE,
    POST_COMPARE,
    PRE_COMPARE,
    build_transform_hooks,
    parse_maybe_regex,
    transform_play,
)


def test_plain_string_rule_removes_all_occurrences():
    hooks = build_transform_hooks({"preCompare": {"title": ["cool"]}})
    play = generate_play(track="my cool cool track")

    assert transform_play(play, hooks, PRE_COMPARE).data.track == "my   track"


def test_regex_rule_with_flags():
    hooks = build_transform_hooks(
        {"postCompare": {"title": [{"search": "/\\s+-\\s+live$/i", "replace": ""}]}}
    )
    play = generate_play(track="Sonora - LIVE")

    assert transform_play(play, hooks, POST_COMPARE).data.track == "Sonora"


def test_regex_without_global_flag_replaces_first_match_only():
    pattern, first_only = parse_maybe_regex("/a/")
    assert first_only
    assert pattern.sub("b", "aaa", count=1 if first_only else 0) == "baa"

    pattern, first_only = parse_maybe_regex("/a/g")
    assert not first_only


def test_rule_condition_checked_against_original_play():
    hooks = build_transform_hooks({
        "preCompare": [
            {"title": [{"search": "Remastered", "replace": "", "when": [{"album": "Greatest Hits"}]}]},
            {"album": ["Greatest "]},
        ]
    })
    hit = generate_play(track="Song Remastered", album="Greatest Hits")
    other = generate_play(track="Song Remastered", album="Studio")

    transformed = transform_play(hit, hooks, PRE_COMPARE)
    assert transformed.data.track == "Song"
    assert transformed.data.album == "Hits"
    assert transform_play(other, hooks, PRE_COMPARE).data.track == "Song Remastered"


def test_emptied_fields_become_none_and_artists_are_removed():
    hooks = build_transform_hooks({"preCompare": {"title": ["Intro"], "artists": ["Various Artists"]}})
    play = generate_play(track="Intro", artists=("Various Artists", "The Bongo Hop"))

    transformed = transform_play(play, hooks, PRE_COMPARE)

    assert transformed.data.track is None
    assert transformed.data.artists == ("The Bongo Hop",)


def test_compare_hooks_parsed_separately():
    hooks = build_transform_hooks({"compare": {"candidate": {"title": ["x"]}}})
    assert len(hooks.stages(CANDIDATE)) == 1
    assert hooks.stages(PRE_COMPARE) == ()


def test_empty_config_is_a_no_op():
    hooks = build_transform_hooks(None)
    play = generate_play()
    assert hooks.is_empty()
    assert transform_play(play, hooks, PRE_COMPARE) is play


@pytest.mark.parametrize("config", [
    {"preCompare": {"title": "not a list"}},
    {"preCompare": {"title": [{"search": "x"}]}},
    {"preCompare": {"title": [{"search": "/(unclosed/", "replace": ""}]}},
    {"preCompare": {"type": "native"}},
    {"preCompare": {"title": [{"search": "Live", "replace": "", "when": [{"title": "/(unclosed/i"}]}]}},
    {"preCompare": {"when": {"album": "/[/"}, "title": ["x"]}},
    ["not", "an", "object"],
])
def test_invalid_config_raises(config):
    with pytest.raises(TransformConfigError):
        build_transform_hooks(config)
