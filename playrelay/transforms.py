"""
User-configured search/replace rules applied to plays at four hook points.

- pre_compare: once, when a play is queued for a client
- candidate: on the incoming play just before duplicate matching
- existing: on each play from client history just before duplicate matching
- post_compare: just before submission, after the play was found not to be a duplicate

Config shape (JSON), per hook a stage or a list of stages::

    {"preCompare": {"title": ["(Remastered)", {"search": "/\\s+-\\s+Live$/i", "replace": ""}]},
     "compare": {"candidate": [...], "existing": [...]},
     "postCompare": {"artists": [{"search": "Various", "replace": "", "when": [{"album": "Hits"}]}]}}

A search written as ``/pattern/flags`` is a regular expression, anything else
is matched literally. Rule conditions are tested against the play as it was
before the hook ran.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable

from .errors import TransformConfigError
from .models import PlayRecord, build_track_string

PRE_COMPARE = "preCompare"
CANDIDATE = "candidate"
EXISTING = "existing"
POST_COMPARE = "postCompare"
HOOKS = (PRE_COMPARE, CANDIDATE, EXISTING, POST_COMPARE)

REGEX_LITERAL = re.compile(r"^/(?P<pattern>.*)/(?P<flags>[gimsx]*)$", re.DOTALL)
_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def parse_maybe_regex(value: str) -> tuple[re.Pattern, bool]:
    """Compile ``/pattern/flags`` as regex, else a literal pattern.

    The bool is True when only the first occurrence should be replaced
    (regex without the ``g`` flag).
    """
    m = REGEX_LITERAL.match(value)
    if m is None:
        return re.compile(re.escape(value)), False
    flags = 0
    for f in m.group("flags"):
        flags |= _FLAGS.get(f, 0)
    try:
        return re.compile(m.group("pattern"), flags), "g" not in m.group("flags")
    except re.error as e:
        raise TransformConfigError(f"Invalid regular expression {value!r}: {e}") from e


@dataclass(frozen=True)
class WhenCondition:
    title: str | None = None
    artists: str | None = None
    album: str | None = None

    def test(self, play: PlayRecord) -> bool:
        if self.title is not None and not parse_maybe_regex(self.title)[0].search(play.data.track or ""):
            return False
        if self.artists is not None:
            pattern = parse_maybe_regex(self.artists)[0]
            artists = play.data.artists or ("",)
            if not any(pattern.search(a) for a in artists):
                return False
        if self.album is not None and not parse_maybe_regex(self.album)[0].search(play.data.album or ""):
            return False
        return True


@dataclass(frozen=True)
class SearchReplaceRule:
    search: str
    replace: str = ""
    when: tuple[WhenCondition, ...] = ()

    def applies_to(self, original: PlayRecord) -> bool:
        return not self.when or any(w.test(original) for w in self.when)

    def apply(self, value: str) -> str:
        pattern, first_only = parse_maybe_regex(self.search)
        return pattern.sub(self.replace, value, count=1 if first_only else 0)


@dataclass(frozen=True)
class TransformStage:
    title: tuple[SearchReplaceRule, ...] = ()
    artists: tuple[SearchReplaceRule, ...] = ()
    album_artists: tuple[SearchReplaceRule, ...] = ()
    album: tuple[SearchReplaceRule, ...] = ()
    when: tuple[WhenCondition, ...] = ()


@dataclass(frozen=True)
class TransformHooks:
    pre_compare: tuple[TransformStage, ...] = ()
    candidate: tuple[TransformStage, ...] = ()
    existing: tuple[TransformStage, ...] = ()
    post_compare: tuple[TransformStage, ...] = ()

    def stages(self, hook: str) -> tuple[TransformStage, ...]:
        return {
            PRE_COMPARE: self.pre_compare,
            CANDIDATE: self.candidate,
            EXISTING: self.existing,
            POST_COMPARE: self.post_compare,
        }[hook]

    def is_empty(self) -> bool:
        return not (self.pre_compare or self.candidate or self.existing or self.post_compare)


# -------------------------
# Config parsing
# -------------------------
def _parse_when(raw: Any) -> tuple[WhenCondition, ...]:
    if raw is None:
        return ()
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise TransformConfigError(f"'when' must be a list of conditions, got {type(raw).__name__}")
    conditions = []
    for cond in raw:
        if not isinstance(cond, dict):
            raise TransformConfigError("each 'when' condition must be an object")
        for k in ("title", "artists", "album"):
            if k in cond:
                if not isinstance(cond[k], str):
                    raise TransformConfigError(f"'when.{k}' must be a string")
                parse_maybe_regex(cond[k])
        conditions.append(WhenCondition(title=cond.get("title"), artists=cond.get("artists"), album=cond.get("album")))
    return tuple(conditions)


def _parse_rule(raw: Any) -> SearchReplaceRule:
    if isinstance(raw, str):
        return SearchReplaceRule(search=raw, replace="")
    if isinstance(raw, dict) and isinstance(raw.get("search"), str) and isinstance(raw.get("replace"), str):
        rule = SearchReplaceRule(search=raw["search"], replace=raw["replace"], when=_parse_when(raw.get("when")))
        parse_maybe_regex(rule.search)
        return rule
    raise TransformConfigError(
        f"Value must be a string or an object containing 'search: string' and 'replace: string'. Given: {raw!r}"
    )


def _parse_stage(raw: Any) -> TransformStage:
    if not isinstance(raw, dict):
        raise TransformConfigError(f"Transform stage must be an object, got {type(raw).__name__}")
    stage_type = raw.get("type", "user")
    if stage_type != "user":
        raise TransformConfigError(f"Unsupported transform stage type '{stage_type}'")
    parsed = {}
    for key, attr in (("title", "title"), ("artists", "artists"), ("albumArtists", "album_artists"), ("album", "album")):
        if key not in raw:
            continue
        if not isinstance(raw[key], list):
            raise TransformConfigError(f"{key} must be an array")
        parsed[attr] = tuple(_parse_rule(r) for r in raw[key])
    return TransformStage(when=_parse_when(raw.get("when")), **parsed)


def _parse_stages(raw: Any) -> tuple[TransformStage, ...]:
    if raw is None:
        return ()
    if isinstance(raw, dict):
        raw = [raw]
    return tuple(_parse_stage(s) for s in raw)


def build_transform_hooks(config: dict | None) -> TransformHooks:
    if not config:
        return TransformHooks()
    if not isinstance(config, dict):
        raise TransformConfigError("Transform config must be an object")
    compare = config.get("compare") or {}
    return TransformHooks(
        pre_compare=_parse_stages(config.get(PRE_COMPARE)),
        candidate=_parse_stages(compare.get(CANDIDATE)),
        existing=_parse_stages(compare.get(EXISTING)),
        post_compare=_parse_stages(config.get(POST_COMPARE)),
    )


# -------------------------
# Applying
# -------------------------
def _apply_rules(value: str, rules: Iterable[SearchReplaceRule], original: PlayRecord) -> str | None:
    for rule in rules:
        if rule.applies_to(original):
            value = rule.apply(value)
    value = value.strip()
    return value or None


def _apply_list(values: tuple[str, ...], rules: tuple[SearchReplaceRule, ...], original: PlayRecord) -> tuple[str, ...]:
    if not rules or not values:
        return values
    out = []
    for v in values:
        t = _apply_rules(v, rules, original)
        if t is not None:
            out.append(t)
    return tuple(out)


def apply_stage(play: PlayRecord, stage: TransformStage, original: PlayRecord) -> PlayRecord:
    if stage.when and not any(w.test(original) for w in stage.when):
        return play
    data = play.data
    changes = {}
    if stage.title and data.track is not None:
        changes["track"] = _apply_rules(data.track, stage.title, original)
    if stage.album and data.album is not None:
        changes["album"] = _apply_rules(data.album, stage.album, original)
    if stage.artists:
        changes["artists"] = _apply_list(data.artists, stage.artists, original)
    if stage.album_artists:
        changes["album_artists"] = _apply_list(data.album_artists, stage.album_artists, original)
    return play.with_data(**changes) if changes else play


def transform_play(
    play: PlayRecord, hooks: TransformHooks, hook: str, logger: logging.Logger | None = None
) -> PlayRecord:
    """Run every stage of ``hook`` over ``play``, feeding each stage's output to the next."""
    stages = hooks.stages(hook)
    if not stages:
        return play
    transformed = play
    for stage in stages:
        transformed = apply_stage(transformed, stage, play)
    if logger is not None and transformed != play:
        logger.debug(
            "(%s) Transformed %s => %s",
            hook,
            build_track_string(play, ("artist", "track")),
            build_track_string(transformed, ("artist", "track")),
        )
    return transformed
