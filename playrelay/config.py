"""
Configuration via ENV VARS.

Sources/clients:
- BLUOS_HOST, BLUOS_PORT
- LASTFM_API_KEY, LASTFM_API_SECRET, and LASTFM_SESSION_KEY or LASTFM_USERNAME + LASTFM_PASSWORD_MD5

Polling: POLL_INTERVAL, POLL_MAX_INTERVAL, POLL_CHECK_ACTIVE_FOR, POLL_MAX_RETRIES, POLL_RETRY_MULTIPLIER, POLL_BACKLOG
Scrobbling: SCROBBLE_DELAY, SCROBBLE_SLEEP, SCROBBLE_MAX_RETRIES, SCROBBLE_RETRY_MULTIPLIER,
DEAD_LETTER_RETRIES, REFRESH_ENABLED, REFRESH_INITIAL_COUNT, REFRESH_STALE_AFTER,
CHECK_EXISTING_SCROBBLES, MATCH_LOG_ON_MATCH, MATCH_LOG_ON_NO_MATCH, MATCH_LOG_BREAKDOWN
Transforms (JSON): PLAY_TRANSFORMS (client), SOURCE_PLAY_TRANSFORMS (source, preCompare only)
Misc: LOG_LEVEL, HEARTBEAT_INTERVAL
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from .client import ClientOptions
from .errors import ConfigError, TransformConfigError
from .heartbeat import DEFAULT_HEARTBEAT_INTERVAL
from .source import SourceOptions
from .transforms import TransformHooks, build_transform_hooks

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _get_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() in _TRUE:
        return True
    if raw.strip().lower() in _FALSE:
        return False
    raise ConfigError(f"{name} must be true or false, got {raw!r}")


def _get_transforms(name: str, pre_compare_only: bool = False) -> TransformHooks:
    raw = os.getenv(name)
    if not raw:
        return TransformHooks()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{name} is not valid JSON: {e}") from e
    hooks = build_transform_hooks(parsed)
    if pre_compare_only and (hooks.candidate or hooks.existing or hooks.post_compare):
        raise TransformConfigError(f"{name} only supports preCompare transforms")
    return hooks


@dataclass
class LastFMConfig:
    api_key: str | None = None
    api_secret: str | None = None
    session_key: str | None = None
    username: str | None = None
    password_md5: str | None = None

    def validate(self) -> None:
        if not self.api_key or not self.api_secret:
            raise ConfigError("LASTFM_API_KEY and LASTFM_API_SECRET are required")
        if not (self.session_key or (self.username and self.password_md5)):
            raise ConfigError("Provide LASTFM_SESSION_KEY or LASTFM_USERNAME + LASTFM_PASSWORD_MD5")


@dataclass
class Config:
    log_level: str = "INFO"
    bluos_host: str = "127.0.0.1"
    bluos_port: int = 11000
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    lastfm: LastFMConfig = field(default_factory=LastFMConfig)
    source: SourceOptions = field(default_factory=SourceOptions)
    client: ClientOptions = field(default_factory=ClientOptions)
    source_transforms: TransformHooks = field(default_factory=TransformHooks)
    client_transforms: TransformHooks = field(default_factory=TransformHooks)


def source_options_from_env() -> SourceOptions:
    d = SourceOptions()
    interval = max(1, _get_float("POLL_INTERVAL", d.interval))
    return SourceOptions(
        interval=interval,
        max_interval=max(interval, _get_float("POLL_MAX_INTERVAL", d.max_interval)),
        check_active_for=_get_float("POLL_CHECK_ACTIVE_FOR", d.check_active_for),
        max_poll_retries=_get_int("POLL_MAX_RETRIES", d.max_poll_retries),
        retry_multiplier=_get_float("POLL_RETRY_MULTIPLIER", d.retry_multiplier),
        backlog=_get_bool("POLL_BACKLOG", d.backlog),
    )


def client_options_from_env() -> ClientOptions:
    d = ClientOptions()
    return ClientOptions(
        check_existing=_get_bool("CHECK_EXISTING_SCROBBLES", d.check_existing),
        refresh_enabled=_get_bool("REFRESH_ENABLED", d.refresh_enabled),
        refresh_initial_count=_get_int("REFRESH_INITIAL_COUNT", d.refresh_initial_count),
        refresh_stale_after=_get_float("REFRESH_STALE_AFTER", d.refresh_stale_after),
        scrobble_delay=_get_float("SCROBBLE_DELAY", d.scrobble_delay),
        scrobble_sleep=_get_float("SCROBBLE_SLEEP", d.scrobble_sleep),
        max_processing_retries=_get_int("SCROBBLE_MAX_RETRIES", d.max_processing_retries),
        retry_multiplier=_get_float("SCROBBLE_RETRY_MULTIPLIER", d.retry_multiplier),
        dead_letter_retries=_get_int("DEAD_LETTER_RETRIES", d.dead_letter_retries),
        verbose_on_match=_get_bool("MATCH_LOG_ON_MATCH", d.verbose_on_match),
        verbose_on_no_match=_get_bool("MATCH_LOG_ON_NO_MATCH", d.verbose_on_no_match),
        verbose_confidence_breakdown=_get_bool("MATCH_LOG_BREAKDOWN", d.verbose_confidence_breakdown),
    )


def from_env() -> Config:
    return Config(
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        bluos_host=os.getenv("BLUOS_HOST", "127.0.0.1"),
        bluos_port=_get_int("BLUOS_PORT", 11000),
        heartbeat_interval=_get_float("HEARTBEAT_INTERVAL", DEFAULT_HEARTBEAT_INTERVAL),
        lastfm=LastFMConfig(
            api_key=os.getenv("LASTFM_API_KEY"),
            api_secret=os.getenv("LASTFM_API_SECRET"),
            session_key=os.getenv("LASTFM_SESSION_KEY"),
            username=os.getenv("LASTFM_USERNAME"),
            password_md5=os.getenv("LASTFM_PASSWORD_MD5"),
        ),
        source=source_options_from_env(),
        client=client_options_from_env(),
        source_transforms=_get_transforms("SOURCE_PLAY_TRANSFORMS", pre_compare_only=True),
        client_transforms=_get_transforms("PLAY_TRANSFORMS"),
    )
