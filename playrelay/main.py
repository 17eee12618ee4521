import logging
import threading

from .bluos import BluOSClient, BluOSSource
from .client import ScrobbleClient
from .config import from_env
from .errors import ConfigError
from .events import EventChannel, log_events
from .heartbeat import Heartbeat
from .lastfm_client import LastFMClient
from .notifier import Notifiers
from .notifier import from_env as webhook_notifier_from_env
from .notifier_gotify import from_env as gotify_notifier_from_env
from .notifier_ntfy import from_env as ntfy_notifier_from_env
from .source import Source

log = logging.getLogger("playrelay")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )


def main():
    try:
        config = from_env()
    except ConfigError as e:
        raise SystemExit(f"Invalid configuration: {e}")
    setup_logging(config.log_level)

    # Validate Last.fm configuration up-front for clear errors
    try:
        config.lastfm.validate()
    except ConfigError as e:
        raise SystemExit(str(e))

    # ok if none are configured; each ignores itself when unset
    notifier = Notifiers([webhook_notifier_from_env(), gotify_notifier_from_env(), ntfy_notifier_from_env()])
    events = EventChannel()

    lfm = ScrobbleClient(
        "lastfm",
        LastFMClient(
            api_key=config.lastfm.api_key,
            api_secret=config.lastfm.api_secret,
            session_key=config.lastfm.session_key,
            username=config.lastfm.username,
            password_md5=config.lastfm.password_md5,
        ),
        options=config.client,
        transforms=config.client_transforms,
        notifier=notifier,
        events=events,
    )
    blu = Source(
        "bluos",
        BluOSSource(BluOSClient(config.bluos_host, config.bluos_port)),
        clients=[lfm],
        options=config.source,
        transforms=config.source_transforms,
        notifier=notifier,
        events=events,
    )

    log.info("Starting BluOS → Last.fm relay. Poll interval: %ss (max %ss)",
             config.source.interval, config.source.max_interval)
    log.info("BluOS device: %s:%s", config.bluos_host, config.bluos_port)

    lfm.initialize()
    if not lfm.start_scrobbling():
        log.warning("Last.fm client is not ready; heartbeat will keep retrying")
    blu.poll()

    heartbeat = Heartbeat([blu], [lfm], interval=config.heartbeat_interval)
    heartbeat.start()

    notifier.notify("Relay started", f"Polling {config.bluos_host}:{config.bluos_port}.", "info")

    stop = threading.Event()
    try:
        log_events(events, stop)
    except KeyboardInterrupt:
        log.info("Shutting down…")
    finally:
        stop.set()
        heartbeat.stop()
        blu.try_stop_polling()
        lfm.try_stop_scrobbling()


if __name__ == "__main__":
    main()
