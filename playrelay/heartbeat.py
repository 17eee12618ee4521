"""
Periodic upkeep for all sources and clients.

Every ``interval`` seconds:
- clients that lost auth re-check it, stopped clients restart processing,
  then each client sweeps its dead-letter queue
- sources that are not polling start polling again
"""

from __future__ import annotations

import logging
import threading
from typing import Sequence

from .client import ScrobbleClient
from .source import Source

DEFAULT_HEARTBEAT_INTERVAL = 900


class Heartbeat:
    def __init__(self, sources: Sequence[Source], clients: Sequence[ScrobbleClient],
                 interval: float = DEFAULT_HEARTBEAT_INTERVAL, logger: logging.Logger | None = None):
        self.sources = list(sources)
        self.clients = list(clients)
        self.interval = interval
        self.logger = logger or logging.getLogger("heartbeat")
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def check_clients(self) -> None:
        for client in self.clients:
            try:
                if not client.initialized:
                    client.initialize()
                if client.initialized and client.adapter.requires_auth and not client.authed:
                    client.test_auth()
                if client.is_ready() and not client.scrobbling:
                    self.logger.info("Restarting scrobble processing for client %s", client.name)
                    client.start_scrobbling()
                client.process_dead_letter_queue()
            except Exception as e:
                self.logger.warning("Heartbeat check failed for client %s: %s", client.name, e)

    def check_sources(self) -> None:
        for source in self.sources:
            try:
                if not source.polling:
                    self.logger.info("Restarting polling for source %s", source.name)
                    source.poll()
            except Exception as e:
                self.logger.warning("Heartbeat check failed for source %s: %s", source.name, e)

    def beat(self) -> None:
        self.logger.debug("Heartbeat")
        self.check_clients()
        self.check_sources()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.beat()

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="heartbeat", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
