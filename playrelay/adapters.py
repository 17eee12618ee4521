"""
Vendor-facing interfaces. Polling, queueing and matching are written once
against these; each service only implements fetch/submit/auth/connection.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Sequence

from .models import PlayerStateData, PlayRecord


class SourceAdapter(ABC):
    # stamped on plays as meta.source; drives timestamp granularity in matching
    source_type: str = "generic"
    # True when the source can only say what is playing right now (no history API).
    # Its snapshots are run through the stateful play detector.
    now_playing_only: bool = False
    supports_recent: bool = True
    requires_auth: bool = False
    # keep the play date reported by the source instead of locking it to "now"
    use_existing_play_date: bool = False

    @abstractmethod
    def fetch_recent(self, limit: int) -> Sequence[PlayRecord | PlayerStateData]:
        """Recently played (history sources) or the current player state (now-playing sources)."""

    def fetch_now_playing(self) -> PlayRecord | None:
        return None

    def check_connection(self) -> bool:
        return True

    def test_auth(self) -> bool:
        return True


class ClientAdapter(ABC):
    requires_auth: bool = True

    @abstractmethod
    def get_recent_history(self, limit: int) -> List[PlayRecord]:
        """Most recent scrobbles the service reports, any order."""

    @abstractmethod
    def submit(self, play: PlayRecord) -> PlayRecord | None:
        """Scrobble ``play``. Returns the play as the service accepted it, if it says.

        Raise UpstreamError/ClientAuthError/NetworkError so the processor can
        decide between dead-lettering and stopping.
        """

    def check_connection(self) -> bool:
        return True

    def test_auth(self) -> bool:
        return True
