"""
Sync state models -- what survives between ticks and what a tick reports.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .outcomes import SegmentOutcome
from .permissions import can_publish


class SyncSnapshot(BaseModel):
    """Persisted sync state.

    Timers and the round-robin cursor drive polling; the roster and peer
    cache hold the last good data; ``my_data`` is the outbound record.
    """

    next_leader_sync_tick: int = 0
    next_peer_sync_tick: int = 0
    peer_cursor: int = 0
    roster: dict[str, str] = Field(default_factory=dict)
    peer_data: dict[str, dict[str, Any]] = Field(default_factory=dict)
    my_data: dict[str, Any] = Field(default_factory=dict)

    def eligible_peers(self, me: Optional[str]) -> list[str]:
        """Peers to poll, in roster order: not ourselves, allowed to publish."""
        return [
            name for name, rank in self.roster.items()
            if name != me and can_publish(rank)
        ]

    def prune_peer_data(self) -> list[str]:
        """Drop cached data of peers whose rank no longer allows publishing.

        Returns:
            Names of the peers removed.
        """
        removed = [
            name for name in self.peer_data
            if not can_publish(self.roster.get(name))
        ]
        for name in removed:
            del self.peer_data[name]
        return removed


class LeaderStatus(str, Enum):
    """What the leader step did this tick."""

    DISABLED = "disabled"
    IDLE = "idle"  # interval not reached
    PENDING = "pending"
    KEY_REQUESTED = "key_requested"
    SKIPPED = "skipped"  # settled, but nothing usable
    SYNCED = "synced"

    @property
    def is_pending(self) -> bool:
        return self is LeaderStatus.PENDING


@dataclass
class TickReport:
    """Summary of one :meth:`SyncOrchestrator.run_tick` call."""

    tick: int
    leader: LeaderStatus
    peer: Optional[str] = None
    peer_outcome: Optional[SegmentOutcome] = None
    roster_changed: bool = False
