"""
In-memory host -- a tick-stepped stand-in for the real engine.

Models the parts of the host the sync core depends on:

    - foreign reads settle ``settle_delay`` ticks after subscription and
      only expose segments the owner declared public
    - own segments become readable the tick after they are activated
      (or as soon as they are written)
    - terminals with cooldowns and stores, rooms with owners, and a
      per-player inbound transfer ledger (most recent first)

Used by the test suite and for dry runs of a whole alliance.

Usage:
    world = MemoryWorld()
    leader = world.host("Leader")
    world.add_terminal("Leader", "W1N1", energy=1000)
    ...
    world.advance()
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .host import ForeignSegment, Host, Terminal, ThrottledTerminal, Transfer

logger = logging.getLogger("allysync.simulator")

TERMINAL_COOLDOWN = 10


class MemoryWorld:
    """Shared state of every simulated player.

    Args:
        time: Starting tick.
        settle_delay: Ticks between a foreign subscription and its result.
    """

    def __init__(self, time: int = 1, settle_delay: int = 1) -> None:
        self.time = time
        self.settle_delay = settle_delay
        self.segments: dict[str, dict[int, str]] = {}
        self.public: dict[str, set[int]] = {}
        self.rooms: dict[str, str] = {}
        self.ledgers: dict[str, list[Transfer]] = {}
        self._terminals: dict[str, "MemoryTerminal"] = {}
        self._hosts: dict[str, "MemoryHost"] = {}

    def advance(self, ticks: int = 1) -> int:
        """Move the clock forward and return the new tick."""
        self.time += ticks
        return self.time

    def host(self, player: str) -> "MemoryHost":
        """The host view of ``player``, created on first use."""
        if player not in self._hosts:
            self._hosts[player] = MemoryHost(self, player)
        return self._hosts[player]

    def add_terminal(
        self, owner: str, room: str, energy: int = 0
    ) -> "MemoryTerminal":
        """Give ``owner`` a room with a terminal."""
        terminal = MemoryTerminal(self, room, owner, {"energy": energy})
        self.rooms[room] = owner
        self._terminals[room] = terminal
        return terminal

    def terminals_of(self, owner: str) -> list["MemoryTerminal"]:
        return [t for t in self._terminals.values() if t.owner == owner]

    def deliver(self, destination: str, transfer: Transfer) -> bool:
        """Append a transfer to the ledger of the room owner.

        Returns:
            False if the destination room is unknown.
        """
        recipient = self.rooms.get(destination)
        if recipient is None:
            return False
        self.ledgers.setdefault(recipient, []).insert(0, transfer)
        return True

    def send_transfer(
        self,
        sender: Optional[str],
        destination: str,
        resource: str,
        amount: int,
        description: str = "",
    ) -> bool:
        """Deliver a transfer without going through a terminal."""
        return self.deliver(
            destination,
            Transfer(
                sender=sender,
                resource=resource,
                amount=amount,
                description=description,
                time=self.time,
            ),
        )


class MemoryTerminal(Terminal):
    """A simulated terminal."""

    def __init__(
        self,
        world: MemoryWorld,
        room: str,
        owner: str,
        store: dict[str, int],
    ) -> None:
        self._world = world
        self.room = room
        self.owner = owner
        self.store = store
        self.ready_at = 0
        self.sent: list[Transfer] = []

    @property
    def name(self) -> str:
        return self.room

    @property
    def is_mine(self) -> bool:
        return self._world.rooms.get(self.room) == self.owner

    @property
    def cooldown(self) -> int:
        return max(0, self.ready_at - self._world.time)

    def stored(self, resource: str) -> int:
        return self.store.get(resource, 0)

    def send(
        self,
        resource: str,
        amount: int,
        destination: str,
        description: Optional[str] = None,
    ) -> bool:
        if self.cooldown > 0 or self.stored(resource) < amount:
            return False
        transfer = Transfer(
            sender=self.owner,
            resource=resource,
            amount=amount,
            description=description or "",
            time=self._world.time,
        )
        if not self._world.deliver(destination, transfer):
            return False
        self.store[resource] -= amount
        self.ready_at = self._world.time + TERMINAL_COOLDOWN
        self.sent.append(transfer)
        logger.debug(
            "%s sent %d %s to %s", self.room, amount, resource, destination
        )
        return True


class MemoryHost(Host):
    """One player's view of a :class:`MemoryWorld`."""

    def __init__(self, world: MemoryWorld, player: str) -> None:
        self.world = world
        self.player = player
        self._request: Optional[tuple[str, int, int]] = None
        self._activated: dict[int, int] = {}
        self._written: set[int] = set()
        self._throttled: dict[str, ThrottledTerminal] = {}
        self.public_segments: list[int] = []
        self.active_segments: list[int] = []

    @property
    def time(self) -> int:
        return self.world.time

    @property
    def _segments(self) -> dict[int, str]:
        return self.world.segments.setdefault(self.player, {})

    def set_active_foreign_segment(self, owner: str, segment_id: int) -> None:
        self._request = (owner, segment_id, self.world.time)

    def foreign_segment(self) -> Optional[ForeignSegment]:
        if self._request is None:
            return None
        owner, segment_id, requested_at = self._request
        if self.world.time < requested_at + self.world.settle_delay:
            return None
        data = None
        if segment_id in self.world.public.get(owner, set()):
            data = self.world.segments.get(owner, {}).get(segment_id)
        return ForeignSegment(owner=owner, segment_id=segment_id, data=data)

    def read_local(self, segment_id: int) -> Optional[str]:
        activated_at = self._activated.get(segment_id)
        loaded = segment_id in self._written or (
            activated_at is not None and activated_at < self.world.time
        )
        if not loaded:
            return None
        return self._segments.get(segment_id, "")

    def write_local(self, segment_id: int, data: str) -> None:
        self._segments[segment_id] = data
        self._written.add(segment_id)

    def set_public_segments(self, segment_ids: Sequence[int]) -> None:
        self.public_segments = list(segment_ids)
        self.world.public[self.player] = set(segment_ids)

    def set_active_segments(self, segment_ids: Sequence[int]) -> None:
        self.active_segments = list(segment_ids)
        self._activated = {
            sid: self._activated.get(sid, self.world.time)
            for sid in segment_ids
        }

    def incoming_transfers(self) -> list[Transfer]:
        return list(self.world.ledgers.get(self.player, []))

    def terminals(self) -> list[Terminal]:
        result: list[Terminal] = []
        for terminal in self.world.terminals_of(self.player):
            if terminal.room not in self._throttled:
                self._throttled[terminal.room] = ThrottledTerminal(terminal, self)
            result.append(self._throttled[terminal.room])
        return result
