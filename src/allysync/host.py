"""
Host engine interfaces -- what the sync core consumes from its environment.

The host provides the tick counter, segment storage with its two-phase
foreign read, the inbound transfer ledger, and the terminals that can send
transfers. The core never talks to anything else.

    Host.set_active_foreign_segment(owner, id)   # tick t
    Host.foreign_segment()                       # tick t+1: the data
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence


@dataclass(frozen=True)
class ForeignSegment:
    """A settled foreign read as reported by the host.

    Attributes:
        owner: Player whose segment this is.
        segment_id: Segment number.
        data: Raw content, or None when the segment is absent.
    """

    owner: str
    segment_id: int
    data: Optional[str] = None


@dataclass(frozen=True)
class Transfer:
    """An inbound resource transfer.

    Attributes:
        sender: Sending player, None for non-player sources.
        resource: Resource type.
        amount: Transferred amount.
        description: Free-text description attached by the sender.
        time: Tick the transfer happened.
    """

    sender: Optional[str]
    resource: str
    amount: int
    description: str
    time: int


class Terminal(ABC):
    """A structure that can send resource transfers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable identifier (room name)."""

    @property
    @abstractmethod
    def is_mine(self) -> bool:
        """Whether the terminal and its room are owned by the local player."""

    @property
    @abstractmethod
    def cooldown(self) -> int:
        """Ticks until the terminal can send again."""

    @abstractmethod
    def stored(self, resource: str) -> int:
        """Amount of ``resource`` in the terminal."""

    @abstractmethod
    def send(
        self,
        resource: str,
        amount: int,
        destination: str,
        description: Optional[str] = None,
    ) -> bool:
        """Send a transfer.

        Returns:
            True if the host accepted the transfer.
        """


class ThrottledTerminal(Terminal):
    """Wraps a terminal so it sends at most once per tick.

    Composed around the host's terminal; the wrapped object is not touched.

    Args:
        terminal: The real terminal.
        clock: Anything with a ``time`` attribute (usually the Host).
    """

    def __init__(self, terminal: Terminal, clock: "Host") -> None:
        self._terminal = terminal
        self._clock = clock
        self._used_at: Optional[int] = None

    @property
    def name(self) -> str:
        return self._terminal.name

    @property
    def is_mine(self) -> bool:
        return self._terminal.is_mine

    @property
    def cooldown(self) -> int:
        return self._terminal.cooldown

    @property
    def used_this_tick(self) -> bool:
        return self._used_at == self._clock.time

    def stored(self, resource: str) -> int:
        return self._terminal.stored(resource)

    def send(
        self,
        resource: str,
        amount: int,
        destination: str,
        description: Optional[str] = None,
    ) -> bool:
        if self.used_this_tick:
            return False
        sent = self._terminal.send(resource, amount, destination, description)
        if sent:
            self._used_at = self._clock.time
        return sent


class Host(ABC):
    """The host engine as seen by the sync core."""

    @property
    @abstractmethod
    def time(self) -> int:
        """Current tick. Monotonically non-decreasing."""

    @abstractmethod
    def set_active_foreign_segment(self, owner: str, segment_id: int) -> None:
        """Subscribe to one foreign segment; replaces any previous one."""

    @abstractmethod
    def foreign_segment(self) -> Optional[ForeignSegment]:
        """The settled foreign read, if any."""

    @abstractmethod
    def read_local(self, segment_id: int) -> Optional[str]:
        """Content of an own segment, or None if it is not loaded this tick."""

    @abstractmethod
    def write_local(self, segment_id: int, data: str) -> None:
        """Write an own segment."""

    @abstractmethod
    def set_public_segments(self, segment_ids: Sequence[int]) -> None:
        """Declare which own segments other players may read."""

    @abstractmethod
    def set_active_segments(self, segment_ids: Sequence[int]) -> None:
        """Request own segments to be loaded on the next tick."""

    @abstractmethod
    def incoming_transfers(self) -> Iterable[Transfer]:
        """Inbound transfers, most recent first."""

    @abstractmethod
    def terminals(self) -> Sequence[Terminal]:
        """Terminals the local player can send from."""
