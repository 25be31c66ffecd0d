"""
Read outcomes for two-phase segment reads.

A foreign segment read can be not-yet-settled, settled but empty, settled
but garbage, settled but signed with another key, or a real payload.
Each case is its own type so callers handle them explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class Pending:
    """Subscription not settled yet, or retargeted since the last read."""


@dataclass(frozen=True)
class Empty:
    """Settled, and the segment holds nothing."""


@dataclass(frozen=True)
class Malformed:
    """Settled, but the content is not valid encoded structure.

    Attributes:
        reason: Parser message, for logs.
    """

    reason: str = ""


@dataclass(frozen=True)
class DecryptionFailed:
    """Settled, but the signature tag did not match the key used."""


@dataclass(frozen=True)
class Value:
    """Settled and decoded.

    Attributes:
        payload: The decoded content (raw text for raw reads).
    """

    payload: Any


SegmentOutcome = Union[Pending, Empty, Malformed, DecryptionFailed, Value]

PENDING = Pending()
EMPTY = Empty()
DECRYPTION_FAILED = DecryptionFailed()


def is_settled(outcome: SegmentOutcome) -> bool:
    """True for every outcome except :class:`Pending`."""
    return not isinstance(outcome, Pending)
