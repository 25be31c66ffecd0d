"""
Alliance ranks and what each rank may publish and share.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

# Fields a member-rank peer's payload may not carry.
MEMBER_STRIPPED_FIELDS = ("attack", "player")


class Rank(str, Enum):
    """Alliance rank of a peer."""

    COUNCIL = "council"
    MEMBER = "member"
    ASSOCIATE = "associate"
    INACTIVE = "inactive"


def can_publish(rank: Optional[str]) -> bool:
    """Whether a peer of this rank publishes data worth polling."""
    return rank in (Rank.COUNCIL, Rank.MEMBER)


def apply_permissions(
    payload: Optional[dict[str, Any]], rank: Optional[str]
) -> Optional[dict[str, Any]]:
    """Drop the fields a peer's rank does not allow.

    Args:
        payload: Decoded peer payload.
        rank: The peer's rank.

    Returns:
        A filtered copy, or None for a None payload.
    """
    if payload is None:
        return None
    filtered = dict(payload)
    if rank == Rank.MEMBER:
        for field in MEMBER_STRIPPED_FIELDS:
            filtered.pop(field, None)
    return filtered
