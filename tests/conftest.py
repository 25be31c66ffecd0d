"""Shared test fixtures for allysync."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from allysync.channel import dump_json
from allysync.config import SyncConfig
from allysync.crypt import encrypt
from allysync.keys import KeyRecord
from allysync.simulator import MemoryWorld

KEY_A = "0123456789abcdef" * 4
KEY_B = "fedcba9876543210" * 4
KEY_C = "00112233445566778899aabbccddeeff" * 2

LEADER = "Leader"
LEADER_ROOM = "W1N1"
ME = "Me"
MY_ROOM = "W2N2"


@pytest.fixture
def world() -> MemoryWorld:
    """A fresh simulated world at tick 1."""
    return MemoryWorld(time=1)


@pytest.fixture
def config() -> SyncConfig:
    """Config with short intervals so tests need few ticks."""
    return SyncConfig(leader=LEADER, sync_interval=10, interval=2)


def store_key_record(world: MemoryWorld, player: str, record: KeyRecord, segment_id: int = 65) -> None:
    """Put a key record in a player's private segment (not loaded yet)."""
    world.segments.setdefault(player, {})[segment_id] = record.model_dump_json(by_alias=True)


def publish_encrypted(
    world: MemoryWorld,
    owner: str,
    segment_id: int,
    payload: Optional[dict[str, Any]],
    key: str,
) -> None:
    """Write an encrypted public segment the way a peer would."""
    text = "" if payload is None else encrypt(dump_json(payload), key)
    world.segments.setdefault(owner, {})[segment_id] = text
    world.public.setdefault(owner, set()).add(segment_id)


def run_ticks(world: MemoryWorld, runner, ticks: int) -> list:
    """Call ``runner.run_tick()`` then advance the clock, ``ticks`` times."""
    reports = []
    for _ in range(ticks):
        reports.append(runner.run_tick())
        world.advance()
    return reports
