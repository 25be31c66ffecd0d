"""Tests for the key lifecycle: record, rotation, transfer delivery."""

from __future__ import annotations

import json
from typing import Optional

import pytest

from allysync.config import SyncConfig
from allysync.host import Terminal, ThrottledTerminal
from allysync.keys import (
    KeyManager,
    KeyPhase,
    KeyRecord,
    KeyRequestStatus,
    parse_key_record,
)
from allysync.simulator import MemoryWorld

from conftest import (
    KEY_A,
    KEY_B,
    KEY_C,
    LEADER,
    LEADER_ROOM,
    ME,
    MY_ROOM,
    store_key_record,
)


def _loaded_manager(
    world: MemoryWorld,
    config: SyncConfig,
    record: Optional[KeyRecord] = None,
    calls: Optional[list] = None,
) -> KeyManager:
    """A manager whose record is already loaded."""
    if record is not None:
        store_key_record(world, ME, record)
    callback = (lambda: calls.append(world.time)) if calls is not None else None
    manager = KeyManager(world.host(ME), config, on_key_changed=callback)
    manager.load()
    world.advance()
    assert manager.load()
    return manager


def _stored_record(world: MemoryWorld) -> dict:
    return json.loads(world.segments[ME][65])


class TestKeyRecord:
    """Tests for decoding the persisted record."""

    def test_aliases(self) -> None:
        record = parse_key_record(
            '{"key":"k","newKey":"n","expire":5,"leaderRoom":"W1N1"}'
        )
        assert record.key == "k"
        assert record.new_key == "n"
        assert record.expire == 5
        assert record.leader_room == "W1N1"

    @pytest.mark.parametrize("data", ["", "   ", "null", "{broken", '{"expire":"soon"}'])
    def test_blank_on_bad_content(self, data: str) -> None:
        assert parse_key_record(data) == KeyRecord()

    def test_dump_uses_wire_names(self) -> None:
        data = json.loads(KeyRecord(new_key="n", leader_room="R").model_dump_json(by_alias=True))
        assert data["newKey"] == "n"
        assert data["leaderRoom"] == "R"


class TestLoad:
    """Tests for the load-next-tick behaviour of the key segment."""

    def test_first_load_activates_segment(self, world: MemoryWorld, config: SyncConfig) -> None:
        host = world.host(ME)
        manager = KeyManager(host, config)
        assert not manager.load()
        assert host.active_segments == [65]
        assert not manager.loaded
        assert manager.phase == KeyPhase.NO_KEY

    def test_loads_next_tick(self, world: MemoryWorld, config: SyncConfig) -> None:
        store_key_record(world, ME, KeyRecord(key=KEY_A, leader_room=LEADER_ROOM))
        manager = KeyManager(world.host(ME), config)
        manager.load()
        world.advance()
        assert manager.load()
        assert manager.key == KEY_A
        assert manager.record.leader_room == LEADER_ROOM
        assert manager.phase == KeyPhase.ACTIVE

    def test_missing_segment_gives_blank_record(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config)
        assert manager.record == KeyRecord()

    def test_phases(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config, KeyRecord(key=KEY_A, new_key=KEY_B))
        assert manager.phase == KeyPhase.PENDING_ROTATION


class TestRotation:
    """Tests for expiry, lookahead and promotion."""

    def test_expiry_boundary(self, world: MemoryWorld, config: SyncConfig) -> None:
        calls: list = []
        manager = _loaded_manager(
            world, config, KeyRecord(key=KEY_A, new_key=KEY_B, expire=100), calls
        )
        assert not manager.apply_expiry(99)
        assert manager.key == KEY_A
        assert manager.apply_expiry(100)
        assert manager.key == KEY_B
        assert manager.record.new_key is None
        assert manager.record.expire is None
        assert len(calls) == 1
        assert _stored_record(world)["key"] == KEY_B

    def test_expiry_without_next_key(self, world: MemoryWorld, config: SyncConfig) -> None:
        """Expiry with nothing queued leaves no key and no notification."""
        calls: list = []
        manager = _loaded_manager(world, config, KeyRecord(key=KEY_A, expire=10), calls)
        assert manager.apply_expiry(10)
        assert manager.key is None
        assert calls == []
        assert manager.needs_key(10)

    def test_expiry_not_set(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config, KeyRecord(key=KEY_A))
        assert not manager.apply_expiry(10_000)

    def test_needs_key_without_key(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config)
        assert manager.needs_key(1)

    def test_needs_key_before_load(self, world: MemoryWorld, config: SyncConfig) -> None:
        assert KeyManager(world.host(ME), config).needs_key(1)

    def test_needs_key_lookahead(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config, KeyRecord(key=KEY_A, expire=2000))
        assert not manager.needs_key(999)
        assert manager.needs_key(1000)

    def test_delivered_next_key_is_usable(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config, KeyRecord(new_key=KEY_B))
        assert not manager.needs_key(5)
        assert manager.leader_key() == (KEY_B, True)

    def test_leader_key_prefers_active_key_once_expiry_known(
        self, world: MemoryWorld, config: SyncConfig
    ) -> None:
        manager = _loaded_manager(
            world, config, KeyRecord(key=KEY_A, new_key=KEY_B, expire=5000)
        )
        assert manager.leader_key() == (KEY_A, False)

    def test_promote_new_key(self, world: MemoryWorld, config: SyncConfig) -> None:
        calls: list = []
        manager = _loaded_manager(world, config, KeyRecord(new_key=KEY_B), calls)
        manager.promote_new_key()
        assert manager.key == KEY_B
        assert manager.record.new_key is None
        assert len(calls) == 1

    def test_set_rotation_persists_on_change_only(
        self, world: MemoryWorld, config: SyncConfig
    ) -> None:
        manager = _loaded_manager(world, config, KeyRecord(key=KEY_A))
        manager.set_rotation(5000, LEADER_ROOM)
        assert _stored_record(world)["expire"] == 5000
        assert _stored_record(world)["leaderRoom"] == LEADER_ROOM

        del world.segments[ME][65]
        manager.set_rotation(5000, LEADER_ROOM)
        assert 65 not in world.segments[ME]

    def test_set_leader_room(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config)
        manager.set_leader_room(LEADER_ROOM)
        assert _stored_record(world)["leaderRoom"] == LEADER_ROOM

    def test_set_leader_room_before_load(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = KeyManager(world.host(ME), config)
        manager.set_leader_room(LEADER_ROOM)
        assert manager.record is None

    def test_clear_key_keeps_next_key_and_room(
        self, world: MemoryWorld, config: SyncConfig
    ) -> None:
        manager = _loaded_manager(
            world,
            config,
            KeyRecord(key=KEY_A, new_key=KEY_B, expire=50, leader_room=LEADER_ROOM),
        )
        manager.clear_key()
        assert manager.record == KeyRecord(new_key=KEY_B, leader_room=LEADER_ROOM)
        assert _stored_record(world)["key"] is None


class TestTransferDelivery:
    """Tests for scanning inbound transfers for key material."""

    @pytest.fixture
    def manager(self, world: MemoryWorld, config: SyncConfig) -> KeyManager:
        world.add_terminal(ME, MY_ROOM)
        return _loaded_manager(world, config)

    def test_direct_key(self, world: MemoryWorld, manager: KeyManager) -> None:
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        assert manager.read_key_from_transfers(world.time)
        assert manager.key == KEY_A
        assert _stored_record(world)["key"] == KEY_A

    def test_next_key(self, world: MemoryWorld, manager: KeyManager) -> None:
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, "nk" + KEY_B)
        assert manager.read_key_from_transfers(world.time)
        assert manager.record.new_key == KEY_B
        assert manager.key is None

    def test_any_two_character_prefix(self, world: MemoryWorld, manager: KeyManager) -> None:
        """Next keys are recognized by length, not by the prefix text."""
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, "xx" + KEY_B)
        assert manager.read_key_from_transfers(world.time)
        assert manager.record.new_key == KEY_B

    @pytest.mark.parametrize(
        "sender, resource, amount, description",
        [
            ("Stranger", "energy", 3, KEY_A),
            (None, "energy", 3, KEY_A),
            (LEADER, "power", 3, KEY_A),
            (LEADER, "energy", 4, KEY_A),
            (LEADER, "energy", 3, KEY_A[:-1]),
            (LEADER, "energy", 3, "g" * 64),
            (LEADER, "energy", 3, ""),
        ],
    )
    def test_ignored_transfers(
        self,
        world: MemoryWorld,
        manager: KeyManager,
        sender: Optional[str],
        resource: str,
        amount: int,
        description: str,
    ) -> None:
        world.send_transfer(sender, MY_ROOM, resource, amount, description)
        assert not manager.read_key_from_transfers(world.time)
        assert manager.record == KeyRecord()

    def test_most_recent_match_wins(self, world: MemoryWorld, manager: KeyManager) -> None:
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        world.advance()
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_C)
        assert manager.read_key_from_transfers(world.time)
        assert manager.key == KEY_C

    def test_window(self, world: MemoryWorld, manager: KeyManager) -> None:
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        sent_at = world.time
        assert not manager.read_key_from_transfers(sent_at + 1001)
        assert manager.read_key_from_transfers(sent_at + 1000)

    def test_scan_limit(self, world: MemoryWorld, manager: KeyManager) -> None:
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        for _ in range(30):
            world.send_transfer("Trader", MY_ROOM, "energy", 100, "market")
        assert not manager.read_key_from_transfers(world.time)

    def test_within_scan_limit(self, world: MemoryWorld, manager: KeyManager) -> None:
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        for _ in range(29):
            world.send_transfer("Trader", MY_ROOM, "energy", 100, "market")
        assert manager.read_key_from_transfers(world.time)

    def test_rejected_key_skipped(self, world: MemoryWorld, manager: KeyManager) -> None:
        """A key dropped after failing to decrypt is not taken from old deliveries."""
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        manager.read_key_from_transfers(world.time)
        manager.clear_key()
        assert not manager.read_key_from_transfers(world.time)

        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_B)
        assert manager.read_key_from_transfers(world.time)
        assert manager.key == KEY_B

    def test_rejected_key_accepted_when_sent_again(
        self, world: MemoryWorld, manager: KeyManager
    ) -> None:
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        manager.read_key_from_transfers(world.time)
        manager.clear_key()

        world.advance()
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        assert manager.read_key_from_transfers(world.time)
        assert manager.key == KEY_A

    def test_direct_key_notifies(self, world: MemoryWorld, config: SyncConfig) -> None:
        calls: list = []
        world.add_terminal(ME, MY_ROOM)
        manager = _loaded_manager(world, config, calls=calls)
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        manager.read_key_from_transfers(world.time)
        assert calls == [world.time]

    def test_next_key_does_not_notify(self, world: MemoryWorld, config: SyncConfig) -> None:
        calls: list = []
        world.add_terminal(ME, MY_ROOM)
        manager = _loaded_manager(world, config, calls=calls)
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, "nk" + KEY_B)
        manager.read_key_from_transfers(world.time)
        assert calls == []


class TestKeyRequest:
    """Tests for requesting a key from the leader."""

    def test_statuses_that_retry(self) -> None:
        assert not KeyRequestStatus.REQUESTED.is_pending
        assert not KeyRequestStatus.WAITING.is_pending
        assert KeyRequestStatus.RECEIVED.is_pending
        assert KeyRequestStatus.DEFERRED.is_pending
        assert KeyRequestStatus.NO_LEADER_ROOM.is_pending
        assert KeyRequestStatus.NO_TERMINAL.is_pending

    def test_waiting_for_rotation(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config, KeyRecord(key=KEY_A, new_key=KEY_B, expire=50))
        assert manager.request_key(world.time) == KeyRequestStatus.WAITING

    def test_no_leader_room(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config)
        assert manager.request_key(world.time) == KeyRequestStatus.NO_LEADER_ROOM

    def test_no_terminal(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = _loaded_manager(world, config, KeyRecord(leader_room=LEADER_ROOM))
        assert manager.request_key(world.time) == KeyRequestStatus.NO_TERMINAL

    def test_deferred_without_energy(self, world: MemoryWorld, config: SyncConfig) -> None:
        world.add_terminal(ME, MY_ROOM, energy=5)
        world.add_terminal(LEADER, LEADER_ROOM)
        manager = _loaded_manager(world, config, KeyRecord(leader_room=LEADER_ROOM))
        assert manager.request_key(world.time) == KeyRequestStatus.DEFERRED

    def test_deferred_on_cooldown(self, world: MemoryWorld, config: SyncConfig) -> None:
        terminal = world.add_terminal(ME, MY_ROOM, energy=100)
        terminal.ready_at = world.time + 50
        world.add_terminal(LEADER, LEADER_ROOM)
        manager = _loaded_manager(world, config, KeyRecord(leader_room=LEADER_ROOM))
        assert manager.request_key(world.time) == KeyRequestStatus.DEFERRED

    def test_requested(self, world: MemoryWorld, config: SyncConfig) -> None:
        terminal = world.add_terminal(ME, MY_ROOM, energy=100)
        world.add_terminal(LEADER, LEADER_ROOM)
        manager = _loaded_manager(world, config, KeyRecord(leader_room=LEADER_ROOM))

        assert manager.request_key(world.time) == KeyRequestStatus.REQUESTED
        assert manager.requested_at == world.time
        assert manager.phase == KeyPhase.AWAITING_DELIVERY
        assert terminal.stored("energy") == 97

        request = world.ledgers[LEADER][0]
        assert request.sender == ME
        assert request.resource == "energy"
        assert request.amount == 3

    def test_received_from_ledger(self, world: MemoryWorld, config: SyncConfig) -> None:
        world.add_terminal(ME, MY_ROOM, energy=100)
        manager = _loaded_manager(world, config, KeyRecord(leader_room=LEADER_ROOM))
        world.send_transfer(LEADER, MY_ROOM, "energy", 3, KEY_A)
        assert manager.request_key(world.time) == KeyRequestStatus.RECEIVED
        assert manager.key == KEY_A
        assert world.terminals_of(ME)[0].sent == []

    def test_deferred_before_load(self, world: MemoryWorld, config: SyncConfig) -> None:
        manager = KeyManager(world.host(ME), config)
        assert manager.request_key(world.time) == KeyRequestStatus.DEFERRED


class TestDeliverKey:
    """Tests for the leader answering a key request."""

    @pytest.fixture
    def leader(self, world: MemoryWorld, config: SyncConfig) -> KeyManager:
        world.add_terminal(LEADER, LEADER_ROOM, energy=100)
        world.add_terminal(ME, MY_ROOM)
        return KeyManager(world.host(LEADER), config)

    def test_direct(self, world: MemoryWorld, leader: KeyManager) -> None:
        assert leader.deliver_key(MY_ROOM, KEY_A)
        transfer = world.ledgers[ME][0]
        assert transfer.sender == LEADER
        assert transfer.description == KEY_A
        assert transfer.amount == 3

    def test_next_key(self, world: MemoryWorld, leader: KeyManager) -> None:
        assert leader.deliver_key(MY_ROOM, KEY_B, next_key=True)
        assert world.ledgers[ME][0].description == "nk" + KEY_B

    def test_delivered_key_is_picked_up(
        self, world: MemoryWorld, config: SyncConfig, leader: KeyManager
    ) -> None:
        leader.deliver_key(MY_ROOM, KEY_C)
        member = _loaded_manager(world, config, KeyRecord(leader_room=LEADER_ROOM))
        assert member.request_key(world.time) == KeyRequestStatus.RECEIVED
        assert member.key == KEY_C

    def test_invalid_key(self, leader: KeyManager) -> None:
        with pytest.raises(ValueError):
            leader.deliver_key(MY_ROOM, "not-a-key")

    def test_one_send_per_tick(self, world: MemoryWorld, leader: KeyManager) -> None:
        assert leader.deliver_key(MY_ROOM, KEY_A)
        assert not leader.deliver_key(MY_ROOM, KEY_B)


class _AlwaysSends(Terminal):
    """Terminal without cooldown or store limits."""

    def __init__(self) -> None:
        self.sent: list = []

    @property
    def name(self) -> str:
        return "W9N9"

    @property
    def is_mine(self) -> bool:
        return True

    @property
    def cooldown(self) -> int:
        return 0

    def stored(self, resource: str) -> int:
        return 1000

    def send(self, resource, amount, destination, description=None) -> bool:
        self.sent.append((resource, amount, destination, description))
        return True


class TestThrottledTerminal:
    """Tests for the once-per-tick send wrapper."""

    def test_once_per_tick(self, world: MemoryWorld) -> None:
        inner = _AlwaysSends()
        terminal = ThrottledTerminal(inner, world.host(ME))
        assert terminal.send("energy", 3, LEADER_ROOM)
        assert terminal.used_this_tick
        assert not terminal.send("energy", 3, LEADER_ROOM)
        assert len(inner.sent) == 1

    def test_resets_next_tick(self, world: MemoryWorld) -> None:
        inner = _AlwaysSends()
        terminal = ThrottledTerminal(inner, world.host(ME))
        terminal.send("energy", 3, LEADER_ROOM)
        world.advance()
        assert not terminal.used_this_tick
        assert terminal.send("energy", 3, LEADER_ROOM, "again")
        assert inner.sent[-1] == ("energy", 3, LEADER_ROOM, "again")

    def test_passes_through_state(self, world: MemoryWorld) -> None:
        terminal = ThrottledTerminal(_AlwaysSends(), world.host(ME))
        assert terminal.name == "W9N9"
        assert terminal.is_mine
        assert terminal.cooldown == 0
        assert terminal.stored("energy") == 1000
