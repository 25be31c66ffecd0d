"""
Key lifecycle -- acquisition, delivery, rotation and expiry of the shared key.

The key record lives in a private own segment:

    {"key": ..., "newKey": ..., "expire": <tick>, "leaderRoom": ...}

Keys arrive out of band. The member sends a tiny tagged transfer to the
leader's room; the leader answers with a transfer whose description carries
the key material:

    <64 hex>             direct key (replaces the active key)
    <prefix><64 hex>     next key (becomes active at ``expire``)

Phases: NO_KEY -> AWAITING_DELIVERY -> ACTIVE -> PENDING_ROTATION -> ACTIVE
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .config import SyncConfig
from .crypt import KEY_HEX_LENGTH, is_valid_key
from .host import Host

logger = logging.getLogger("allysync.keys")


class KeyRecord(BaseModel):
    """Persisted key state."""

    model_config = ConfigDict(populate_by_name=True)

    key: Optional[str] = None
    new_key: Optional[str] = Field(default=None, alias="newKey")
    expire: Optional[int] = None
    leader_room: Optional[str] = Field(default=None, alias="leaderRoom")


class KeyPhase(str, Enum):
    """Where the local key currently stands."""

    NO_KEY = "no_key"
    AWAITING_DELIVERY = "awaiting_delivery"
    ACTIVE = "active"
    PENDING_ROTATION = "pending_rotation"


class KeyRequestStatus(str, Enum):
    """Result of one key request attempt."""

    WAITING = "waiting"  # next key already delivered
    RECEIVED = "received"
    REQUESTED = "requested"
    DEFERRED = "deferred"  # terminals exist but none could send
    NO_LEADER_ROOM = "no_leader_room"
    NO_TERMINAL = "no_terminal"

    @property
    def is_pending(self) -> bool:
        """Statuses that should be retried on the very next tick."""
        return self not in (KeyRequestStatus.WAITING, KeyRequestStatus.REQUESTED)


def parse_key_record(data: str) -> KeyRecord:
    """Decode the key segment; empty or invalid content gives a blank record."""
    if not data.strip():
        return KeyRecord()
    try:
        parsed = json.loads(data)
        if parsed is None:
            return KeyRecord()
        return KeyRecord.model_validate(parsed)
    except ValueError as exc:
        logger.warning("Failed to load key record, starting empty: %s", exc)
        return KeyRecord()


class KeyManager:
    """Owns the key record and the key delivery side channel.

    Args:
        host: The host engine.
        config: Sync configuration.
        on_key_changed: Called when a new active key takes effect.
    """

    def __init__(
        self,
        host: Host,
        config: SyncConfig,
        on_key_changed: Optional[Callable[[], None]] = None,
    ) -> None:
        self._host = host
        self._config = config
        self.on_key_changed = on_key_changed
        self.record: Optional[KeyRecord] = None
        self.requested_at: Optional[int] = None
        # key -> tick it failed to decrypt; older deliveries of it are ignored
        self._rejected: dict[str, int] = {}

    @property
    def loaded(self) -> bool:
        return self.record is not None

    @property
    def key(self) -> Optional[str]:
        """The active key, if any."""
        return self.record.key if self.record else None

    @property
    def phase(self) -> KeyPhase:
        record = self.record
        if record is None or not (record.key or record.new_key):
            if self.requested_at is not None:
                return KeyPhase.AWAITING_DELIVERY
            return KeyPhase.NO_KEY
        if record.new_key:
            return KeyPhase.PENDING_ROTATION
        return KeyPhase.ACTIVE

    # -------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------

    def load(self) -> bool:
        """Load the key record from the private segment.

        The segment follows the host's load-next-tick model, so the first
        call usually only activates it.

        Returns:
            True once the record is available.
        """
        if self.record is not None:
            return True
        data = self._host.read_local(self._config.key_segment_id)
        if data is None:
            self._host.set_active_segments([self._config.key_segment_id])
            return False
        self.record = parse_key_record(data)
        return True

    def save(self) -> None:
        """Persist the key record."""
        if self.record is None:
            return
        self._host.write_local(
            self._config.key_segment_id,
            self.record.model_dump_json(by_alias=True),
        )

    # -------------------------------------------------------------------
    # Rotation
    # -------------------------------------------------------------------

    def _notify(self) -> None:
        logger.info("Alliance key changed")
        if self.on_key_changed:
            self.on_key_changed()

    def apply_expiry(self, tick: int) -> bool:
        """Swap in the next key once the recorded expiry is reached.

        The next key may be absent, which leaves no active key until a
        new one is delivered.

        Returns:
            True if the swap happened this call.
        """
        record = self.record
        if record is None or record.expire is None or tick < record.expire:
            return False
        record.key = record.new_key
        record.new_key = None
        record.expire = None
        self.save()
        if record.key:
            self._notify()
        return True

    def needs_key(self, tick: int) -> bool:
        """True without a usable key, or when the key is about to expire."""
        record = self.record
        if record is None:
            return True
        if not record.key and not (record.new_key and record.expire is None):
            return True
        return (
            record.expire is not None
            and tick >= record.expire - self._config.rotation_lookahead
        )

    def leader_key(self) -> tuple[Optional[str], bool]:
        """Key to read the leader's roster with.

        Returns:
            (key, is_new_key): the delivered next key while no expiry is
            recorded, otherwise the active key.
        """
        record = self.record
        if record is None:
            return None, False
        if record.new_key and record.expire is None:
            return record.new_key, True
        return record.key, False

    def promote_new_key(self) -> None:
        """Make the delivered next key active right away."""
        record = self.record
        if record is None or not record.new_key:
            return
        record.key = record.new_key
        record.new_key = None
        self.save()
        self._notify()

    def set_rotation(self, expire: Optional[int], leader_room: Optional[str]) -> None:
        """Record rotation metadata from the leader, persisting only on change."""
        record = self.record
        if record is None:
            return
        if expire == record.expire and leader_room == record.leader_room:
            return
        record.expire = expire
        record.leader_room = leader_room
        self.save()

    def set_leader_room(self, leader_room: str) -> None:
        """Set the room key requests are sent to."""
        if self.record is None:
            return
        self.record.leader_room = leader_room
        self.save()

    def clear_key(self) -> None:
        """Forget the active key; the next key and leader room are kept."""
        record = self.record
        if record is None:
            return
        if record.key:
            self._rejected[record.key] = self._host.time
        record.key = None
        record.expire = None
        self.save()

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------

    def read_key_from_transfers(self, tick: int) -> bool:
        """Look for key material in recent transfers from the leader.

        Returns:
            True if a key was taken from a transfer and persisted.
        """
        record = self.record
        if record is None:
            return False
        config = self._config
        leader = config.leader_name
        prefix_length = len(config.new_key_prefix)
        prefixed_length = prefix_length + KEY_HEX_LENGTH

        for index, transfer in enumerate(self._host.incoming_transfers()):
            if index >= config.transfer_scan_limit:
                break
            if tick > transfer.time + config.transfer_window:
                break
            if (
                transfer.sender != leader
                or transfer.resource != config.key_transfer_resource
                or transfer.amount != config.key_transfer_amount
            ):
                continue

            description = transfer.description or ""
            if len(description) == prefixed_length:
                material = description[prefix_length:]
                is_next = True
            elif len(description) == KEY_HEX_LENGTH:
                material = description
                is_next = False
            else:
                continue
            if not is_valid_key(material):
                logger.warning("Ignoring non-hex key transfer at tick %d", transfer.time)
                continue
            rejected_at = self._rejected.get(material)
            if rejected_at is not None and transfer.time <= rejected_at:
                continue

            if is_next:
                record.new_key = material
                logger.info("Received next alliance key from %s", leader)
            else:
                record.key = material
                logger.info("Received alliance key from %s", leader)
            self.save()
            if not is_next:
                self._notify()
            return True
        return False

    def request_key(self, tick: int) -> KeyRequestStatus:
        """Ask the leader for a key unless one is already on its way.

        Returns:
            KeyRequestStatus: What happened.
        """
        record = self.record
        if record is None:
            return KeyRequestStatus.DEFERRED
        if record.new_key:
            return KeyRequestStatus.WAITING
        if self.read_key_from_transfers(tick):
            return KeyRequestStatus.RECEIVED

        if not record.leader_room:
            logger.warning(
                "Leader room is unknown; set it with Alliance.set_leader_room(room)"
            )
            return KeyRequestStatus.NO_LEADER_ROOM

        config = self._config
        has_terminal = False
        for terminal in self._host.terminals():
            if not terminal.is_mine:
                continue
            has_terminal = True
            if (
                terminal.cooldown == 0
                and terminal.stored(config.key_transfer_resource) >= config.min_terminal_energy
                and terminal.send(
                    config.key_transfer_resource,
                    config.key_transfer_amount,
                    record.leader_room,
                )
            ):
                self.requested_at = tick
                logger.info(
                    "Requested alliance key from %s via %s",
                    record.leader_room, terminal.name,
                )
                return KeyRequestStatus.REQUESTED

        if not has_terminal:
            logger.warning("No valid terminal to request the alliance key")
            return KeyRequestStatus.NO_TERMINAL
        return KeyRequestStatus.DEFERRED

    def deliver_key(self, destination: str, key: str, next_key: bool = False) -> bool:
        """Leader side: send key material to a member's room.

        Args:
            destination: Member room that sent the request.
            key: 64-hex-digit key.
            next_key: Deliver as the next key instead of a direct key.

        Returns:
            True if a terminal accepted the transfer.

        Raises:
            ValueError: If ``key`` is not a valid key.
        """
        if not is_valid_key(key):
            raise ValueError("Key must be 64 hex digits")
        config = self._config
        description = key
        if next_key:
            description = config.new_key_prefix + key
        for terminal in self._host.terminals():
            if (
                terminal.is_mine
                and terminal.cooldown == 0
                and terminal.send(
                    config.key_transfer_resource,
                    config.key_transfer_amount,
                    destination,
                    description,
                )
            ):
                logger.info("Delivered alliance key to %s", destination)
                return True
        return False
