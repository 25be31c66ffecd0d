"""
Sync orchestrator -- the per-tick state machine.

Every tick, in order:

    1. leader step (every ``sync_interval`` ticks)
         load key record -> apply expiry -> request key if needed
         -> read the leader's roster segment -> reconcile key metadata
    2. peer round robin (every ``interval`` ticks, only if step 1 was not
       pending): read one eligible peer's data segment, cache it, move on

Both steps share the channel's single foreign subscription, so each
retarget costs a settle tick for whichever target it displaced.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from .channel import SegmentChannel
from .config import SyncConfig
from .host import Host
from .keys import KeyManager
from .models import LeaderStatus, SyncSnapshot, TickReport
from .outcomes import DecryptionFailed, Empty, Malformed, Pending, Value
from .permissions import apply_permissions
from .storage import MemoryStateStore, StateStore

logger = logging.getLogger("allysync.orchestrator")


def is_empty_record(data: Optional[Mapping[str, Any]]) -> bool:
    """True when no field of the record carries a truthy value."""
    return not data or not any(data.values())


def _as_tick(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value or None


class SyncOrchestrator:
    """Drives leader roster sync and peer data polling.

    Args:
        host: The host engine.
        config: Sync configuration.
        username: The local player's name (never polled).
        store: Snapshot persistence. Defaults to in-memory.
        on_key_changed: Called when a new active key takes effect.
    """

    def __init__(
        self,
        host: Host,
        config: SyncConfig,
        username: Optional[str],
        store: Optional[StateStore] = None,
        on_key_changed: Optional[Callable[[], None]] = None,
    ) -> None:
        self.host = host
        self.config = config
        self.username = username
        self.store = store or MemoryStateStore()
        self.keys = KeyManager(host, config, on_key_changed=on_key_changed)
        self.channel = SegmentChannel(host, public_segments=[config.data_segment_id])
        self.channel.declare_public()

    @property
    def enabled(self) -> bool:
        return self.config.is_active

    @property
    def leader(self) -> Optional[str]:
        return self.config.leader_name

    @property
    def snapshot(self) -> SyncSnapshot:
        return self.store.load()

    # -------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------

    def run_tick(self) -> TickReport:
        """Run one tick of synchronization.

        Returns:
            TickReport: What the leader step and the round robin did.
        """
        tick = self.host.time
        if not self.enabled:
            return TickReport(tick=tick, leader=LeaderStatus.DISABLED)

        state = self.store.load()
        report = TickReport(tick=tick, leader=LeaderStatus.IDLE)
        report.leader = self._sync_leader(state, tick, report)
        if not report.leader.is_pending:
            self._sync_peer(state, tick, report)
        self.store.save(state)
        return report

    def _sync_leader(
        self, state: SyncSnapshot, tick: int, report: TickReport
    ) -> LeaderStatus:
        if tick < state.next_leader_sync_tick:
            return LeaderStatus.IDLE
        status = self._poll_leader(state, tick, report)
        if not status.is_pending:
            state.next_leader_sync_tick = tick + self.config.sync_interval
        return status

    def _poll_leader(
        self, state: SyncSnapshot, tick: int, report: TickReport
    ) -> LeaderStatus:
        keys = self.keys
        if not keys.load():
            return LeaderStatus.PENDING
        if keys.apply_expiry(tick):
            return LeaderStatus.PENDING
        if keys.needs_key(tick):
            request = keys.request_key(tick)
            if request.is_pending:
                return LeaderStatus.PENDING
            return LeaderStatus.KEY_REQUESTED

        key, is_new_key = keys.leader_key()
        outcome = self.channel.read_encrypted(
            self.leader, self.config.segment_id, key
        )
        if isinstance(outcome, Pending):
            return LeaderStatus.PENDING
        if isinstance(outcome, Malformed):
            return LeaderStatus.SKIPPED
        if isinstance(outcome, DecryptionFailed):
            if is_new_key:
                logger.info("Leader roster not readable with the next key yet")
                return LeaderStatus.SKIPPED
            logger.warning("Leader roster failed to decrypt, dropping stale key")
            keys.clear_key()
            return LeaderStatus.PENDING
        if isinstance(outcome, Empty):
            return LeaderStatus.SYNCED

        payload = outcome.payload
        if is_new_key:
            keys.promote_new_key()

        expire = _as_tick(payload.get("keyExpireTime"))
        room = payload.get("room") or None
        if expire or room:
            keys.set_rotation(expire, room or keys.record.leader_room)

        allies = payload.get("allies")
        if isinstance(allies, dict):
            self._update_roster(state, allies)
            report.roster_changed = True
        return LeaderStatus.SYNCED

    def _update_roster(self, state: SyncSnapshot, allies: Mapping[str, Any]) -> None:
        state.roster = {str(name): str(rank) for name, rank in allies.items()}
        state.peer_cursor = 0
        removed = state.prune_peer_data()
        if removed:
            logger.info("Dropped data of peers without publish rights: %s", removed)
        logger.info(
            "Roster updated: %d allies, %d polled",
            len(state.roster), len(state.eligible_peers(self.username)),
        )

    def _sync_peer(
        self, state: SyncSnapshot, tick: int, report: TickReport
    ) -> None:
        if tick < state.next_peer_sync_tick:
            return
        key = self.keys.key
        if not key:
            return
        peers = state.eligible_peers(self.username)
        if not peers:
            return
        if state.peer_cursor >= len(peers):
            state.peer_cursor = 0

        peer = peers[state.peer_cursor]
        outcome = self.channel.read_encrypted(peer, self.config.data_segment_id, key)
        report.peer = peer
        report.peer_outcome = outcome
        if isinstance(outcome, Pending):
            return

        no_data = isinstance(outcome, Empty) or (
            isinstance(outcome, Value) and not outcome.payload
        )
        if isinstance(outcome, DecryptionFailed):
            logger.warning(
                "Peer segment decryption failed player='%s' segment=%d",
                peer, self.config.data_segment_id,
            )
        elif no_data:
            state.peer_data.pop(peer, None)
        elif isinstance(outcome, Value):
            state.peer_data[peer] = apply_permissions(
                outcome.payload, state.roster.get(peer)
            )

        state.peer_cursor = (state.peer_cursor + 1) % len(peers)
        if not no_data or state.peer_cursor == 0:
            state.next_peer_sync_tick = tick + self.config.interval

    # -------------------------------------------------------------------
    # Own segments
    # -------------------------------------------------------------------

    def declare_public(self, extra: Iterable[int] = ()) -> list[int]:
        """Declare the data segment plus ``extra`` as public."""
        return self.channel.declare_public(extra)

    def declare_active(self, segment_ids: Iterable[int]) -> list[int]:
        """Request own segments; the key segment is added until it loads."""
        segments = list(segment_ids)
        key_segment = self.config.key_segment_id
        if not self.keys.loaded and key_segment not in segments:
            segments.append(key_segment)
        self.host.set_active_segments(segments)
        return segments

    def publish_data(self, data: Optional[Mapping[str, Any]]) -> bool:
        """Encrypt the own record into the data segment.

        A record without populated fields is written as the empty marker.

        Returns:
            False if there is no active key to encrypt with.
        """
        key = self.keys.key
        if not key:
            return False
        payload = None if is_empty_record(data) else dict(data)
        self.channel.write_encrypted(self.config.data_segment_id, payload, key)
        return True

    def publish_roster(
        self,
        allies: Mapping[str, str],
        key_expire_time: Optional[int] = None,
        room: Optional[str] = None,
    ) -> bool:
        """Leader side: encrypt the roster into the roster segment.

        Returns:
            False if there is no active key to encrypt with.
        """
        key = self.keys.key
        if not key:
            return False
        payload: dict[str, Any] = {"allies": dict(allies)}
        if key_expire_time:
            payload["keyExpireTime"] = key_expire_time
        if room:
            payload["room"] = room
        self.channel.write_encrypted(self.config.segment_id, payload, key)
        return True

    def set_leader_room(self, room: str) -> bool:
        """Set the leader room key requests go to.

        Returns:
            False if the key record is not loaded yet.
        """
        if not self.keys.load():
            return False
        self.keys.set_leader_room(room)
        return True
