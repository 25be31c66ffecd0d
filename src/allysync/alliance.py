"""
Alliance -- the context a bot holds between ticks.

Wraps the orchestrator with the member-facing API: queue requests into the
own data record, publish it, and query what allies published.

Usage:
    alliance = Alliance(host, config, username="Me", store=JsonStateStore(home))
    alliance.request_resource(priority=0.5, room_name="W1N1",
                              resource_type="energy", amount=5000)
    alliance.sync()                          # once per tick
    alliance.get_allies_requests("defense")
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional, Union

from .config import SyncConfig
from .host import Host
from .models import TickReport
from .orchestrator import SyncOrchestrator
from .payloads import RequestKind, build_payload
from .storage import StateStore

logger = logging.getLogger("allysync.alliance")


class Alliance:
    """Member-side alliance facade.

    Args:
        host: The host engine.
        config: Sync configuration.
        username: The local player's name.
        store: Snapshot persistence. Defaults to in-memory.
        local_allies: Allies known locally, outside the synced roster.
    """

    def __init__(
        self,
        host: Host,
        config: Optional[SyncConfig] = None,
        username: Optional[str] = None,
        store: Optional[StateStore] = None,
        local_allies: Optional[Iterable[str]] = None,
    ) -> None:
        self.config = config or SyncConfig()
        self.sync_engine = SyncOrchestrator(
            host,
            self.config,
            username,
            store=store,
            on_key_changed=self.save_my_data,
        )
        self.local_allies: set[str] = set(local_allies or ())

    @property
    def username(self) -> Optional[str]:
        return self.sync_engine.username

    @property
    def my_data(self) -> dict[str, Any]:
        return self.sync_engine.snapshot.my_data

    def sync(self) -> TickReport:
        """Run one tick of alliance synchronization."""
        return self.sync_engine.run_tick()

    # -------------------------------------------------------------------
    # Own data
    # -------------------------------------------------------------------

    def save_my_data(self) -> bool:
        """Publish the own record under the current key."""
        store = self.sync_engine.store
        store.save(store.load())
        return self.sync_engine.publish_data(self.my_data)

    def set_my_data(self, data: dict[str, Any]) -> bool:
        """Replace the own record and publish it."""
        self.sync_engine.snapshot.my_data = dict(data)
        return self.save_my_data()

    def add_request(
        self,
        kind: Union[RequestKind, str],
        request: Optional[Any] = None,
        **fields: Any,
    ) -> dict[str, Any]:
        """Validate and queue a request, then publish.

        ``econ`` replaces the single econ record instead of appending.

        Returns:
            The request as written on the wire.
        """
        kind = RequestKind(kind)
        payload = build_payload(kind, request, **fields)
        if kind is RequestKind.ECON:
            self.my_data[kind.value] = payload
        else:
            self.my_data.setdefault(kind.value, []).append(payload)
        self.save_my_data()
        return payload

    def request_resource(self, request: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        return self.add_request(RequestKind.RESOURCE, request, **fields)

    def request_defense(self, request: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        return self.add_request(RequestKind.DEFENSE, request, **fields)

    def request_attack(self, request: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        return self.add_request(RequestKind.ATTACK, request, **fields)

    def share_player(self, request: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        return self.add_request(RequestKind.PLAYER, request, **fields)

    def request_work(self, request: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        return self.add_request(RequestKind.WORK, request, **fields)

    def request_funnel(self, request: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        return self.add_request(RequestKind.FUNNEL, request, **fields)

    def share_econ(self, request: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        return self.add_request(RequestKind.ECON, request, **fields)

    def share_room(self, request: Optional[Any] = None, **fields: Any) -> dict[str, Any]:
        return self.add_request(RequestKind.ROOM, request, **fields)

    # -------------------------------------------------------------------
    # Allies
    # -------------------------------------------------------------------

    @property
    def allies(self) -> list[str]:
        """Synced roster names followed by local allies."""
        roster = list(self.sync_engine.snapshot.roster)
        return roster + sorted(a for a in self.local_allies if a not in roster)

    def set_local_allies(self, names: Iterable[str]) -> None:
        self.local_allies = set(names)

    def is_ally(self, name: str) -> bool:
        return name in self.sync_engine.snapshot.roster or name in self.local_allies

    def get_ally_status(self, name: str) -> Optional[str]:
        """Rank of ``name`` in the synced roster."""
        return self.sync_engine.snapshot.roster.get(name)

    def get_ally_data(self, name: str) -> dict[str, Any]:
        return self.sync_engine.snapshot.peer_data.get(name) or {}

    def get_allies_requests(self, kind: Union[RequestKind, str]) -> list[Any]:
        """All requests of ``kind`` across allies.

        Raises:
            ValueError: For ``econ``, which is per ally; use
                :meth:`get_ally_requests`.
        """
        kind = RequestKind(kind)
        if kind is RequestKind.ECON:
            raise ValueError("econ is per ally, use get_ally_requests(name, 'econ')")
        requests: list[Any] = []
        for data in self.sync_engine.snapshot.peer_data.values():
            requests.extend(data.get(kind.value) or [])
        return requests

    def get_ally_requests(self, name: str, kind: Union[RequestKind, str]) -> Any:
        """Requests of ``kind`` from one ally (the econ record for ``econ``)."""
        kind = RequestKind(kind)
        data = self.get_ally_data(name)
        if kind is RequestKind.ECON:
            return data.get(kind.value)
        return data.get(kind.value) or []

    # -------------------------------------------------------------------
    # Segments and keys
    # -------------------------------------------------------------------

    def set_leader_room(self, room: str) -> bool:
        """Set the leader room key requests go to."""
        done = self.sync_engine.set_leader_room(room)
        if not done:
            logger.warning("Key record not loaded yet, retry next tick")
        return done

    def set_public_segments(self, segment_ids: Iterable[int] = ()) -> list[int]:
        if not self.config.enabled:
            segments = list(segment_ids)
            self.sync_engine.host.set_public_segments(segments)
            return segments
        return self.sync_engine.declare_public(segment_ids)

    def set_active_segments(self, segment_ids: Iterable[int]) -> list[int]:
        if not self.config.enabled:
            segments = list(segment_ids)
            self.sync_engine.host.set_active_segments(segments)
            return segments
        return self.sync_engine.declare_active(segment_ids)
