"""
Snapshot storage -- where sync state lives between ticks.

The orchestrator loads the snapshot at the start of a tick and saves it
at the end. Two stores ship: in-memory (scheduler keeps the process alive)
and a JSON file (``<home>/state.json``).
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .models import SyncSnapshot

logger = logging.getLogger("allysync.storage")

STATE_FILENAME = "state.json"


class StateStore(ABC):
    """Persistence for :class:`SyncSnapshot`."""

    @abstractmethod
    def load(self) -> SyncSnapshot:
        """Return the current snapshot (a fresh one if nothing is stored)."""

    @abstractmethod
    def save(self, snapshot: SyncSnapshot) -> None:
        """Persist the snapshot."""


class MemoryStateStore(StateStore):
    """Keeps the snapshot in process memory."""

    def __init__(self, snapshot: Optional[SyncSnapshot] = None) -> None:
        self._snapshot = snapshot or SyncSnapshot()

    def load(self) -> SyncSnapshot:
        return self._snapshot

    def save(self, snapshot: SyncSnapshot) -> None:
        self._snapshot = snapshot


class JsonStateStore(StateStore):
    """Keeps the snapshot in a JSON file.

    The file is read once and cached; every save rewrites it.

    Args:
        home: Directory holding ``state.json``.
    """

    def __init__(self, home: Path) -> None:
        self.path = Path(home).expanduser() / STATE_FILENAME
        self._snapshot: Optional[SyncSnapshot] = None

    def load(self) -> SyncSnapshot:
        if self._snapshot is None:
            self._snapshot = self._read()
        return self._snapshot

    def _read(self) -> SyncSnapshot:
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                return SyncSnapshot(**data)
            except (json.JSONDecodeError, ValueError, TypeError) as exc:
                logger.warning("Failed to load sync state: %s", exc)
        return SyncSnapshot()

    def save(self, snapshot: SyncSnapshot) -> None:
        self._snapshot = snapshot
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
