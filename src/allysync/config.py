"""
Sync configuration -- every recognized option with its default.

Stored as YAML at ``<home>/config.yaml``. A missing or unreadable file
falls back to defaults.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger("allysync.config")

CONFIG_FILENAME = "config.yaml"


class SyncConfig(BaseModel):
    """Complete configuration of one alliance member."""

    enabled: bool = True

    # Leader whose roster segment is authoritative. ``leaders_by_shard``
    # wins when ``shard`` has an entry there.
    leader: Optional[str] = None
    leaders_by_shard: dict[str, Optional[str]] = Field(default_factory=dict)
    shard: Optional[str] = None

    # Intervals in ticks
    interval: int = Field(default=20, ge=1, description="Peer data round-robin interval")
    sync_interval: int = Field(default=100, ge=1, description="Leader roster poll interval")

    # Segment ids
    key_segment_id: int = Field(default=65, description="Private key storage")
    segment_id: int = Field(default=66, description="Leader roster (public)")
    data_segment_id: int = Field(default=67, description="Own member data (public)")

    # Key rotation and delivery
    rotation_lookahead: int = 1000
    transfer_scan_limit: int = 30
    transfer_window: int = 1000
    key_transfer_resource: str = "energy"
    key_transfer_amount: int = 3
    min_terminal_energy: int = 10
    # Next-key transfers are recognized by length only (prefix + 64 hex).
    new_key_prefix: str = "nk"

    @property
    def leader_name(self) -> Optional[str]:
        """The effective leader for the configured shard."""
        if self.shard is not None and self.shard in self.leaders_by_shard:
            return self.leaders_by_shard[self.shard]
        return self.leader

    @property
    def is_active(self) -> bool:
        """Sync runs only when enabled and a leader is known."""
        return self.enabled and bool(self.leader_name)


def load_config(home: Path) -> SyncConfig:
    """Load configuration from ``<home>/config.yaml``.

    Args:
        home: Directory holding the config file.

    Returns:
        SyncConfig: Parsed config, or defaults if absent or invalid.
    """
    config_file = Path(home).expanduser() / CONFIG_FILENAME
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return SyncConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load sync config: %s", exc)
    return SyncConfig()


def save_config(home: Path, config: SyncConfig) -> Path:
    """Write configuration to ``<home>/config.yaml``.

    Returns:
        Path: The file written.
    """
    home = Path(home).expanduser()
    home.mkdir(parents=True, exist_ok=True)
    config_file = home / CONFIG_FILENAME
    data = config.model_dump(mode="json")
    config_file.write_text(
        yaml.dump(data, default_flow_style=False), encoding="utf-8"
    )
    return config_file
