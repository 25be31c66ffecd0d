"""State commands: show."""

from __future__ import annotations

from pathlib import Path

import click
from rich.panel import Panel
from rich.table import Table

from ..storage import STATE_FILENAME, JsonStateStore
from ._common import console, home_option


def register_state_commands(main: click.Group) -> None:
    """Register the state command group."""

    @main.group()
    def state():
        """Inspect persisted sync state."""

    @state.command("show")
    @home_option
    def state_show(home):
        """Show timers, roster and cached ally data."""
        home_path = Path(home).expanduser()
        if not (home_path / STATE_FILENAME).exists():
            console.print("[yellow]No sync state yet.[/]")
            return

        snapshot = JsonStateStore(home_path).load()
        console.print(
            Panel(
                f"Next leader sync: [bold]{snapshot.next_leader_sync_tick}[/]\n"
                f"Next peer sync: [bold]{snapshot.next_peer_sync_tick}[/]\n"
                f"Round-robin cursor: {snapshot.peer_cursor}",
                title="Sync timers",
                border_style="cyan",
            )
        )

        table = Table(title="Roster")
        table.add_column("Ally", style="cyan")
        table.add_column("Rank")
        table.add_column("Cached fields")
        for name, rank in snapshot.roster.items():
            cached = snapshot.peer_data.get(name)
            fields = ", ".join(sorted(k for k, v in cached.items() if v)) if cached else "-"
            table.add_row(name, rank, fields)
        console.print(table)
