"""Config commands: show, init."""

from __future__ import annotations

from pathlib import Path

import click
from rich.table import Table

from ..config import CONFIG_FILENAME, SyncConfig, load_config, save_config
from ._common import console, home_option


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Inspect or create the sync configuration."""

    @config.command("show")
    @home_option
    def config_show(home):
        """Show the effective configuration."""
        cfg = load_config(Path(home))
        table = Table(title="allysync config", show_header=True)
        table.add_column("Option", style="cyan")
        table.add_column("Value")
        for name, value in cfg.model_dump(mode="json").items():
            table.add_row(name, str(value))
        table.add_row("[bold]effective leader[/]", str(cfg.leader_name))
        console.print(table)

    @config.command("init")
    @home_option
    @click.option("--leader", help="Leader player name.")
    @click.option("--shard", help="Shard this bot runs on.")
    @click.option("--force", is_flag=True, help="Overwrite an existing config.")
    def config_init(home, leader, shard, force):
        """Write a default config file."""
        home_path = Path(home).expanduser()
        if (home_path / CONFIG_FILENAME).exists() and not force:
            console.print("[yellow]Config already exists.[/] Use --force to overwrite.")
            return
        path = save_config(home_path, SyncConfig(leader=leader, shard=shard))
        console.print(f"[green]Wrote[/] {path}")
