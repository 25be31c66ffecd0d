"""
allysync CLI: operator tools for alliance sync.

Key material, manual encrypt/decrypt of segment text, config and
persisted state inspection. The sync itself runs inside the bot.

Entry point: allysync.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="allysync")
def main():
    """allysync: encrypted alliance data sync."""


from .key_cmd import register_key_commands
from .config_cmd import register_config_commands
from .state_cmd import register_state_commands

register_key_commands(main)
register_config_commands(main)
register_state_commands(main)
