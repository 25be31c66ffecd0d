"""Shared pieces for the CLI command modules."""

from __future__ import annotations

import sys
from typing import Optional

import click
from rich.console import Console

from .. import ALLYSYNC_HOME

console = Console()

home_option = click.option(
    "--home", default=ALLYSYNC_HOME, type=click.Path(), help="allysync home directory."
)


def read_text_argument(text: Optional[str]) -> str:
    """Use TEXT if given, otherwise read stdin (trailing newline dropped)."""
    if text is not None and text != "-":
        return text
    return sys.stdin.read().rstrip("\n")
