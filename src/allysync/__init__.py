"""
allysync: encrypted alliance data sync over latency-laden public segments.

Peers publish small encrypted payloads into public segments, a leader
publishes the roster, and a shared key rotates through tagged transfers.
Everything runs once per tick; nothing blocks.
"""

import os

__version__ = "0.1.0"

ALLYSYNC_HOME = os.environ.get("ALLYSYNC_HOME", "~/.allysync")
