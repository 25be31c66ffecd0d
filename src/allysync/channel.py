"""
Segment channel -- one-slot, two-phase access to foreign segments.

The host lets a player watch exactly one foreign segment at a time, and a
subscription only settles on a later tick. The channel owns that slot:

    subscribe(owner, id)   -> declares interest, returns nothing
    poll()                 -> Pending | Empty | Malformed | Value

Retargeting drops whatever was in flight for the old target. Own segments
are written synchronously and never report failure.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from .crypt import KeyLike, decrypt, encrypt
from .host import Host
from .outcomes import (
    DECRYPTION_FAILED,
    EMPTY,
    PENDING,
    Malformed,
    SegmentOutcome,
    Value,
)

logger = logging.getLogger("allysync.channel")


@dataclass(frozen=True)
class SegmentRequest:
    """The single active foreign subscription."""

    owner: str
    segment_id: int


def dump_json(data: Any) -> str:
    """Compact JSON, the form written into segments."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


class SegmentChannel:
    """Foreign reads and own writes over a :class:`Host`.

    Args:
        host: The host engine.
        public_segments: Own segments that are always declared public.
    """

    def __init__(self, host: Host, public_segments: Iterable[int] = ()) -> None:
        self._host = host
        self._public = list(public_segments)
        self.request: Optional[SegmentRequest] = None

    def subscribe(self, owner: str, segment_id: int) -> None:
        """Make (owner, segment_id) the active subscription."""
        target = SegmentRequest(owner, segment_id)
        if self.request == target:
            return
        self.request = target
        self._host.set_active_foreign_segment(owner, segment_id)

    def poll(self, raw: bool = False) -> SegmentOutcome:
        """Read the active subscription.

        Args:
            raw: Return the text as is instead of parsing JSON.

        Returns:
            SegmentOutcome: Pending until the host result for the active
            target has settled. Any other outcome consumes the request.
        """
        request = self.request
        if request is None:
            return PENDING
        result = self._host.foreign_segment()
        if (
            result is None
            or result.owner != request.owner
            or result.segment_id != request.segment_id
        ):
            return PENDING

        self.request = None
        if not result.data:
            return EMPTY
        if raw:
            return Value(result.data)
        try:
            return Value(json.loads(result.data))
        except json.JSONDecodeError as exc:
            logger.warning(
                "Failed to parse segment owner='%s' segment=%d: %s",
                request.owner, request.segment_id, exc,
            )
            return Malformed(str(exc))

    def read(self, owner: str, segment_id: int, raw: bool = False) -> SegmentOutcome:
        """Poll (owner, segment_id), subscribing first if it is not active."""
        if self.request != SegmentRequest(owner, segment_id):
            self.subscribe(owner, segment_id)
            return PENDING
        return self.poll(raw=raw)

    def read_encrypted(
        self, owner: str, segment_id: int, key: KeyLike
    ) -> SegmentOutcome:
        """Read and decrypt a segment written by :meth:`write_encrypted`.

        A signature mismatch, or plaintext that is not a JSON object,
        is reported as DecryptionFailed. JSON errors are Malformed.
        """
        outcome = self.read(owner, segment_id, raw=True)
        if not isinstance(outcome, Value):
            return outcome

        text = decrypt(outcome.payload, key)
        if text is None or not text.startswith("{"):
            return DECRYPTION_FAILED
        try:
            return Value(json.loads(text))
        except json.JSONDecodeError as exc:
            logger.warning(
                "Failed to parse decrypted segment owner='%s' segment=%d: %s",
                owner, segment_id, exc,
            )
            return Malformed(str(exc))

    def write_own(self, segment_id: int, data: Any) -> None:
        """Write an own segment; non-string data is stored as JSON."""
        self._host.write_local(
            segment_id, data if isinstance(data, str) else dump_json(data)
        )

    def write_encrypted(
        self, segment_id: int, payload: Optional[dict[str, Any]], key: KeyLike
    ) -> None:
        """Encrypt a payload into an own segment; None writes the empty marker."""
        text = "" if payload is None else encrypt(dump_json(payload), key)
        self._host.write_local(segment_id, text)

    def declare_public(self, extra: Iterable[int] = ()) -> list[int]:
        """Declare the always-public segments plus ``extra`` as public."""
        segments = list(self._public)
        for segment_id in extra:
            if segment_id not in segments:
                segments.append(segment_id)
        self._host.set_public_segments(segments)
        return segments
