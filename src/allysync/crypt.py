"""
Segment cipher: XXTEA-style block cipher plus text packing and signing.

Payloads are packed two UTF-16 code units per 32-bit word, prefixed with a
4-word signature tag taken from the key, encrypted, and finally re-encoded
as "safe" text that survives transports which only accept well-formed,
printable strings.

Key layout (64 hex digits, eight words):
    words 0-3   cipher key
    words 4-7   signature tag

This is obfuscation with an integrity tag for short-lived shared keys.
It is not an AEAD and should not guard anything valuable.

Usage:
    key = generate_key()
    blob = encrypt('{"resource":[]}', key)
    decrypt(blob, key)          # '{"resource":[]}'
    decrypt(blob, other_key)    # None
"""

from __future__ import annotations

import secrets
import string
import struct
from dataclasses import dataclass
from typing import Optional, Sequence, Union

DELTA = 0x9E3779B9
MASK = 0xFFFFFFFF

KEY_HEX_LENGTH = 64
SIGNATURE_WORDS = 4

# Safe-text shifts for code units that do not survive the transport.
CONTROL_LIMIT = 0x20
CONTROL_SHIFT = 0x10800
SURROGATE_LOW = 0xD800
SURROGATE_HIGH = 0xDFFF
SURROGATE_SHIFT = 0x10000 - 0xD800


@dataclass(frozen=True)
class CipherKey:
    """A parsed shared key.

    Attributes:
        words: All eight 32-bit words of the key.
    """

    words: tuple[int, ...]

    @classmethod
    def from_hex(cls, value: str) -> "CipherKey":
        """Parse a 64-hex-digit key string.

        Args:
            value: Key as hex text.

        Returns:
            CipherKey: The parsed key.

        Raises:
            ValueError: If the string is not exactly 64 hex digits.
        """
        if len(value) != KEY_HEX_LENGTH:
            raise ValueError(
                f"Key must be {KEY_HEX_LENGTH} hex digits, got {len(value)}"
            )
        # int(..., 16) alone would also take signs, "0x" and underscores
        if not all(c in string.hexdigits for c in value):
            raise ValueError("Key is not hexadecimal")
        return cls(tuple(int(value[i:i + 8], 16) for i in range(0, KEY_HEX_LENGTH, 8)))

    @property
    def cipher_words(self) -> tuple[int, ...]:
        """The four words that drive the cipher."""
        return self.words[:4]

    @property
    def signature(self) -> tuple[int, ...]:
        """The four words embedded as the signature tag."""
        return self.words[4:8]

    def hex(self) -> str:
        return "".join(f"{w:08x}" for w in self.words)


KeyLike = Union[CipherKey, str]


def _as_key(key: KeyLike) -> CipherKey:
    return key if isinstance(key, CipherKey) else CipherKey.from_hex(key)


def is_valid_key(value: str) -> bool:
    """Check whether a string parses as a key."""
    try:
        CipherKey.from_hex(value)
    except ValueError:
        return False
    return True


def generate_key() -> str:
    """Generate a fresh random key as 64 hex digits."""
    return secrets.token_hex(KEY_HEX_LENGTH // 2)


# ---------------------------------------------------------------------------
# Block cipher
# ---------------------------------------------------------------------------

def rounds_for(length: int) -> int:
    """Number of mixing rounds for a message of ``length`` words."""
    return 16 + 52 // length


def _mx(total: int, y: int, z: int, p: int, e: int, k: Sequence[int]) -> int:
    a = ((z >> 5) ^ (y << 2)) + ((y >> 3) ^ (z << 4))
    b = (total ^ y) + (k[(p & 3) ^ e] ^ z)
    return (a ^ b) & MASK


def encrypt_words(words: Sequence[int], key: KeyLike) -> list[int]:
    """Encrypt a word message.

    Args:
        words: Unsigned 32-bit words, at least one.
        key: Shared key.

    Returns:
        list[int]: The ciphertext words. The input is left untouched.

    Raises:
        ValueError: If the message is empty.
    """
    if not words:
        raise ValueError("Cannot encrypt an empty word message")
    k = _as_key(key).cipher_words
    v = [w & MASK for w in words]
    last = len(v) - 1
    z = v[last]
    total = 0
    for _ in range(rounds_for(len(v))):
        total = (total + DELTA) & MASK
        e = (total >> 2) & 3
        for p in range(last):
            y = v[p + 1]
            z = v[p] = (v[p] + _mx(total, y, z, p, e, k)) & MASK
        y = v[0]
        z = v[last] = (v[last] + _mx(total, y, z, last, e, k)) & MASK
    return v


def decrypt_words(words: Sequence[int], key: KeyLike) -> list[int]:
    """Decrypt a word message produced by :func:`encrypt_words`.

    A wrong key yields unrelated words rather than an error; only the
    signature check can tell.

    Raises:
        ValueError: If the message is empty.
    """
    if not words:
        raise ValueError("Cannot decrypt an empty word message")
    k = _as_key(key).cipher_words
    v = [w & MASK for w in words]
    last = len(v) - 1
    rounds = rounds_for(len(v))
    total = (rounds * DELTA) & MASK
    y = v[0]
    for _ in range(rounds):
        e = (total >> 2) & 3
        for p in range(last, 0, -1):
            z = v[p - 1]
            y = v[p] = (v[p] - _mx(total, y, z, p, e, k)) & MASK
        z = v[last]
        y = v[0] = (v[0] - _mx(total, y, z, 0, e, k)) & MASK
        total = (total - DELTA) & MASK
    return v


# ---------------------------------------------------------------------------
# Text packing
# ---------------------------------------------------------------------------

def _code_units(text: str) -> tuple[int, ...]:
    data = text.encode("utf-16-be", "surrogatepass")
    return struct.unpack(f">{len(data) // 2}H", data)


def _from_code_units(units: Sequence[int]) -> str:
    data = struct.pack(f">{len(units)}H", *units)
    return data.decode("utf-16-be", "surrogatepass")


def text_to_words(text: str) -> list[int]:
    """Pack a string two UTF-16 code units per word.

    Odd-length input is padded with a single space, which
    :func:`words_to_text` strips again.
    """
    units = list(_code_units(text))
    if len(units) % 2:
        units.append(ord(" "))
    return [
        (units[i] << 16) | units[i + 1] for i in range(0, len(units), 2)
    ]


def words_to_text(words: Sequence[int]) -> str:
    """Unpack words produced by :func:`text_to_words`."""
    if not words:
        return ""
    units = []
    for word in words:
        units.append((word >> 16) & 0xFFFF)
        units.append(word & 0xFFFF)
    if units[-1] == ord(" "):
        units.pop()
    return _from_code_units(units)


def _safe_unit(unit: int) -> str:
    if unit < CONTROL_LIMIT:
        return chr(unit + CONTROL_SHIFT)
    if SURROGATE_LOW <= unit <= SURROGATE_HIGH:
        return chr(unit + SURROGATE_SHIFT)
    return chr(unit)


def _unsafe_unit(char: str) -> int:
    point = ord(char)
    if point >= CONTROL_SHIFT:
        return point - CONTROL_SHIFT
    if point >= 0x10000:
        return point - SURROGATE_SHIFT
    return point


def words_to_safe_text(words: Sequence[int]) -> str:
    """Encode words as text with no control or surrogate code points."""
    return "".join(
        _safe_unit((w >> 16) & 0xFFFF) + _safe_unit(w & 0xFFFF) for w in words
    )


def safe_text_to_words(text: str) -> list[int]:
    """Decode text produced by :func:`words_to_safe_text`."""
    units = [_unsafe_unit(c) for c in text]
    if len(units) % 2:
        units.append(0)
    return [
        (units[i] << 16) | units[i + 1] for i in range(0, len(units), 2)
    ]


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------

def sign(words: Sequence[int], key: KeyLike) -> list[int]:
    """Prefix a message with the key's signature tag."""
    return list(_as_key(key).signature) + list(words)


def check_signature(words: Sequence[int], key: KeyLike) -> Optional[list[int]]:
    """Strip and verify the signature tag.

    Returns:
        The payload words, or None when the tag does not match.
    """
    if len(words) < SIGNATURE_WORDS:
        return None
    if tuple(words[:SIGNATURE_WORDS]) != _as_key(key).signature:
        return None
    return list(words[SIGNATURE_WORDS:])


def encrypt(text: str, key: KeyLike) -> str:
    """Sign, encrypt and safe-encode a string."""
    k = _as_key(key)
    return words_to_safe_text(encrypt_words(sign(text_to_words(text), k), k))


def decrypt(text: str, key: KeyLike) -> Optional[str]:
    """Reverse :func:`encrypt`.

    Returns:
        The plaintext, or None when the signature does not match (wrong
        key or corrupted ciphertext).
    """
    k = _as_key(key)
    words = safe_text_to_words(text)
    if len(words) < SIGNATURE_WORDS:
        return None
    payload = check_signature(decrypt_words(words, k), k)
    if payload is None:
        return None
    return words_to_text(payload)
