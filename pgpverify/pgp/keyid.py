"""
pgpverify Key Identity

Hex codec for key fingerprints and the KeyId value used to address keys
on key servers and in the on-disk key cache.

A KeyId is either a full fingerprint or a bare 64-bit key id. Both forms
compare equal when the numeric id matches the low 64 bits of the
fingerprint.
"""
from __future__ import annotations

import re
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from pgpverify.pgp.packets import KeyRing, PublicKey

_WHITESPACE = re.compile(r"\s+")
_HEX_DIGITS = re.compile(r"^[0-9a-fA-F]*$")

_UINT64_MASK = 0xFFFFFFFFFFFFFFFF


def fingerprint_to_hex(fingerprint: bytes) -> str:
    """Render fingerprint bytes as canonical ``0x``-prefixed upper-case hex."""
    return "0x" + fingerprint.hex().upper()


def hex_to_fingerprint(text: str) -> bytes:
    """Parse ``0x``-prefixed hex (whitespace allowed) into fingerprint bytes.

    Raises:
        ValueError: If the prefix is missing, the digit count is odd or a
            non-hex character is present.
    """
    if not text or not text[:2].lower() == "0x":
        raise ValueError(f"Malformed keyID hex string {text}")

    digits = _WHITESPACE.sub("", text[2:])
    if len(digits) % 2 != 0 or not _HEX_DIGITS.match(digits):
        raise ValueError(f"Malformed keyID hex string {text}")

    return bytes.fromhex(digits)


def to_signed64(value: int) -> int:
    """Interpret the low 64 bits of ``value`` as a signed 64-bit integer."""
    value &= _UINT64_MASK
    return value - (1 << 64) if value & (1 << 63) else value


def low64(fingerprint: bytes) -> int:
    """Signed 64-bit key id taken from the last eight fingerprint bytes."""
    return int.from_bytes(fingerprint[-8:], "big", signed=True)


class KeyId:
    """Immutable identity of a PGP key: a fingerprint or a 64-bit id."""

    __slots__ = ("_fingerprint", "_id")

    def __init__(self, fingerprint: Optional[bytes] = None, key_id: Optional[int] = None):
        if fingerprint is None and key_id is None:
            raise ValueError("KeyId requires a fingerprint or a key id")
        if fingerprint is not None:
            if len(fingerprint) < 8:
                raise ValueError(
                    f"Fingerprint {fingerprint.hex()} is shorter than 64 bits"
                )
            self._fingerprint = bytes(fingerprint)
            self._id = low64(fingerprint)
        else:
            self._fingerprint = None
            self._id = to_signed64(key_id)

    @classmethod
    def from_fingerprint(cls, fingerprint: bytes) -> "KeyId":
        return cls(fingerprint=fingerprint)

    @classmethod
    def from_long(cls, key_id: int) -> "KeyId":
        return cls(key_id=key_id)

    @classmethod
    def parse(cls, text: str) -> "KeyId":
        """Parse CLI/config input: 16 hex digits is a key id, longer is a fingerprint."""
        raw = hex_to_fingerprint(text if text[:2].lower() == "0x" else "0x" + text)
        if len(raw) == 8:
            return cls.from_long(int.from_bytes(raw, "big"))
        return cls.from_fingerprint(raw)

    @property
    def id(self) -> int:
        """Signed 64-bit numeric key id."""
        return self._id

    @property
    def fingerprint(self) -> Optional[bytes]:
        return self._fingerprint

    @property
    def is_fingerprint(self) -> bool:
        return self._fingerprint is not None

    def to_bytes(self) -> bytes:
        """Fingerprint bytes, or the eight big-endian bytes of the key id."""
        if self._fingerprint is not None:
            return self._fingerprint
        return (self._id & _UINT64_MASK).to_bytes(8, "big")

    @property
    def hash_path(self) -> str:
        """Two-level shard path: ``XX/YY/<HEX>.asc`` from the first two bytes."""
        raw = self.to_bytes()
        return f"{raw[0]:02X}/{raw[1]:02X}/{raw.hex().upper()}.asc"

    def key_from_ring(self, key_ring: "KeyRing") -> Optional["PublicKey"]:
        if self._fingerprint is not None:
            return key_ring.get_key(self._fingerprint)
        return key_ring.get_key_by_id(self._id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyId):
            return NotImplemented
        if self._fingerprint is not None and other._fingerprint is not None:
            return self._fingerprint == other._fingerprint
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __str__(self) -> str:
        if self._fingerprint is not None:
            return fingerprint_to_hex(self._fingerprint)
        return f"0x{self._id & _UINT64_MASK:016X}"

    def __repr__(self) -> str:
        return f"KeyId({self})"
