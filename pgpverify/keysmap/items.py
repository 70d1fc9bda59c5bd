"""
pgpverify Key Items

The right-hand side of a keys map rule: a comma separated list of key
items. Each item is one of:

- ``0x<hex>``   a key fingerprint (8 to 20 bytes); a 64-bit id matches
                  the tail of a longer fingerprint
- ``!0x<hex>``  a fingerprint trusted even when the public key cannot be
                  obtained because the key was revoked
- ``any`` / ``*``  any key
- ``noSig``     the artifact may be unsigned
- ``badSig``    a broken signature is tolerated
- ``noKey``     the signing key may be missing from key servers
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence

from pgpverify.keysmap.pattern import KeysMapError
from pgpverify.pgp.keyid import KeyId, fingerprint_to_hex, hex_to_fingerprint
from pgpverify.pgp.results import KeyInfo

logger = logging.getLogger(__name__)

MIN_FINGERPRINT_BYTES = 8
MAX_FINGERPRINT_BYTES = 20


class KeyItemKind(str, Enum):
    FINGERPRINT = "fingerprint"
    ANY = "any"
    NO_SIG = "noSig"
    BAD_SIG = "badSig"
    NO_KEY = "noKey"


SPECIAL_VALUES = {
    "*": KeyItemKind.ANY,
    "any": KeyItemKind.ANY,
    "badsig": KeyItemKind.BAD_SIG,
    "nokey": KeyItemKind.NO_KEY,
    "nosig": KeyItemKind.NO_SIG,
}

ALLOWED_VALUES = "*,any,badSig,noKey,noSig"


@dataclass(frozen=True)
class KeysMapContext:
    """Where a keys map line came from, for messages."""

    location: str
    line_number: int = 0

    def __str__(self) -> str:
        return f"keysMap: {self.location} lineNumber: {self.line_number}"


def parse_fingerprint(text: str) -> bytes:
    """Fingerprint bytes for a ``0x`` key item.

    Raises:
        KeysMapError: For malformed hex or a length outside 64..160 bits.
    """
    try:
        raw = hex_to_fingerprint(text)
    except ValueError as e:
        raise KeysMapError(str(e)) from e
    if not MIN_FINGERPRINT_BYTES <= len(raw) <= MAX_FINGERPRINT_BYTES:
        raise KeysMapError(
            f"Key length for = {text} is {len(raw) * 8} bits, should be between 64 and 160 bits"
        )
    return raw


def _tail_equal(item: bytes, fingerprint: Optional[bytes]) -> bool:
    if not fingerprint:
        return False
    size = min(len(item), len(fingerprint))
    return item[-size:] == fingerprint[-size:]


@dataclass(frozen=True)
class KeyItem:
    """One permitted trust outcome."""

    kind: KeyItemKind
    fingerprint: Optional[bytes] = None
    no_public_key: bool = False

    @classmethod
    def parse(cls, text: str) -> "KeyItem":
        no_public_key = text.startswith("!0x")
        if no_public_key or text.startswith("0x"):
            return cls(
                KeyItemKind.FINGERPRINT,
                fingerprint=parse_fingerprint(text.lstrip("!")),
                no_public_key=no_public_key,
            )
        kind = SPECIAL_VALUES.get(text.lower())
        if kind is None:
            raise KeysMapError(
                f"Invalid keyID {text} must start with 0x or be any of {ALLOWED_VALUES}"
            )
        return cls(kind)

    @property
    def is_no_signature(self) -> bool:
        return self.kind is KeyItemKind.NO_SIG

    @property
    def is_broken_signature(self) -> bool:
        return self.kind is KeyItemKind.BAD_SIG

    @property
    def is_key_missing(self) -> bool:
        return self.kind is KeyItemKind.NO_KEY

    def is_key_match(self, key_info: KeyInfo) -> bool:
        if self.kind is KeyItemKind.ANY:
            return True
        if self.kind is not KeyItemKind.FINGERPRINT:
            return False
        return _tail_equal(self.fingerprint, key_info.fingerprint) or _tail_equal(
            self.fingerprint, key_info.master
        )

    def is_key_match_no_public_key(self, key_id: KeyId) -> bool:
        if self.kind is not KeyItemKind.FINGERPRINT or not self.no_public_key:
            return False
        return _tail_equal(self.fingerprint, key_id.to_bytes())

    def __str__(self) -> str:
        if self.kind is KeyItemKind.FINGERPRINT:
            return ("!" if self.no_public_key else "") + fingerprint_to_hex(self.fingerprint)
        return self.kind.value


ANY_KEY = KeyItem(KeyItemKind.ANY)


class KeyItems:
    """Ordered, de-duplicated key items of one rule."""

    def __init__(self, items: Sequence[KeyItem] = ()):
        self._items: List[KeyItem] = list(items)

    def add_keys(self, text: str, context: Optional[KeysMapContext] = None) -> "KeyItems":
        """Parse and append comma separated key items.

        Raises:
            KeysMapError: For an invalid item.
        """
        if not text.strip():
            logger.warning(
                "Empty value for key is deprecated - please provide some value - now assume as noSig in: %s",
                context,
            )
            self.add_key(KeyItem(KeyItemKind.NO_SIG), context)
            return self

        for value in text.split(","):
            value = value.strip()
            try:
                item = KeyItem.parse(value)
            except KeysMapError as e:
                raise KeysMapError(f"{e} in: {context}" if context else str(e)) from e
            self.add_key(item, context)
        return self

    def add_key(self, item: KeyItem, context: Optional[KeysMapContext] = None) -> None:
        if item in self._items:
            logger.warning("Duplicate key item: %s in: %s", item, context)
            return
        self._items.append(item)

    def merge(self, other: "KeyItems", context: Optional[KeysMapContext] = None) -> None:
        for item in other:
            self.add_key(item, context)

    def includes(self, values: Sequence[KeyItem]) -> None:
        """Keep only items listed in ``values``; ``any`` keeps everything."""
        if ANY_KEY in values:
            return
        self._items = [item for item in self._items if item in values]

    def excludes(self, values: Sequence[KeyItem]) -> None:
        """Drop items listed in ``values``; ``any`` drops nothing."""
        if ANY_KEY in values:
            return
        self._items = [item for item in self._items if item not in values]

    def is_key_match(self, key_info: KeyInfo) -> bool:
        return any(item.is_key_match(key_info) for item in self._items)

    def is_key_match_no_public_key(self, key_id: KeyId) -> bool:
        return any(item.is_key_match_no_public_key(key_id) for item in self._items)

    @property
    def is_no_signature(self) -> bool:
        return any(item.is_no_signature for item in self._items)

    @property
    def is_broken_signature(self) -> bool:
        return any(item.is_broken_signature for item in self._items)

    @property
    def is_key_missing(self) -> bool:
        return any(item.is_key_missing for item in self._items)

    @property
    def is_with_key(self) -> bool:
        return any(item.kind is KeyItemKind.FINGERPRINT for item in self._items)

    def is_empty(self) -> bool:
        return not self._items

    def __iter__(self) -> Iterator[KeyItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __str__(self) -> str:
        return ", ".join(str(item) for item in self._items)
