"""pgpverify keys map module: artifact patterns, key items and the trust policy."""

from pgpverify.keysmap.items import KeyItem, KeyItemKind, KeyItems, KeysMapContext
from pgpverify.keysmap.keysmap import KeysMap, KeysMapFilter
from pgpverify.keysmap.pattern import ArtifactPattern, KeysMapError

__all__ = [
    "ArtifactPattern", "KeyItem", "KeyItemKind", "KeyItems", "KeysMap",
    "KeysMapContext", "KeysMapError", "KeysMapFilter",
]
