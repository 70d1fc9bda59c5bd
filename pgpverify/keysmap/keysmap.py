"""
pgpverify Keys Map

The trust policy: an ordered list of ``artifact pattern = key items``
rules read from one or more documents.

Document format:

    # comment
    org.example:*          = 0x1234 5678 9ABC DEF0 1234 5678 9ABC DEF0 1234 5678
    org.example:legacy     = noSig, \\
                             0xABCDEF0123456789
    junit:junit:jar:4.12   = any

For every question the first rule whose pattern matches the artifact
decides. Declaring the same pattern text again adds its key items to the
existing rule. A map with no rules trusts every key.
"""
from __future__ import annotations

import logging
import re
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple, Union

from pgpverify.keysmap.items import KeyItems, KeysMapContext
from pgpverify.keysmap.pattern import ArtifactPattern, KeysMapError
from pgpverify.pgp.keyid import KeyId
from pgpverify.pgp.keys import build_key_info
from pgpverify.pgp.results import ArtifactInfo, KeyInfo

logger = logging.getLogger(__name__)

REMOTE_TIMEOUT = 30


@dataclass(frozen=True)
class KeysMapFilter:
    """Post-parse include/exclude filter for one keys map location."""

    pattern: str = ".*"
    value: str = "any"

    def matches(self, rule_pattern: ArtifactPattern) -> bool:
        return re.fullmatch(self.pattern, rule_pattern.pattern) is not None

    def key_items(self) -> KeyItems:
        return KeyItems().add_keys(self.value)


@dataclass
class _Rule:
    pattern: ArtifactPattern
    key_items: KeyItems


def _strip_comment(line: str) -> str:
    index = line.find("#")
    return line[:index].strip() if index >= 0 else line


def iter_logical_lines(text: str) -> Iterator[Tuple[int, str]]:
    """Yield (first physical line number, logical line) pairs.

    Comments and blank lines are dropped and backslash continuations are
    joined with a single space.
    """
    pending: List[str] = []
    start = 0
    for number, raw in enumerate(text.splitlines(), start=1):
        line = _strip_comment(raw.strip())
        if not line:
            continue
        if not pending:
            start = number
        if line.endswith("\\"):
            pending.append(line[:-1])
            continue
        pending.append(line)
        joined = " ".join(pending).strip()
        pending = []
        if joined:
            yield start, joined

    if pending:
        joined = " ".join(pending).strip()
        if joined:
            yield start, joined


def read_location(location: str) -> str:
    """Read keys map text from a path, ``file:`` URL or http(s) URL.

    Raises:
        KeysMapError: If the content is not UTF-8 text.
        OSError: If the location cannot be read.
    """
    scheme = urllib.parse.urlsplit(location).scheme.lower()
    if scheme in ("http", "https"):
        request = urllib.request.Request(location, headers={"Accept": "text/plain, */*"})
        with urllib.request.urlopen(request, timeout=REMOTE_TIMEOUT) as response:
            data = response.read()
    else:
        path = location
        if scheme == "file":
            path = urllib.request.url2pathname(urllib.parse.urlsplit(location).path)
        data = Path(path).read_bytes()
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise KeysMapError(f"Keys map {location} is not valid UTF-8: {e}") from e


class KeysMap:
    """Ordered trust rules: artifact pattern to permitted key items."""

    def __init__(self):
        self._rules: List[_Rule] = []

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(
        self,
        location: Union[str, Path],
        includes: Sequence[KeysMapFilter] = (),
        excludes: Sequence[KeysMapFilter] = (),
    ) -> "KeysMap":
        """Load and merge rules from a keys map location.

        An empty location is ignored.

        Raises:
            KeysMapError: For malformed content.
            OSError: When the location cannot be read.
        """
        location = str(location).strip()
        if not location:
            return self
        return self.load_text(read_location(location), location, includes, excludes)

    def load_text(
        self,
        text: str,
        name: str = "<string>",
        includes: Sequence[KeysMapFilter] = (),
        excludes: Sequence[KeysMapFilter] = (),
    ) -> "KeysMap":
        """Parse a keys map document, apply filters and merge its rules."""
        parsed: List[_Rule] = []
        for line_number, line in iter_logical_lines(text):
            context = KeysMapContext(name, line_number)
            parts = line.split("=")
            if len(parts) > 2:
                raise KeysMapError(f"Property line is malformed: {line} in: {context}")

            try:
                pattern = ArtifactPattern(parts[0].strip())
            except KeysMapError as e:
                raise KeysMapError(f"{e} in: {context}") from e
            items = KeyItems().add_keys(parts[1].strip() if len(parts) == 2 else "", context)
            existing = self._find(parsed, pattern)
            if existing is not None:
                logger.debug("Existing artifact pattern: %s - only update key items in %s", pattern, context)
                existing.key_items.merge(items, context)
            else:
                parsed.append(_Rule(pattern, items))

        self._apply_filters(parsed, includes or [KeysMapFilter()], excludes)

        context = KeysMapContext(name)
        for rule in parsed:
            if rule.key_items.is_empty():
                continue
            existing = self._find(self._rules, rule.pattern)
            if existing is not None:
                logger.debug("Existing artifact pattern: %s - only update key items in %s", rule.pattern, context)
                existing.key_items.merge(rule.key_items, context)
            else:
                self._rules.append(rule)
        return self

    @staticmethod
    def _find(rules: List[_Rule], pattern: ArtifactPattern) -> Optional[_Rule]:
        for rule in rules:
            if rule.pattern == pattern:
                return rule
        return None

    @staticmethod
    def _apply_filters(
        rules: List[_Rule],
        includes: Sequence[KeysMapFilter],
        excludes: Sequence[KeysMapFilter],
    ) -> None:
        include_items = [(f, list(f.key_items())) for f in includes]
        exclude_items = [(f, list(f.key_items())) for f in excludes]

        for rule in rules:
            allowed = []
            for keys_filter, values in include_items:
                if keys_filter.matches(rule.pattern):
                    allowed.extend(values)
            rule.key_items.includes(allowed)

            for keys_filter, values in exclude_items:
                if keys_filter.matches(rule.pattern):
                    rule.key_items.excludes(values)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _first_match(self, artifact: ArtifactInfo) -> Optional[_Rule]:
        for rule in self._rules:
            if rule.pattern.is_match(artifact):
                return rule
        return None

    def is_valid_key(self, artifact: ArtifactInfo, key, key_ring=None) -> bool:
        """Whether ``key`` may sign ``artifact``.

        ``key`` is a KeyInfo, or a PublicKey together with its ``key_ring``.
        """
        if not self._rules:
            return True
        rule = self._first_match(artifact)
        if rule is None:
            return False
        if not isinstance(key, KeyInfo):
            key = build_key_info(key, key_ring)
        return rule.key_items.is_key_match(key)

    def is_valid_key_without_public_key(self, artifact: ArtifactInfo, key_id: KeyId) -> bool:
        """Whether a revoked key with no public key material is still trusted."""
        rule = self._first_match(artifact)
        return rule is not None and rule.key_items.is_key_match_no_public_key(key_id)

    def is_no_signature(self, artifact: ArtifactInfo) -> bool:
        rule = self._first_match(artifact)
        return rule is not None and rule.key_items.is_no_signature

    def is_broken_signature(self, artifact: ArtifactInfo) -> bool:
        rule = self._first_match(artifact)
        return rule is not None and rule.key_items.is_broken_signature

    def is_key_missing(self, artifact: ArtifactInfo) -> bool:
        rule = self._first_match(artifact)
        return rule is not None and rule.key_items.is_key_missing

    def is_with_key(self, artifact: ArtifactInfo) -> bool:
        rule = self._first_match(artifact)
        return rule is not None and rule.key_items.is_with_key

    def size(self) -> int:
        return len(self._rules)

    def is_empty(self) -> bool:
        return not self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Tuple[ArtifactPattern, KeyItems]]:
        return ((rule.pattern, rule.key_items) for rule in self._rules)
