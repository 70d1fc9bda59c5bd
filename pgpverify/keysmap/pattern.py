"""
pgpverify Artifact Patterns

The left-hand side of a keys map rule:

    groupId[:artifactId[:packaging][:version]]

Group, artifact and packaging are case-insensitive wildcard patterns.
A trailing ``.*`` also matches the bare prefix, so ``org.example.*``
covers ``org.example`` and every subgroup. The version is any version
(empty or ``*``), an exact version, a Maven range such as ``[1.0,2.0)``,
or a regular expression introduced by ``~`` (match) or ``!~`` (no match).
"""
from __future__ import annotations

import re
from typing import Callable

from pgpverify.keysmap.version import (
    ComparableVersion,
    InvalidVersionSpecification,
    VersionRange,
)
from pgpverify.pgp.results import ArtifactInfo

PACKAGING = re.compile(r"^[a-zA-Z]+$")
REGEX_PREFIXES = ("~", "!~")


class KeysMapError(ValueError):
    """Raised for malformed keys map content."""


def pattern_prepare(text: str) -> str:
    """Translate a wildcard segment into a regular expression."""
    if not text or text == "*":
        return ".*"
    if text.endswith(".*"):
        return re.escape(text[:-2]) + r"(\..+)?"
    return re.escape(text).replace(r"\*", ".*")


def version_match_prepare(spec: str) -> Callable[[str], bool]:
    """Build the version predicate for a pattern's version field.

    Raises:
        InvalidVersionSpecification: For ``*`` inside a version or a bad range.
        re.error: For an invalid ``~`` regular expression.
    """
    if spec.startswith("!~"):
        regex = re.compile(spec[2:], re.IGNORECASE)
        return lambda version: regex.fullmatch(version) is None
    if spec.startswith("~"):
        regex = re.compile(spec[1:], re.IGNORECASE)
        return lambda version: regex.fullmatch(version) is not None

    spec = spec.lower()
    if not spec or spec == "*":
        return lambda version: True
    if "*" in spec:
        raise InvalidVersionSpecification(f"Invalid maven version range: {spec}")

    version_range = VersionRange.parse(spec)
    if version_range.has_restrictions:
        return lambda version: version_range.contains(ComparableVersion(version))
    return lambda version: version.lower() == spec


class ArtifactPattern:
    """Compiled artifact pattern; equality is on the original text."""

    def __init__(self, pattern: str):
        self.pattern = pattern

        parts = pattern.split(":")
        version = ""
        for index in (2, 3):
            if index < len(parts) and parts[index].strip().startswith(REGEX_PREFIXES):
                version = ":".join(parts[index:]).strip()
                parts = parts[:index]
                break

        if len(parts) > 4:
            raise KeysMapError(f"Invalid artifact definition: {pattern}")

        group_id = parts[0].strip().lower() if len(parts) > 0 else ""
        artifact_id = parts[1].strip().lower() if len(parts) > 1 else ""
        packaging = ""
        if len(parts) == 3:
            item = parts[2].strip().lower()
            if PACKAGING.match(item):
                packaging = item
            else:
                version = item
        elif len(parts) == 4:
            packaging = parts[2].strip().lower()
            version = parts[3].strip()

        try:
            self._group_id = re.compile(pattern_prepare(group_id), re.IGNORECASE)
            self._artifact_id = re.compile(pattern_prepare(artifact_id), re.IGNORECASE)
            self._packaging = re.compile(pattern_prepare(packaging), re.IGNORECASE)
            self._version_match = version_match_prepare(version)
        except (InvalidVersionSpecification, re.error) as e:
            raise KeysMapError(f"Invalid artifact definition: {pattern}") from e

    def is_match(self, artifact: ArtifactInfo) -> bool:
        return (
            self._group_id.fullmatch(artifact.group_id) is not None
            and self._artifact_id.fullmatch(artifact.artifact_id) is not None
            and self._packaging.fullmatch(artifact.type) is not None
            and self._version_match(artifact.version)
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArtifactPattern):
            return NotImplemented
        return self.pattern == other.pattern

    def __hash__(self) -> int:
        return hash(self.pattern)

    def __str__(self) -> str:
        return self.pattern

    def __repr__(self) -> str:
        return f"ArtifactPattern({self.pattern!r})"
