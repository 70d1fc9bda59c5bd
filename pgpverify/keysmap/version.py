"""
pgpverify Maven Versions

Maven version ordering and version range specifications, as used by
artifact patterns such as ``[1.0,2.0)`` or ``(,1.5]``.

Ordering follows Maven's ComparableVersion: versions split into numeric
and qualifier items on ``.``, ``-`` and digit/letter transitions, and
known qualifiers sort ``alpha < beta < milestone < rc < snapshot <
release < sp``.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import total_ordering
from typing import List, Optional, Union

QUALIFIERS = ["alpha", "beta", "milestone", "rc", "snapshot", "", "sp"]
ALIASES = {"ga": "", "final": "", "release": "", "cr": "rc"}
RELEASE_INDEX = str(QUALIFIERS.index(""))


class InvalidVersionSpecification(ValueError):
    """Raised for a malformed version range."""


def _qualifier_key(value: str) -> str:
    if value in QUALIFIERS:
        return str(QUALIFIERS.index(value))
    return f"{len(QUALIFIERS)}-{value}"


class _StringItem:
    def __init__(self, value: str, followed_by_digit: bool):
        if followed_by_digit and len(value) == 1:
            value = {"a": "alpha", "b": "beta", "m": "milestone"}.get(value, value)
        self.value = ALIASES.get(value, value)

    def is_null(self) -> bool:
        return _qualifier_key(self.value) == RELEASE_INDEX

    def compare(self, other) -> int:
        if other is None:
            return _cmp(_qualifier_key(self.value), RELEASE_INDEX)
        if isinstance(other, int):
            return -1
        if isinstance(other, _StringItem):
            return _cmp(_qualifier_key(self.value), _qualifier_key(other.value))
        return -1

    def __repr__(self) -> str:
        return self.value


class _ListItem(list):
    def is_null(self) -> bool:
        return len(self) == 0

    def normalize(self) -> None:
        for i in range(len(self) - 1, -1, -1):
            item = self[i]
            if _is_null(item):
                del self[i]
            elif not isinstance(item, _ListItem):
                break

    def compare(self, other) -> int:
        if other is None:
            if not self:
                return 0
            return _compare_item(self[0], None)
        if isinstance(other, (int, _StringItem)):
            return -1 if isinstance(other, int) else 1
        for i in range(max(len(self), len(other))):
            left = self[i] if i < len(self) else None
            right = other[i] if i < len(other) else None
            if left is None:
                result = 0 if right is None else -_compare_item(right, None)
            else:
                result = _compare_item(left, right)
            if result != 0:
                return result
        return 0


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _is_null(item) -> bool:
    if isinstance(item, int):
        return item == 0
    return item.is_null()


def _compare_item(item, other) -> int:
    if isinstance(item, int):
        if other is None:
            return 0 if item == 0 else 1
        if isinstance(other, int):
            return _cmp(item, other)
        return 1
    return item.compare(other)


def _parse_item(is_digit: bool, text: str, followed_by_digit: bool = False) -> Union[int, _StringItem]:
    if is_digit:
        return int(text)
    return _StringItem(text, followed_by_digit)


def _parse(version: str) -> _ListItem:
    version = version.lower()
    root = _ListItem()
    current = root
    stack = [root]
    is_digit = False
    start = 0

    for i, char in enumerate(version):
        if char == ".":
            current.append(0 if i == start else _parse_item(is_digit, version[start:i]))
            start = i + 1
        elif char == "-":
            current.append(0 if i == start else _parse_item(is_digit, version[start:i]))
            start = i + 1
            sub = _ListItem()
            current.append(sub)
            current = sub
            stack.append(sub)
        elif char.isdigit():
            if not is_digit and i > start:
                current.append(_StringItem(version[start:i], True))
                start = i
                sub = _ListItem()
                current.append(sub)
                current = sub
                stack.append(sub)
            is_digit = True
        else:
            if is_digit and i > start:
                current.append(_parse_item(True, version[start:i]))
                start = i
                sub = _ListItem()
                current.append(sub)
                current = sub
                stack.append(sub)
            is_digit = False

    if len(version) > start:
        current.append(_parse_item(is_digit, version[start:]))

    for item in reversed(stack):
        item.normalize()
    return root


@total_ordering
class ComparableVersion:
    """A Maven version with Maven's ordering rules."""

    def __init__(self, version: str):
        self.value = version
        self._items = _parse(version)

    def compare(self, other: "ComparableVersion") -> int:
        return self._items.compare(other._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ComparableVersion):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: "ComparableVersion") -> bool:
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash(repr(self._items))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Restriction:
    lower: Optional[ComparableVersion]
    lower_inclusive: bool
    upper: Optional[ComparableVersion]
    upper_inclusive: bool

    def contains(self, version: ComparableVersion) -> bool:
        if self.lower is not None:
            result = self.lower.compare(version)
            if result > 0 or (result == 0 and not self.lower_inclusive):
                return False
        if self.upper is not None:
            result = self.upper.compare(version)
            if result < 0 or (result == 0 and not self.upper_inclusive):
                return False
        return True


@dataclass(frozen=True)
class VersionRange:
    """A parsed version spec: a recommended version or a set of restrictions."""

    spec: str
    restrictions: List[Restriction]
    recommended: Optional[ComparableVersion] = None

    @property
    def has_restrictions(self) -> bool:
        return bool(self.restrictions)

    def contains(self, version: Union[str, ComparableVersion]) -> bool:
        if isinstance(version, str):
            version = ComparableVersion(version)
        if self.recommended is not None and not self.restrictions:
            return self.recommended == version
        return any(r.contains(version) for r in self.restrictions)

    @classmethod
    def parse(cls, spec: str) -> "VersionRange":
        """Parse a Maven version spec.

        Raises:
            InvalidVersionSpecification: For unbounded or inconsistent ranges.
        """
        process = spec
        restrictions: List[Restriction] = []
        upper_bound: Optional[ComparableVersion] = None

        while process.startswith("[") or process.startswith("("):
            index1 = process.find(")")
            index2 = process.find("]")
            index = index2
            if index2 < 0 or (0 <= index1 < index2):
                index = index1
            if index < 0:
                raise InvalidVersionSpecification(f"Unbounded range: {spec}")

            restriction = _parse_restriction(process[:index + 1])
            if upper_bound is not None:
                if restriction.lower is None or restriction.lower < upper_bound:
                    raise InvalidVersionSpecification(f"Ranges overlap: {spec}")
            restrictions.append(restriction)
            upper_bound = restriction.upper

            process = process[index + 1:].strip()
            if process.startswith(","):
                process = process[1:].strip()

        if process:
            if restrictions:
                raise InvalidVersionSpecification(
                    f"Only fully-qualified sets allowed in multiple set scenario: {spec}"
                )
            return cls(spec=spec, restrictions=[], recommended=ComparableVersion(process))
        return cls(spec=spec, restrictions=restrictions)


def _parse_restriction(spec: str) -> Restriction:
    lower_inclusive = spec.startswith("[")
    upper_inclusive = spec.endswith("]")
    process = spec[1:-1].strip()

    if "," not in process:
        if not lower_inclusive or not upper_inclusive:
            raise InvalidVersionSpecification(f"Single version must be surrounded by []: {spec}")
        version = ComparableVersion(process)
        return Restriction(version, True, version, True)

    lower_text, upper_text = (part.strip() for part in process.split(",", 1))
    if lower_text == upper_text:
        raise InvalidVersionSpecification(f"Range cannot have identical boundaries: {spec}")
    if "," in upper_text:
        raise InvalidVersionSpecification(f"Invalid version range: {spec}")

    lower = ComparableVersion(lower_text) if lower_text else None
    upper = ComparableVersion(upper_text) if upper_text else None
    if lower is not None and upper is not None and upper < lower:
        raise InvalidVersionSpecification(f"Range defies version ordering: {spec}")
    return Restriction(lower, lower_inclusive, upper, upper_inclusive)
