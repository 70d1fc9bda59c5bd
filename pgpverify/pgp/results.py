"""
pgpverify Verification Results

Immutable value types describing an artifact, the key and signature
involved in its check, an optional revocation and the final status.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from pgpverify.pgp.keyid import KeyId, fingerprint_to_hex


class SignatureStatus(str, Enum):
    """Outcome of a single artifact signature check."""

    ARTIFACT_NOT_RESOLVED = "ARTIFACT_NOT_RESOLVED"
    SIGNATURE_NOT_RESOLVED = "SIGNATURE_NOT_RESOLVED"
    SIGNATURE_ERROR = "SIGNATURE_ERROR"
    KEY_NOT_FOUND = "KEY_NOT_FOUND"
    ERROR = "ERROR"
    SIGNATURE_VALID = "SIGNATURE_VALID"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"


@dataclass(frozen=True)
class ArtifactInfo:
    group_id: str
    artifact_id: str
    type: str
    version: str
    classifier: Optional[str] = None

    def __str__(self) -> str:
        parts = [self.group_id, self.artifact_id, self.type]
        if self.classifier:
            parts.append(self.classifier)
        parts.append(self.version)
        return ":".join(parts)


@dataclass(frozen=True)
class KeyInfo:
    """Public key details used for trust decisions and reporting."""

    fingerprint: bytes
    master: Optional[bytes] = None
    uids: Tuple[str, ...] = ()
    version: int = 4
    algorithm: int = 0
    bits: int = 0
    date: Optional[datetime] = None

    @property
    def fingerprint_hex(self) -> str:
        return fingerprint_to_hex(self.fingerprint)

    @property
    def master_hex(self) -> Optional[str]:
        return fingerprint_to_hex(self.master) if self.master else None


@dataclass(frozen=True)
class SignatureInfo:
    hash_algorithm: int
    key_algorithm: int
    key_id: KeyId
    date: Optional[datetime]
    version: int


_REVOCATION_REASONS = {
    0: "No reason specified",
    1: "Key is superseded",
    2: "Key material has been compromised",
    3: "Key is retired and no longer used",
}


@dataclass(frozen=True)
class RevocationInfo:
    date: Optional[datetime]
    reason: int
    description: str = ""

    @property
    def reason_as_string(self) -> str:
        return _REVOCATION_REASONS.get(self.reason, f"Unknown reason: {self.reason:X}")


@dataclass(frozen=True)
class SignatureCheckResult:
    """Per-artifact verification result; built once, never mutated."""

    artifact: ArtifactInfo
    status: SignatureStatus
    key: Optional[KeyInfo] = None
    key_show_url: Optional[str] = None
    signature: Optional[SignatureInfo] = None
    revocation_signature: Optional[RevocationInfo] = None
    error_cause: Optional[BaseException] = field(default=None, compare=False)

    @property
    def error_message(self) -> Optional[str]:
        if self.error_cause is None:
            return None
        return str(self.error_cause)
