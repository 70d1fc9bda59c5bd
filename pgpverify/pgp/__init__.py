"""pgpverify OpenPGP module: packets, keys, signatures and results."""

from pgpverify.pgp.keyid import KeyId, fingerprint_to_hex, hex_to_fingerprint
from pgpverify.pgp.packets import PGPError, PGPFormatError
from pgpverify.pgp.results import (
    ArtifactInfo,
    KeyInfo,
    RevocationInfo,
    SignatureCheckResult,
    SignatureInfo,
    SignatureStatus,
)

__all__ = [
    "KeyId", "fingerprint_to_hex", "hex_to_fingerprint",
    "PGPError", "PGPFormatError",
    "ArtifactInfo", "KeyInfo", "RevocationInfo", "SignatureCheckResult",
    "SignatureInfo", "SignatureStatus",
]
