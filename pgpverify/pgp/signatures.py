#!/usr/bin/env python3
"""
pgpverify Signature Utilities

Loads detached signatures, derives the issuing key identity, classifies
hash algorithms and runs the full check of one artifact against its
signature and the key cache.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Dict, Optional, Tuple, Union

from pgpverify.keyserver.client import PGPKeyNotFound
from pgpverify.pgp.crypto import SignatureHasher
from pgpverify.pgp.keyid import KeyId, fingerprint_to_hex, low64
from pgpverify.pgp.keys import KeyRingPack, build_key_info, revocation_info
from pgpverify.pgp.packets import TAG_SIGNATURE, PGPError, Signature, parse_signature, read_packets
from pgpverify.pgp.results import (
    ArtifactInfo,
    SignatureCheckResult,
    SignatureInfo,
    SignatureStatus,
)

if TYPE_CHECKING:
    from pgpverify.keyserver.cache import KeyCache

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 8192

HASH_ALGORITHM_NAMES: Dict[int, str] = {
    1: "MD5",
    2: "SHA1",
    3: "RIPEMD160",
    4: "DOUBLE_SHA",
    5: "MD2",
    6: "TIGER_192",
    7: "HAVAL_5_160",
    8: "SHA256",
    9: "SHA384",
    10: "SHA512",
    11: "SHA224",
    12: "SHA3_256",
    14: "SHA3_512",
}

WEAK_HASH_ALGORITHMS = frozenset({1, 4, 5, 6, 7, 11})
ACCEPTED_HASH_ALGORITHMS = frozenset({2, 3, 8, 9, 10})


class SignatureError(PGPError):
    """Raised when a signature file is unreadable or internally inconsistent."""


def hash_algorithm_name(hash_algorithm: int) -> str:
    return HASH_ALGORITHM_NAMES.get(hash_algorithm, f"Unknown({hash_algorithm})")


def check_weak_hash_algorithm(signature: Union[Signature, SignatureInfo]) -> Optional[str]:
    """Name of the hash algorithm when it is considered weak, else None.

    Raises:
        ValueError: For an algorithm id this policy does not classify.
    """
    algorithm = signature.hash_algorithm
    if algorithm in WEAK_HASH_ALGORITHMS:
        return hash_algorithm_name(algorithm)
    if algorithm in ACCEPTED_HASH_ALGORITHMS:
        return None
    raise ValueError(f"Unknown hash algorithm value encountered: {algorithm}")


def load_signature(data: bytes) -> Signature:
    """First signature packet in armored or binary data.

    Compressed wrappers are unpacked; literal data and one-pass headers
    are skipped.

    Raises:
        SignatureError: If the data holds no decodable signature.
    """
    try:
        for packet in read_packets(data):
            if packet.tag == TAG_SIGNATURE:
                return parse_signature(packet.body)
    except PGPError as e:
        raise SignatureError(f"Invalid signature data: {e}") from e
    raise SignatureError("PGP signature not found.")


def load_signature_file(path: Path) -> Signature:
    with open(path, "rb") as f:
        data = f.read()
    try:
        return load_signature(data)
    except SignatureError as e:
        raise SignatureError(f"{e} in: {path}") from e


def read_file_content_into(hasher: SignatureHasher, stream: BinaryIO) -> None:
    """Stream file content into a signature hasher in fixed-size chunks."""
    while True:
        chunk = stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        hasher.update(chunk)


def retrieve_key_id(signature: Signature) -> KeyId:
    """Identity of the key that made ``signature``.

    Prefers the issuer fingerprint subpacket, falls back to the issuer key
    id, and rejects signatures whose issuer data disagree.

    Raises:
        SignatureError: On conflicting or malformed issuer data, or no issuer at all.
    """
    hashed_id = signature.hashed_issuer_key_id
    unhashed_id = signature.unhashed_issuer_key_id
    if hashed_id and unhashed_id and hashed_id != unhashed_id:
        raise SignatureError(
            f"Signature KeyID 0x{hashed_id & 0xFFFFFFFFFFFFFFFF:016X} is not equals to "
            f"IssuerKeyID 0x{unhashed_id & 0xFFFFFFFFFFFFFFFF:016X}"
        )
    issuer_id = hashed_id or unhashed_id or signature.v3_key_id

    issuer = signature.issuer_fingerprint
    if issuer is not None:
        version, fingerprint = issuer
        if not 8 <= len(fingerprint) <= 20:
            raise SignatureError(
                f"Signature IssuerFingerprint {fingerprint.hex()} has invalid length {len(fingerprint)}"
            )
        if version == 4 and issuer_id and low64(fingerprint) != issuer_id:
            raise SignatureError(
                f"Signature IssuerFingerprint {fingerprint_to_hex(fingerprint)} not contains "
                f"IssuerKeyID 0x{issuer_id & 0xFFFFFFFFFFFFFFFF:016X}"
            )
        return KeyId.from_fingerprint(fingerprint)

    if not issuer_id:
        raise SignatureError("Signature has no issuer key id")
    return KeyId.from_long(issuer_id)


def signature_info(signature: Signature, key_id: KeyId) -> SignatureInfo:
    return SignatureInfo(
        hash_algorithm=signature.hash_algorithm,
        key_algorithm=signature.key_algorithm,
        key_id=key_id,
        date=signature.creation_time,
        version=signature.version,
    )


def _is_resolved(path: Optional[Path]) -> bool:
    return path is not None and Path(path).is_file()


def _resolve(
    artifact: ArtifactInfo,
    artifact_file: Optional[Path],
    signature_file: Optional[Path],
    key_cache: "KeyCache",
    fields: Dict[str, Any],
) -> Union[SignatureCheckResult, Tuple[Signature, KeyId, KeyRingPack]]:
    """Signature, issuer and key ring of one artifact, or the failed result.

    Fills ``fields`` with the signature details as they become known.
    """
    if not _is_resolved(artifact_file):
        return SignatureCheckResult(status=SignatureStatus.ARTIFACT_NOT_RESOLVED, **fields)
    if not _is_resolved(signature_file):
        return SignatureCheckResult(status=SignatureStatus.SIGNATURE_NOT_RESOLVED, **fields)

    try:
        signature = load_signature_file(signature_file)
        key_id = retrieve_key_id(signature)
    except (SignatureError, OSError) as e:
        logger.debug("Signature load failed for %s: %s", artifact, e)
        return SignatureCheckResult(status=SignatureStatus.SIGNATURE_ERROR, error_cause=e, **fields)

    fields["signature"] = signature_info(signature, key_id)
    fields["key_show_url"] = key_cache.uri_for_show_key(key_id)

    try:
        pack = key_cache.get_key_ring(key_id)
    except PGPKeyNotFound as e:
        return SignatureCheckResult(status=SignatureStatus.KEY_NOT_FOUND, error_cause=e, **fields)
    except (PGPError, OSError) as e:
        return SignatureCheckResult(status=SignatureStatus.ERROR, error_cause=e, **fields)

    return signature, key_id, pack


def resolve_signature(
    artifact: ArtifactInfo,
    artifact_file: Optional[Path],
    signature_file: Optional[Path],
    key_cache: "KeyCache",
) -> Optional[SignatureCheckResult]:
    """Load the signature of one artifact and bring its key into the cache.

    Returns None once the key ring is cached, otherwise the result that
    says why the signature or key could not be resolved.
    """
    resolved = _resolve(artifact, artifact_file, signature_file, key_cache, {"artifact": artifact})
    if isinstance(resolved, SignatureCheckResult):
        return resolved
    return None


def check_signature(
    artifact: ArtifactInfo,
    artifact_file: Optional[Path],
    signature_file: Optional[Path],
    key_cache: "KeyCache",
) -> SignatureCheckResult:
    """Verify one artifact against its detached signature.

    Every failure mode is reported through the result status; nothing
    is raised for problems with the artifact, signature or key.
    """
    fields: Dict[str, Any] = {"artifact": artifact}
    resolved = _resolve(artifact, artifact_file, signature_file, key_cache, fields)
    if isinstance(resolved, SignatureCheckResult):
        return resolved
    signature, key_id, pack = resolved

    if pack.has_revocation_signature:
        fields["revocation_signature"] = revocation_info(pack.revocation_signature)

    if not pack.has_public_keys:
        return SignatureCheckResult(
            status=SignatureStatus.KEY_NOT_FOUND,
            error_cause=PGPKeyNotFound(f"PGP key {key_id} is revoked and public key is not available"),
            **fields,
        )

    key = key_id.key_from_ring(pack.key_ring)
    fields["key"] = build_key_info(key, pack.key_ring)

    try:
        hasher = SignatureHasher(signature)
        with open(artifact_file, "rb") as stream:
            read_file_content_into(hasher, stream)
        valid = hasher.verify(key)
    except (PGPError, OSError) as e:
        return SignatureCheckResult(status=SignatureStatus.ERROR, error_cause=e, **fields)

    status = SignatureStatus.SIGNATURE_VALID if valid else SignatureStatus.SIGNATURE_INVALID
    return SignatureCheckResult(status=status, **fields)
