#!/usr/bin/env python3
"""
pgpverify Public Key Utilities

Loads key material downloaded from a key server, validates subkey
bindings and extracts the details reported for each key:
- load_key_ring: pick the ring or revocation for a requested key id
- verify_key_ring: check every subkey is bound (or revoked) by its master
- get_master_key / get_user_ids / build_key_info: reporting helpers
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from pgpverify.pgp.crypto import verify_certification
from pgpverify.pgp.keyid import KeyId, fingerprint_to_hex
from pgpverify.pgp.packets import (
    PK_DSA,
    PK_ECDH,
    PK_ECDSA,
    PK_ED448,
    PK_ED25519,
    PK_EDDSA_LEGACY,
    PK_ELGAMAL,
    PK_ELGAMAL_ENCRYPT,
    PK_RSA,
    PK_RSA_ENCRYPT,
    PK_RSA_SIGN,
    PK_X448,
    PK_X25519,
    SIG_KEY_REVOCATION,
    SIG_SUBKEY_BINDING,
    SIG_SUBKEY_REVOCATION,
    KeyRing,
    PGPError,
    PublicKey,
    Signature,
    read_objects,
)
from pgpverify.pgp.results import KeyInfo, RevocationInfo

logger = logging.getLogger(__name__)

KEY_ALGORITHM_NAMES = {
    PK_RSA: "RSA (Encrypt or Sign)",
    PK_RSA_ENCRYPT: "RSA Encrypt-Only",
    PK_RSA_SIGN: "RSA Sign-Only",
    PK_ELGAMAL_ENCRYPT: "Elgamal (Encrypt-Only)",
    PK_DSA: "DSA",
    PK_ECDH: "ECDH",
    PK_ECDSA: "ECDSA",
    PK_ELGAMAL: "Elgamal (Encrypt or Sign)",
    PK_EDDSA_LEGACY: "EdDSA",
    PK_X25519: "X25519",
    PK_X448: "X448",
    PK_ED25519: "Ed25519",
    PK_ED448: "Ed448",
}


def key_algorithm_name(algorithm: int) -> str:
    """Display name of a public key algorithm id.

    Raises:
        ValueError: For an id not defined by OpenPGP.
    """
    name = KEY_ALGORITHM_NAMES.get(algorithm)
    if name is None:
        raise ValueError(f"Unknown key algorithm value encountered: {algorithm}")
    return name


@dataclass
class KeyRingPack:
    """What a key source holds for one key id: a ring, a revocation, or both."""

    key_ring: Optional[KeyRing] = None
    revocation_signature: Optional[Signature] = None

    @property
    def has_public_keys(self) -> bool:
        return self.key_ring is not None

    @property
    def has_revocation_signature(self) -> bool:
        return self.revocation_signature is not None

    @property
    def is_empty(self) -> bool:
        return self.key_ring is None and self.revocation_signature is None


def _issued_by(signature: Signature, key_id: KeyId) -> bool:
    issuer = signature.issuer_fingerprint
    if issuer is not None and key_id.is_fingerprint:
        return issuer[1] == key_id.fingerprint
    return signature.key_id == key_id.id


def load_key_ring(data: bytes, key_id: KeyId) -> KeyRingPack:
    """Find the key ring holding ``key_id`` in downloaded key data.

    A standalone key revocation issued by ``key_id`` is kept as well; when
    the ring itself carries a revocation for the key, that signature is
    used instead.

    Raises:
        PGPError: If the data cannot be parsed or a subkey is not properly
            bound to its master key.
    """
    pack = KeyRingPack()

    for obj in read_objects(data):
        if isinstance(obj, KeyRing):
            if pack.key_ring is None and key_id.key_from_ring(obj) is not None:
                pack.key_ring = obj
        else:
            for signature in obj:
                if (
                    pack.revocation_signature is None
                    and signature.sig_type == SIG_KEY_REVOCATION
                    and _issued_by(signature, key_id)
                ):
                    pack.revocation_signature = signature

    if pack.key_ring is not None:
        verify_key_ring(pack.key_ring)
        key = key_id.key_from_ring(pack.key_ring)
        if key.has_revocation and pack.revocation_signature is None:
            kind = SIG_KEY_REVOCATION if key.is_master else SIG_SUBKEY_REVOCATION
            pack.revocation_signature = key.signatures_of_type(kind)[0]

    return pack


def verify_key_ring(key_ring: KeyRing) -> None:
    """Every subkey needs a valid binding, or a valid revocation if revoked.

    Raises:
        PGPError: Naming the offending subkey and signature type.
    """
    master = key_ring.master
    for subkey in key_ring.keys[1:]:
        sig_type = SIG_SUBKEY_REVOCATION if subkey.has_revocation else SIG_SUBKEY_BINDING
        subkey_hex = fingerprint_to_hex(subkey.fingerprint)

        valid = False
        for signature in subkey.signatures_of_type(sig_type):
            signer = key_ring.get_key_by_id(signature.key_id)
            if signer is None:
                raise PGPError(
                    f"Signature type: {sig_type} Not found key "
                    f"0x{signature.key_id & 0xFFFFFFFFFFFFFFFF:016X} for subKeyId: {subkey_hex}"
                )
            if verify_certification(signature, signer, master, subkey=subkey):
                valid = True
                break
        if not valid:
            raise PGPError(f"No valid signature type: {sig_type} for subKey: {subkey_hex}")


def get_master_key(key: PublicKey, key_ring: KeyRing) -> Optional[PublicKey]:
    """Master key for a subkey via its binding signature; None for a master."""
    if key.is_master:
        return None
    for signature in key.signatures_of_type(SIG_SUBKEY_BINDING):
        return key_ring.get_key_by_id(signature.key_id)
    return None


def get_user_ids(key: PublicKey, key_ring: KeyRing) -> List[str]:
    """User ids of the key and of its master, in order, without duplicates."""
    result: List[str] = []
    sources = [key]
    master = get_master_key(key, key_ring)
    if master is not None:
        sources.append(master)
    for source in sources:
        for user_id in source.user_ids:
            if user_id.is_attribute:
                continue
            text = user_id.text
            if text not in result:
                result.append(text)
    return result


def fingerprint(key: PublicKey) -> str:
    return fingerprint_to_hex(key.fingerprint)


def build_key_info(key: PublicKey, key_ring: KeyRing) -> KeyInfo:
    master = get_master_key(key, key_ring)
    return KeyInfo(
        fingerprint=key.fingerprint,
        master=master.fingerprint if master is not None else None,
        uids=tuple(get_user_ids(key, key_ring)),
        version=key.version,
        algorithm=key.algorithm,
        bits=key.bits,
        date=key.created,
    )


def fingerprint_for_master(key_info: KeyInfo) -> str:
    """Master fingerprint when the key is a subkey, else the key's own."""
    return key_info.master_hex or key_info.fingerprint_hex


def key_id_description(key_info: KeyInfo) -> str:
    """Human readable key description used in policy messages."""
    if key_info.master:
        return f"SubKeyId: {key_info.fingerprint_hex} of {key_info.master_hex}"
    return f"KeyId: {key_info.fingerprint_hex}"


def revocation_info(signature: Signature) -> RevocationInfo:
    reason = signature.revocation_reason
    code, description = reason if reason is not None else (0, "")
    return RevocationInfo(date=signature.creation_time, reason=code, description=description)
