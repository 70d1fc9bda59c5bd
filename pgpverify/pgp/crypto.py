#!/usr/bin/env python3
"""
pgpverify Signature Cryptography

Hashing of signed material and public key verification of OpenPGP
signatures using the cryptography library.

Document signatures are verified by streaming the signed content into a
SignatureHasher; key certifications (subkey bindings and revocations) are
hashed from the key packets themselves.
"""
from __future__ import annotations

import hashlib
import logging
from typing import Optional

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature

from pgpverify.pgp.packets import (
    PK_DSA,
    PK_ECDSA,
    PK_ED448,
    PK_ED25519,
    PK_EDDSA_LEGACY,
    RSA_ALGORITHMS,
    SIG_CERTIFICATION_REVOCATION,
    SIG_CERTIFICATIONS,
    SIG_DIRECT_KEY,
    SIG_KEY_REVOCATION,
    SIG_TEXT,
    PGPError,
    PublicKey,
    Signature,
    UserId,
)

logger = logging.getLogger(__name__)

# OpenPGP hash algorithm id -> (hashlib name, DER DigestInfo prefix for RSA)
HASHES = {
    1: ("md5", bytes.fromhex("3020300c06082a864886f70d020505000410")),
    2: ("sha1", bytes.fromhex("3021300906052b0e03021a05000414")),
    3: ("ripemd160", bytes.fromhex("3021300906052b2403020105000414")),
    8: ("sha256", bytes.fromhex("3031300d060960864801650304020105000420")),
    9: ("sha384", bytes.fromhex("3041300d060960864801650304020205000430")),
    10: ("sha512", bytes.fromhex("3051300d060960864801650304020305000440")),
    11: ("sha224", bytes.fromhex("302d300d06096086480165030402040500041c")),
    12: ("sha3_256", bytes.fromhex("3031300d060960864801650304020805000420")),
    14: ("sha3_512", bytes.fromhex("3051300d060960864801650304020a05000440")),
}

_PREHASHED = {
    1: hashes.MD5,
    2: hashes.SHA1,
    8: hashes.SHA256,
    9: hashes.SHA384,
    10: hashes.SHA512,
    11: hashes.SHA224,
    12: hashes.SHA3_256,
    14: hashes.SHA3_512,
}

_EC_CURVES = {
    "NIST P-256": ec.SECP256R1,
    "NIST P-384": ec.SECP384R1,
    "NIST P-521": ec.SECP521R1,
    "brainpoolP256r1": ec.BrainpoolP256R1,
    "brainpoolP384r1": ec.BrainpoolP384R1,
    "brainpoolP512r1": ec.BrainpoolP512R1,
}


def new_hash(hash_algorithm: int):
    """Create a hashlib object for an OpenPGP hash algorithm id."""
    entry = HASHES.get(hash_algorithm)
    if entry is None:
        raise PGPError(f"Unsupported hash algorithm: {hash_algorithm}")
    try:
        return hashlib.new(entry[0])
    except ValueError as e:
        raise PGPError(f"Hash algorithm {entry[0]} is not available: {e}") from e


class SignatureHasher:
    """Accumulates signed content for one signature.

    Text signatures (type 0x01) are hashed with canonical CRLF line
    endings; binary signatures hash the bytes as given.
    """

    def __init__(self, signature: Signature):
        self.signature = signature
        self._hash = new_hash(signature.hash_algorithm)
        self._text = signature.sig_type == SIG_TEXT
        self._pending_cr = False

    def update(self, data: bytes) -> None:
        if not self._text:
            self._hash.update(data)
            return
        self._hash.update(self._canonicalize(data))

    def _canonicalize(self, data: bytes) -> bytes:
        out = bytearray()
        for byte in data:
            if byte == 0x0A:
                if not self._pending_cr:
                    out += b"\r"
                out.append(byte)
                self._pending_cr = False
            else:
                out.append(byte)
                self._pending_cr = byte == 0x0D
        return bytes(out)

    def digest(self) -> bytes:
        final = self._hash.copy()
        final.update(self.signature.hash_trailer())
        return final.digest()

    def verify(self, key: PublicKey) -> bool:
        """True when the signature over the accumulated content is valid."""
        return verify_digest(self.signature, key, self.digest())


def certification_digest(
    signature: Signature,
    primary: PublicKey,
    subkey: Optional[PublicKey] = None,
    user_id: Optional[UserId] = None,
) -> bytes:
    """Digest for a signature made over key packets."""
    digest = new_hash(signature.hash_algorithm)
    digest.update(primary.hash_prefix())

    if signature.sig_type in SIG_CERTIFICATIONS or signature.sig_type == SIG_CERTIFICATION_REVOCATION:
        if user_id is None:
            raise PGPError("Certification signature needs a user id")
        if signature.version == 4:
            prefix = b"\xd1" if user_id.is_attribute else b"\xb4"
            digest.update(prefix + len(user_id.raw).to_bytes(4, "big"))
        digest.update(user_id.raw)
    elif signature.sig_type not in (SIG_KEY_REVOCATION, SIG_DIRECT_KEY):
        if subkey is None:
            raise PGPError(f"Signature type 0x{signature.sig_type:02X} needs a subkey")
        digest.update(subkey.hash_prefix())

    digest.update(signature.hash_trailer())
    return digest.digest()


def verify_certification(
    signature: Signature,
    signer: PublicKey,
    primary: PublicKey,
    subkey: Optional[PublicKey] = None,
    user_id: Optional[UserId] = None,
) -> bool:
    return verify_digest(signature, signer, certification_digest(signature, primary, subkey, user_id))


def verify_digest(signature: Signature, key: PublicKey, digest: bytes) -> bool:
    """Check ``signature`` over a precomputed ``digest`` with ``key``.

    Returns:
        False when the signature does not match.

    Raises:
        PGPError: For unsupported algorithms or unusable key material.
    """
    if digest[:2] != signature.left16:
        logger.debug("Signature left 16 bits do not match digest")
        return False

    algorithm = signature.key_algorithm
    try:
        if algorithm in RSA_ALGORITHMS:
            return _verify_rsa(signature, key, digest)
        if algorithm == PK_DSA:
            public = dsa.DSAPublicNumbers(
                key.material["y"],
                dsa.DSAParameterNumbers(key.material["p"], key.material["q"], key.material["g"]),
            ).public_key()
            r, s = signature.values
            public.verify(encode_dss_signature(r, s), digest, Prehashed(_prehashed(signature)))
            return True
        if algorithm == PK_ECDSA:
            curve = _EC_CURVES.get(key.curve)
            if curve is None:
                raise PGPError(f"Unsupported ECDSA curve: {key.curve}")
            public = ec.EllipticCurvePublicKey.from_encoded_point(curve(), key.material["point"])
            r, s = signature.values
            public.verify(encode_dss_signature(r, s), digest, ec.ECDSA(Prehashed(_prehashed(signature))))
            return True
        if algorithm == PK_EDDSA_LEGACY:
            point = key.material["point"]
            if key.curve != "Ed25519" or len(point) != 33 or point[0] != 0x40:
                raise PGPError(f"Unsupported EdDSA key on curve {key.curve}")
            r, s = signature.values
            raw = r.to_bytes(32, "big") + s.to_bytes(32, "big")
            ed25519.Ed25519PublicKey.from_public_bytes(point[1:]).verify(raw, digest)
            return True
        if algorithm == PK_ED25519:
            ed25519.Ed25519PublicKey.from_public_bytes(key.material["point"]).verify(
                signature.values[0], digest
            )
            return True
        if algorithm == PK_ED448:
            ed448.Ed448PublicKey.from_public_bytes(key.material["point"]).verify(
                signature.values[0], digest
            )
            return True
    except InvalidSignature:
        return False
    except (UnsupportedAlgorithm, ValueError, KeyError, OverflowError) as e:
        raise PGPError(f"Can't verify signature with key algorithm {algorithm}: {e}") from e

    raise PGPError(f"Unsupported key algorithm: {algorithm}")


def _prehashed(signature: Signature) -> hashes.HashAlgorithm:
    algorithm = _PREHASHED.get(signature.hash_algorithm)
    if algorithm is None:
        raise PGPError(f"Hash algorithm {signature.hash_algorithm} not supported for this key type")
    return algorithm()


def _verify_rsa(signature: Signature, key: PublicKey, digest: bytes) -> bool:
    n, e = key.material["n"], key.material["e"]
    public = rsa.RSAPublicNumbers(e, n).public_key()
    size = (n.bit_length() + 7) // 8
    value = signature.values[0]
    if value >= n:
        return False
    recovered = public.recover_data_from_signature(
        value.to_bytes(size, "big"), padding.PKCS1v15(), None
    )
    return recovered == HASHES[signature.hash_algorithm][1] + digest
