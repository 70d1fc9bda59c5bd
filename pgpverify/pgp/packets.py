#!/usr/bin/env python3
"""
pgpverify OpenPGP Packet Reader

Decodes OpenPGP data (RFC 4880 / RFC 9580) far enough to verify detached
signatures against public keys:
- ASCII armor with CRC24 checksum
- Old and new packet headers, including partial body lengths
- Public keys and subkeys (v3 RSA and v4), user ids and signatures
- Compressed data (ZIP, ZLIB, BZip2) wrapping any of the above

Secret material, encryption and literal message signing are not handled.
"""
from __future__ import annotations

import base64
import bz2
import hashlib
import logging
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple, Union

from pgpverify.pgp.keyid import low64

logger = logging.getLogger(__name__)


class PGPError(Exception):
    """Raised when PGP material is present but unusable."""


class PGPFormatError(PGPError):
    """Raised when bytes cannot be decoded as OpenPGP packets."""


# Packet tags
TAG_SIGNATURE = 2
TAG_SECRET_KEY = 5
TAG_PUBLIC_KEY = 6
TAG_SECRET_SUBKEY = 7
TAG_COMPRESSED = 8
TAG_MARKER = 10
TAG_LITERAL = 11
TAG_TRUST = 12
TAG_USER_ID = 13
TAG_PUBLIC_SUBKEY = 14
TAG_USER_ATTRIBUTE = 17
TAG_ONE_PASS_SIGNATURE = 4
TAG_PADDING = 21

# Signature types
SIG_BINARY = 0x00
SIG_TEXT = 0x01
SIG_CERTIFICATIONS = (0x10, 0x11, 0x12, 0x13)
SIG_SUBKEY_BINDING = 0x18
SIG_PRIMARY_KEY_BINDING = 0x19
SIG_DIRECT_KEY = 0x1F
SIG_KEY_REVOCATION = 0x20
SIG_SUBKEY_REVOCATION = 0x28
SIG_CERTIFICATION_REVOCATION = 0x30

# Signature subpacket types
SUB_CREATION_TIME = 2
SUB_KEY_EXPIRATION = 9
SUB_ISSUER = 16
SUB_REVOCATION_REASON = 29
SUB_EMBEDDED_SIGNATURE = 32
SUB_ISSUER_FINGERPRINT = 33

# Public key algorithms
PK_RSA = 1
PK_RSA_ENCRYPT = 2
PK_RSA_SIGN = 3
PK_ELGAMAL_ENCRYPT = 16
PK_DSA = 17
PK_ECDH = 18
PK_ECDSA = 19
PK_ELGAMAL = 20
PK_EDDSA_LEGACY = 22
PK_X25519 = 25
PK_X448 = 26
PK_ED25519 = 27
PK_ED448 = 28

RSA_ALGORITHMS = (PK_RSA, PK_RSA_ENCRYPT, PK_RSA_SIGN)

# Curve OIDs (DER body without tag and length) and their sizes in bits
CURVES: Dict[bytes, Tuple[str, int]] = {
    bytes.fromhex("2A8648CE3D030107"): ("NIST P-256", 256),
    bytes.fromhex("2B81040022"): ("NIST P-384", 384),
    bytes.fromhex("2B81040023"): ("NIST P-521", 521),
    bytes.fromhex("2B2403030208010107"): ("brainpoolP256r1", 256),
    bytes.fromhex("2B240303020801010B"): ("brainpoolP384r1", 384),
    bytes.fromhex("2B240303020801010D"): ("brainpoolP512r1", 512),
    bytes.fromhex("2B06010401DA470F01"): ("Ed25519", 256),
    bytes.fromhex("2B060104019755010501"): ("Curve25519", 256),
}

_COMPRESSION_UNCOMPRESSED = 0
_COMPRESSION_ZIP = 1
_COMPRESSION_ZLIB = 2
_COMPRESSION_BZIP2 = 3


def _timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


# =============================================================================
# ASCII armor
# =============================================================================

def crc24(data: bytes) -> int:
    """OpenPGP armor checksum."""
    crc = 0xB704CE
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= 0x1864CFB
    return crc & 0xFFFFFF


def is_armored(data: bytes) -> bool:
    return b"-----BEGIN PGP " in data[:4096]


def dearmor(data: bytes) -> bytes:
    """Decode every armored block in ``data`` and concatenate the packets.

    Raises:
        PGPFormatError: On a missing footer, bad base64 or checksum mismatch.
    """
    lines = data.decode("ascii", errors="replace").splitlines()
    out = bytearray()
    found = False
    i = 0
    while i < len(lines):
        line = lines[i].strip()
        i += 1
        if not (line.startswith("-----BEGIN PGP ") and line.endswith("-----")):
            continue
        found = True

        # Armor headers ("Version: ...", "Comment: ...") up to a blank line
        while i < len(lines) and ":" in lines[i] and lines[i].strip():
            i += 1

        body: List[str] = []
        checksum: Optional[str] = None
        terminated = False
        while i < len(lines):
            line = lines[i].strip()
            i += 1
            if line.startswith("-----END PGP "):
                terminated = True
                break
            if not line:
                continue
            if line.startswith("=") and len(line) == 5:
                checksum = line[1:]
                continue
            body.append(line)
        if not terminated:
            raise PGPFormatError("Armored block has no END line")

        try:
            block = base64.b64decode("".join(body), validate=True)
        except ValueError as e:
            raise PGPFormatError(f"Invalid armor body: {e}") from e

        if checksum is not None:
            try:
                expected = int.from_bytes(base64.b64decode(checksum, validate=True), "big")
            except ValueError as e:
                raise PGPFormatError(f"Invalid armor checksum: {checksum}") from e
            if expected != crc24(block):
                raise PGPFormatError("Armor checksum mismatch")
        out += block

    if not found:
        raise PGPFormatError("No armored OpenPGP data found")
    return bytes(out)


def armor(data: bytes, kind: str = "PUBLIC KEY BLOCK") -> str:
    """Encode packets as an ASCII armored block."""
    encoded = base64.b64encode(data).decode("ascii")
    lines = [f"-----BEGIN PGP {kind}-----", ""]
    lines.extend(encoded[i:i + 64] for i in range(0, len(encoded), 64))
    lines.append("=" + base64.b64encode(crc24(data).to_bytes(3, "big")).decode("ascii"))
    lines.append(f"-----END PGP {kind}-----")
    return "\n".join(lines) + "\n"


# =============================================================================
# Packet framing
# =============================================================================

@dataclass
class Packet:
    tag: int
    body: bytes


def _take(data: bytes, pos: int, length: int) -> bytes:
    if pos + length > len(data):
        raise PGPFormatError(
            f"Truncated packet: need {length} bytes at offset {pos}, have {len(data) - pos}"
        )
    return data[pos:pos + length]


def _new_format_length(data: bytes, pos: int) -> Tuple[int, int, bool]:
    """Decode a new-format length. Returns (length, new_pos, is_partial)."""
    first = _take(data, pos, 1)[0]
    if first < 192:
        return first, pos + 1, False
    if first < 224:
        second = _take(data, pos + 1, 1)[0]
        return ((first - 192) << 8) + second + 192, pos + 2, False
    if first == 255:
        return int.from_bytes(_take(data, pos + 1, 4), "big"), pos + 5, False
    return 1 << (first & 0x1F), pos + 1, True


def iter_packets(data: bytes) -> Iterator[Packet]:
    """Split binary OpenPGP data into packets."""
    pos = 0
    end = len(data)
    while pos < end:
        header = data[pos]
        if not header & 0x80:
            raise PGPFormatError(f"Invalid packet header 0x{header:02X} at offset {pos}")
        pos += 1

        if header & 0x40:
            tag = header & 0x3F
            body = bytearray()
            while True:
                length, pos, partial = _new_format_length(data, pos)
                body += _take(data, pos, length)
                pos += length
                if not partial:
                    break
            yield Packet(tag, bytes(body))
            continue

        tag = (header >> 2) & 0x0F
        length_type = header & 0x03
        if length_type == 3:
            length = end - pos
        else:
            size = (1, 2, 4)[length_type]
            length = int.from_bytes(_take(data, pos, size), "big")
            pos += size
        yield Packet(tag, _take(data, pos, length))
        pos += length


class _Reader:
    """Cursor over a packet body."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def byte(self) -> int:
        value = _take(self.data, self.pos, 1)[0]
        self.pos += 1
        return value

    def read(self, length: int) -> bytes:
        value = _take(self.data, self.pos, length)
        self.pos += length
        return value

    def uint(self, size: int) -> int:
        return int.from_bytes(self.read(size), "big")

    def mpi(self) -> int:
        bits = self.uint(2)
        return int.from_bytes(self.read((bits + 7) // 8), "big")

    def mpi_bytes(self) -> bytes:
        bits = self.uint(2)
        return self.read((bits + 7) // 8)

    def rest(self) -> bytes:
        value = self.data[self.pos:]
        self.pos = len(self.data)
        return value


# =============================================================================
# Signatures
# =============================================================================

@dataclass
class Subpacket:
    type: int
    critical: bool
    data: bytes


def _parse_subpackets(data: bytes) -> List[Subpacket]:
    result: List[Subpacket] = []
    pos = 0
    while pos < len(data):
        first = data[pos]
        if first < 192:
            length, pos = first, pos + 1
        elif first < 255:
            length = ((first - 192) << 8) + _take(data, pos + 1, 1)[0] + 192
            pos += 2
        else:
            length = int.from_bytes(_take(data, pos + 1, 4), "big")
            pos += 5
        if length == 0:
            raise PGPFormatError("Zero length signature subpacket")
        raw = _take(data, pos, length)
        pos += length
        result.append(Subpacket(type=raw[0] & 0x7F, critical=bool(raw[0] & 0x80), data=raw[1:]))
    return result


@dataclass
class Signature:
    """A parsed signature packet (v3 or v4)."""

    version: int
    sig_type: int
    key_algorithm: int
    hash_algorithm: int
    left16: bytes
    values: List[Union[int, bytes]]
    hashed_data: bytes
    hashed_subpackets: List[Subpacket] = field(default_factory=list)
    unhashed_subpackets: List[Subpacket] = field(default_factory=list)
    v3_creation_time: Optional[int] = None
    v3_key_id: Optional[int] = None

    def _find(self, subpackets: List[Subpacket], kind: int) -> Optional[Subpacket]:
        for sub in subpackets:
            if sub.type == kind:
                return sub
        return None

    @property
    def creation_time(self) -> Optional[datetime]:
        if self.v3_creation_time is not None:
            return _timestamp(self.v3_creation_time)
        sub = self._find(self.hashed_subpackets, SUB_CREATION_TIME)
        if sub is None or len(sub.data) != 4:
            return None
        return _timestamp(int.from_bytes(sub.data, "big"))

    @property
    def hashed_issuer_key_id(self) -> Optional[int]:
        sub = self._find(self.hashed_subpackets, SUB_ISSUER)
        return int.from_bytes(sub.data, "big", signed=True) if sub and len(sub.data) == 8 else None

    @property
    def unhashed_issuer_key_id(self) -> Optional[int]:
        sub = self._find(self.unhashed_subpackets, SUB_ISSUER)
        return int.from_bytes(sub.data, "big", signed=True) if sub and len(sub.data) == 8 else None

    @property
    def key_id(self) -> int:
        """Issuer key id as signed 64-bit value, 0 when absent."""
        if self.v3_key_id is not None:
            return self.v3_key_id
        for candidate in (self.hashed_issuer_key_id, self.unhashed_issuer_key_id):
            if candidate:
                return candidate
        fingerprint = self.issuer_fingerprint
        if fingerprint is not None:
            return low64(fingerprint[1])
        return 0

    @property
    def issuer_fingerprint(self) -> Optional[Tuple[int, bytes]]:
        """(key version, fingerprint) from the hashed area, else the unhashed one."""
        sub = self._find(self.hashed_subpackets, SUB_ISSUER_FINGERPRINT) or self._find(
            self.unhashed_subpackets, SUB_ISSUER_FINGERPRINT
        )
        if sub is None or len(sub.data) < 2:
            return None
        return sub.data[0], sub.data[1:]

    @property
    def revocation_reason(self) -> Optional[Tuple[int, str]]:
        sub = self._find(self.hashed_subpackets, SUB_REVOCATION_REASON)
        if sub is None or not sub.data:
            return None
        return sub.data[0], sub.data[1:].decode("utf-8", errors="replace")

    def hash_trailer(self) -> bytes:
        """Bytes appended to the hashed content after the signed material."""
        if self.version == 3:
            return self.hashed_data
        return self.hashed_data + bytes([self.version, 0xFF]) + len(self.hashed_data).to_bytes(4, "big")


def parse_signature(body: bytes) -> Signature:
    reader = _Reader(body)
    version = reader.byte()

    if version in (2, 3):
        if reader.byte() != 5:
            raise PGPFormatError("Invalid v3 signature hashed length")
        hashed = reader.read(5)
        key_id = int.from_bytes(reader.read(8), "big", signed=True)
        key_algorithm = reader.byte()
        hash_algorithm = reader.byte()
        left16 = reader.read(2)
        return Signature(
            version=3,
            sig_type=hashed[0],
            key_algorithm=key_algorithm,
            hash_algorithm=hash_algorithm,
            left16=left16,
            values=_signature_values(reader, key_algorithm),
            hashed_data=hashed,
            v3_creation_time=int.from_bytes(hashed[1:5], "big"),
            v3_key_id=key_id,
        )

    if version != 4:
        raise PGPFormatError(f"Unsupported signature version: {version}")

    sig_type = reader.byte()
    key_algorithm = reader.byte()
    hash_algorithm = reader.byte()
    hashed_length = reader.uint(2)
    hashed_area = reader.read(hashed_length)
    unhashed_area = reader.read(reader.uint(2))
    left16 = reader.read(2)

    return Signature(
        version=4,
        sig_type=sig_type,
        key_algorithm=key_algorithm,
        hash_algorithm=hash_algorithm,
        left16=left16,
        values=_signature_values(reader, key_algorithm),
        hashed_data=body[:6 + hashed_length],
        hashed_subpackets=_parse_subpackets(hashed_area),
        unhashed_subpackets=_parse_subpackets(unhashed_area),
    )


def _signature_values(reader: _Reader, key_algorithm: int) -> List[Union[int, bytes]]:
    if key_algorithm in RSA_ALGORITHMS:
        return [reader.mpi()]
    if key_algorithm in (PK_DSA, PK_ECDSA, PK_EDDSA_LEGACY):
        return [reader.mpi(), reader.mpi()]
    if key_algorithm == PK_ED25519:
        return [reader.read(64)]
    if key_algorithm == PK_ED448:
        return [reader.read(114)]
    # Unknown algorithm: keep the raw value so the packet still parses
    return [reader.rest()]


# =============================================================================
# Keys
# =============================================================================

@dataclass
class UserId:
    raw: bytes
    is_attribute: bool = False
    signatures: List[Signature] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.raw.decode("utf-8", errors="replace")


@dataclass
class PublicKey:
    """A public key or subkey packet with the signatures attached to it."""

    version: int
    created: datetime
    algorithm: int
    body: bytes
    fingerprint: bytes
    key_id: int
    bits: int
    material: Dict[str, Union[int, bytes]]
    is_master: bool = True
    curve: Optional[str] = None
    user_ids: List[UserId] = field(default_factory=list)
    signatures: List[Signature] = field(default_factory=list)

    def signatures_of_type(self, sig_type: int) -> List[Signature]:
        return [s for s in self.signatures if s.sig_type == sig_type]

    @property
    def has_revocation(self) -> bool:
        kind = SIG_KEY_REVOCATION if self.is_master else SIG_SUBKEY_REVOCATION
        return any(s.sig_type == kind for s in self.signatures)

    def hash_prefix(self) -> bytes:
        """Key packet as it is fed to certification hashes."""
        return b"\x99" + len(self.body).to_bytes(2, "big") + self.body


def parse_public_key(body: bytes, is_master: bool = True) -> PublicKey:
    reader = _Reader(body)
    version = reader.byte()
    if version not in (2, 3, 4):
        raise PGPFormatError(f"Unsupported public key version: {version}")

    created = _timestamp(reader.uint(4))
    if version < 4:
        reader.uint(2)  # validity period in days
    algorithm = reader.byte()

    material: Dict[str, Union[int, bytes]] = {}
    curve: Optional[str] = None
    bits = 0

    if algorithm in RSA_ALGORITHMS:
        raw_n = reader.mpi_bytes()
        raw_e = reader.mpi_bytes()
        material["n"] = int.from_bytes(raw_n, "big")
        material["e"] = int.from_bytes(raw_e, "big")
        bits = material["n"].bit_length()
    elif algorithm == PK_DSA:
        for name in ("p", "q", "g", "y"):
            material[name] = reader.mpi()
        bits = material["p"].bit_length()
    elif algorithm in (PK_ELGAMAL, PK_ELGAMAL_ENCRYPT):
        for name in ("p", "g", "y"):
            material[name] = reader.mpi()
        bits = material["p"].bit_length()
    elif algorithm in (PK_ECDSA, PK_ECDH, PK_EDDSA_LEGACY):
        oid = reader.read(reader.byte())
        material["oid"] = oid
        material["point"] = reader.mpi_bytes()
        curve, bits = CURVES.get(oid, (f"OID {oid.hex()}", 0))
        reader.rest()  # ECDH KDF parameters
    elif algorithm in (PK_ED25519, PK_X25519):
        material["point"] = reader.read(32)
        curve, bits = ("Ed25519" if algorithm == PK_ED25519 else "Curve25519"), 256
    elif algorithm in (PK_ED448, PK_X448):
        material["point"] = reader.read(57 if algorithm == PK_ED448 else 56)
        curve, bits = ("Ed448" if algorithm == PK_ED448 else "Curve448"), 448
    else:
        material["raw"] = reader.rest()

    if version < 4:
        if algorithm not in RSA_ALGORITHMS:
            raise PGPFormatError("Version 3 keys must be RSA")
        fingerprint = hashlib.md5(raw_n + raw_e).digest()  # noqa: S324
        key_id = low64(raw_n)
    else:
        fingerprint = hashlib.sha1(b"\x99" + len(body).to_bytes(2, "big") + body).digest()  # noqa: S324
        key_id = low64(fingerprint)

    return PublicKey(
        version=version,
        created=created,
        algorithm=algorithm,
        body=body,
        fingerprint=fingerprint,
        key_id=key_id,
        bits=bits,
        material=material,
        is_master=is_master,
        curve=curve,
    )


@dataclass
class KeyRing:
    """A transferable public key: master key first, then its subkeys."""

    keys: List[PublicKey]

    @property
    def master(self) -> PublicKey:
        return self.keys[0]

    def get_key(self, fingerprint: bytes) -> Optional[PublicKey]:
        for key in self.keys:
            if key.fingerprint == fingerprint:
                return key
        return None

    def get_key_by_id(self, key_id: int) -> Optional[PublicKey]:
        for key in self.keys:
            if key.key_id == key_id:
                return key
        return None

    def __iter__(self) -> Iterator[PublicKey]:
        return iter(self.keys)


# =============================================================================
# Object stream
# =============================================================================

def _decompress(body: bytes) -> bytes:
    if not body:
        raise PGPFormatError("Empty compressed data packet")
    algorithm, payload = body[0], body[1:]
    try:
        if algorithm == _COMPRESSION_UNCOMPRESSED:
            return payload
        if algorithm == _COMPRESSION_ZIP:
            return zlib.decompress(payload, -15)
        if algorithm == _COMPRESSION_ZLIB:
            return zlib.decompress(payload)
        if algorithm == _COMPRESSION_BZIP2:
            return bz2.decompress(payload)
    except (zlib.error, OSError, ValueError) as e:
        raise PGPFormatError(f"Corrupt compressed data: {e}") from e
    raise PGPFormatError(f"Unsupported compression algorithm: {algorithm}")


def _binary(data: bytes) -> bytes:
    if data and not data[0] & 0x80 and is_armored(data):
        return dearmor(data)
    return data


def read_packets(data: bytes) -> Iterator[Packet]:
    """Yield packets from armored or binary data, unwrapping compressed packets."""
    for packet in iter_packets(_binary(data)):
        if packet.tag == TAG_COMPRESSED:
            yield from read_packets(_decompress(packet.body))
        else:
            yield packet


def read_objects(data: bytes) -> List[Union[KeyRing, List[Signature]]]:
    """Group packets into key rings and standalone signature lists.

    Signatures that follow a key, user id or subkey packet are attached to
    it. Signatures outside any key ring form a signature list.
    """
    objects: List[Union[KeyRing, List[Signature]]] = []
    ring: Optional[KeyRing] = None
    current_key: Optional[PublicKey] = None
    current_uid: Optional[UserId] = None
    loose: Optional[List[Signature]] = None

    for packet in read_packets(data):
        if packet.tag == TAG_PUBLIC_KEY:
            current_key = parse_public_key(packet.body, is_master=True)
            ring = KeyRing(keys=[current_key])
            current_uid = None
            loose = None
            objects.append(ring)
        elif packet.tag == TAG_PUBLIC_SUBKEY:
            if ring is None:
                raise PGPFormatError("Public subkey without primary key")
            current_key = parse_public_key(packet.body, is_master=False)
            ring.keys.append(current_key)
            current_uid = None
        elif packet.tag in (TAG_USER_ID, TAG_USER_ATTRIBUTE):
            if ring is None:
                raise PGPFormatError("User id without primary key")
            current_uid = UserId(raw=packet.body, is_attribute=packet.tag == TAG_USER_ATTRIBUTE)
            ring.master.user_ids.append(current_uid)
        elif packet.tag == TAG_SIGNATURE:
            signature = parse_signature(packet.body)
            if ring is None:
                if loose is None:
                    loose = []
                    objects.append(loose)
                loose.append(signature)
            elif current_uid is not None:
                current_uid.signatures.append(signature)
            else:
                current_key.signatures.append(signature)
        elif packet.tag in (TAG_SECRET_KEY, TAG_SECRET_SUBKEY):
            raise PGPFormatError("Secret key material is not accepted")
        else:
            # trust, marker, padding, literal data and one-pass headers
            logger.debug("Skipping OpenPGP packet with tag %d", packet.tag)
            if packet.tag in (TAG_LITERAL, TAG_ONE_PASS_SIGNATURE):
                ring = None
                current_key = None
                current_uid = None

    return objects
