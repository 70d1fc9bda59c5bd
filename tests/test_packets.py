"""
Tests for the OpenPGP packet reader.

Verifies:
- ASCII armor decoding with CRC24 checks
- Old and new packet formats, including partial body lengths
- Compressed data is unwrapped
- Key rings and standalone signatures are grouped correctly
- Signature subpackets (creation time, issuer, revocation reason)
"""
import zlib

import pytest

from pgpverify.pgp.packets import (
    PK_ECDSA,
    PK_EDDSA_LEGACY,
    PK_RSA,
    SIG_KEY_REVOCATION,
    TAG_LITERAL,
    TAG_USER_ID,
    KeyRing,
    PGPFormatError,
    armor,
    crc24,
    dearmor,
    iter_packets,
    parse_signature,
    read_objects,
    read_packets,
)

from pgp_fixtures import (
    Certificate,
    key_revocation,
    make_signature,
    old_packet,
    packet,
    revocation_certificate,
)

pytestmark = pytest.mark.pgp


class TestArmor:
    def test_crc24_of_empty_input(self):
        assert crc24(b"") == 0xB704CE

    def test_armor_round_trip(self):
        data = bytes(range(256)) * 3
        assert dearmor(armor(data).encode("ascii")) == data

    def test_headers_are_skipped(self):
        text = armor(b"hello").replace("\n\n", "\nVersion: Test 1.0\nComment: x\n\n", 1)
        assert dearmor(text.encode("ascii")) == b"hello"

    def test_checksum_mismatch(self):
        lines = armor(b"hello world").splitlines()
        checksum_index = next(i for i, line in enumerate(lines) if line.startswith("="))
        lines[checksum_index] = "=AAAA"
        with pytest.raises(PGPFormatError, match="checksum mismatch"):
            dearmor("\n".join(lines).encode("ascii"))

    def test_missing_end_line(self):
        text = armor(b"hello").split("-----END")[0]
        with pytest.raises(PGPFormatError, match="no END line"):
            dearmor(text.encode("ascii"))

    def test_not_armored(self):
        with pytest.raises(PGPFormatError):
            dearmor(b"just text")

    def test_multiple_blocks_concatenate(self):
        data = (armor(packet(TAG_USER_ID, b"a")) + armor(packet(TAG_USER_ID, b"b"))).encode("ascii")
        assert [p.body for p in read_packets(data)] == [b"a", b"b"]


class TestPacketFraming:
    def test_new_format_lengths(self):
        for size in (0, 191, 192, 8383, 8384, 70000):
            body = b"x" * size
            (parsed,) = list(iter_packets(packet(TAG_USER_ID, body)))
            assert parsed.tag == TAG_USER_ID
            assert parsed.body == body

    def test_old_format(self):
        (parsed,) = list(iter_packets(old_packet(TAG_USER_ID, b"user")))
        assert parsed.tag == TAG_USER_ID
        assert parsed.body == b"user"

    def test_old_format_one_byte_length(self):
        data = bytes([0x80 | (TAG_USER_ID << 2)]) + b"\x03abc"
        assert list(iter_packets(data))[0].body == b"abc"

    def test_partial_body_lengths(self):
        # 512 byte partial chunk followed by a final 3 byte chunk
        data = bytes([0xC0 | TAG_LITERAL, 0xE9]) + b"a" * 512 + b"\x03bcd"
        (parsed,) = list(iter_packets(data))
        assert parsed.body == b"a" * 512 + b"bcd"

    def test_truncated_packet(self):
        with pytest.raises(PGPFormatError, match="Truncated"):
            list(iter_packets(packet(TAG_USER_ID, b"abcdef")[:-2]))

    def test_invalid_header(self):
        with pytest.raises(PGPFormatError, match="Invalid packet header"):
            list(iter_packets(b"\x01\x02"))

    @pytest.mark.parametrize("algorithm,compress", [
        (1, lambda d: zlib.compress(d)[2:-4]),
        (2, zlib.compress),
        (0, lambda d: d),
    ])
    def test_compressed_packets_are_unwrapped(self, algorithm, compress):
        inner = packet(TAG_USER_ID, b"inside")
        data = packet(8, bytes([algorithm]) + compress(inner))
        assert [p.body for p in read_packets(data)] == [b"inside"]

    def test_unknown_compression(self):
        with pytest.raises(PGPFormatError, match="Unsupported compression"):
            list(read_packets(packet(8, b"\x09abc")))


class TestReadObjects:
    def test_certificate_forms_one_ring(self, ed_certificate, ed_master, ed_subkey):
        (ring,) = read_objects(ed_certificate.to_bytes())
        assert isinstance(ring, KeyRing)
        assert [k.fingerprint for k in ring] == [ed_master.fingerprint, ed_subkey.fingerprint]
        assert ring.master.is_master
        assert not ring.keys[1].is_master
        assert ring.master.user_ids[0].text == "Bob Example <bob@example.com>"
        assert ring.master.algorithm == PK_EDDSA_LEGACY
        assert ring.master.curve == "Ed25519"
        assert ring.keys[1].signatures[0].sig_type == 0x18

    def test_rsa_key_details(self, rsa_certificate, rsa_master):
        (ring,) = read_objects(rsa_certificate.armored())
        key = ring.master
        assert key.algorithm == PK_RSA
        assert key.bits == 2048
        assert key.fingerprint == rsa_master.fingerprint
        assert key.key_id == rsa_master.key_id
        assert key.created.timestamp() == rsa_master.created

    def test_ecdsa_key_details(self, ec_master):
        (ring,) = read_objects(Certificate(ec_master).to_bytes())
        assert ring.master.algorithm == PK_ECDSA
        assert ring.master.curve == "NIST P-256"
        assert ring.master.bits == 256

    def test_revocation_certificate_is_a_signature_list(self, ed_master):
        (signatures,) = read_objects(revocation_certificate(ed_master))
        assert isinstance(signatures, list)
        assert signatures[0].sig_type == SIG_KEY_REVOCATION

    def test_two_rings(self, ed_master, ec_master):
        data = Certificate(ed_master).to_bytes() + Certificate(ec_master).to_bytes()
        rings = read_objects(data)
        assert [r.master.fingerprint for r in rings] == [ed_master.fingerprint, ec_master.fingerprint]

    def test_secret_keys_rejected(self, ed_master):
        with pytest.raises(PGPFormatError, match="Secret key"):
            read_objects(packet(5, ed_master.body))

    def test_subkey_without_primary(self, ed_subkey):
        with pytest.raises(PGPFormatError, match="without primary key"):
            read_objects(packet(14, ed_subkey.body))


class TestSignatureParsing:
    def test_subpackets(self, ed_master):
        body = make_signature(ed_master, 0x00, b"data", created=1700000000)
        signature = parse_signature(body)
        assert signature.version == 4
        assert signature.sig_type == 0x00
        assert signature.hash_algorithm == 8
        assert signature.creation_time.timestamp() == 1700000000
        assert signature.issuer_fingerprint == (4, ed_master.fingerprint)
        assert signature.unhashed_issuer_key_id == ed_master.key_id
        assert signature.hashed_issuer_key_id is None
        assert signature.key_id == ed_master.key_id
        assert len(signature.values) == 2

    def test_revocation_reason(self, ed_master):
        signature = parse_signature(key_revocation(ed_master, reason=2, text="leaked"))
        assert signature.revocation_reason == (2, "leaked")

    def test_hash_trailer(self, ed_master):
        body = make_signature(ed_master, 0x00, b"data")
        signature = parse_signature(body)
        hashed_length = int.from_bytes(body[4:6], "big")
        assert signature.hashed_data == body[:6 + hashed_length]
        assert signature.hash_trailer() == (
            signature.hashed_data + b"\x04\xff" + len(signature.hashed_data).to_bytes(4, "big")
        )

    def test_v3_signature(self):
        body = (
            b"\x03\x05\x00" + (1600000000).to_bytes(4, "big")
            + bytes.fromhex("0123456789ABCDEF") + b"\x01\x08" + b"\xaa\xbb"
            + (8).to_bytes(2, "big") + b"\xff"
        )
        signature = parse_signature(body)
        assert signature.version == 3
        assert signature.key_id == 0x0123456789ABCDEF
        assert signature.creation_time.timestamp() == 1600000000
        assert signature.values == [0xFF]
        assert signature.hash_trailer() == body[2:7]

    def test_unsupported_version(self):
        with pytest.raises(PGPFormatError, match="Unsupported signature version"):
            parse_signature(b"\x05\x00")
