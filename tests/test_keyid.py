"""
Tests for fingerprint hex encoding and KeyId.

Verifies:
- Hex round trip and the canonical 0x upper-case form
- Malformed hex strings are rejected
- The signed 64-bit key id is taken from the fingerprint tail
- Fingerprint and long id forms of the same key compare equal
- Cache shard paths
"""
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from pgpverify.pgp.keyid import KeyId, fingerprint_to_hex, hex_to_fingerprint, low64, to_signed64

pytestmark = pytest.mark.pgp

settings.register_profile("pgpverify", deadline=None)
settings.load_profile("pgpverify")

FINGERPRINT = bytes.fromhex("58E79B6ABC762159DC0B1591164BD2247B936711")


class TestHexCodec:
    def test_to_hex_is_prefixed_upper_case(self):
        assert fingerprint_to_hex(FINGERPRINT) == "0x58E79B6ABC762159DC0B1591164BD2247B936711"

    def test_parse_accepts_whitespace_and_lower_case(self):
        assert hex_to_fingerprint("0x58e79b6a bc762159 dc0b1591 164bd224 7b936711") == FINGERPRINT

    @pytest.mark.parametrize("text", ["", "58E79B6A", "0x123", "0xZZ", "1x12"])
    def test_malformed_hex_rejected(self, text):
        with pytest.raises(ValueError, match="Malformed keyID hex string"):
            hex_to_fingerprint(text)

    @given(st.binary(min_size=1, max_size=32))
    def test_round_trip(self, raw):
        assert hex_to_fingerprint(fingerprint_to_hex(raw)) == raw


class TestSignedKeyId:
    def test_low64_uses_last_eight_bytes(self):
        assert low64(FINGERPRINT) == 0x164BD2247B936711

    def test_high_bit_yields_negative_id(self):
        fingerprint = bytes(12) + bytes.fromhex("F0000000000000FF")
        assert low64(fingerprint) < 0
        assert low64(fingerprint) & 0xFFFFFFFFFFFFFFFF == 0xF0000000000000FF

    @given(st.integers(min_value=0, max_value=(1 << 64) - 1))
    def test_to_signed64_round_trips_through_bytes(self, value):
        signed = to_signed64(value)
        assert -(1 << 63) <= signed < (1 << 63)
        assert signed.to_bytes(8, "big", signed=True) == value.to_bytes(8, "big")

    @given(st.binary(min_size=8, max_size=32))
    def test_key_id_matches_fingerprint_tail(self, fingerprint):
        key_id = KeyId.from_fingerprint(fingerprint)
        assert key_id.id == int.from_bytes(fingerprint[-8:], "big", signed=True)


class TestKeyId:
    def test_requires_fingerprint_or_id(self):
        with pytest.raises(ValueError):
            KeyId()

    def test_short_fingerprint_rejected(self):
        with pytest.raises(ValueError, match="shorter than 64 bits"):
            KeyId.from_fingerprint(b"\x01\x02")

    def test_fingerprint_and_long_id_compare_equal(self):
        by_fingerprint = KeyId.from_fingerprint(FINGERPRINT)
        by_id = KeyId.from_long(0x164BD2247B936711)
        assert by_fingerprint == by_id
        assert hash(by_fingerprint) == hash(by_id)

    def test_different_fingerprints_with_same_tail_differ(self):
        other = bytes(12) + FINGERPRINT[-8:]
        assert KeyId.from_fingerprint(FINGERPRINT) != KeyId.from_fingerprint(other)

    def test_unsigned_long_is_normalized(self):
        assert KeyId.from_long(0xFFFFFFFFFFFFFFFF).id == -1

    def test_str_forms(self):
        assert str(KeyId.from_fingerprint(FINGERPRINT)) == fingerprint_to_hex(FINGERPRINT)
        assert str(KeyId.from_long(-1)) == "0xFFFFFFFFFFFFFFFF"

    def test_parse_long_id_and_fingerprint(self):
        assert not KeyId.parse("164BD2247B936711").is_fingerprint
        assert KeyId.parse("0x164BD2247B936711").id == 0x164BD2247B936711
        parsed = KeyId.parse("58E79B6ABC762159DC0B1591164BD2247B936711")
        assert parsed.is_fingerprint
        assert parsed.fingerprint == FINGERPRINT

    def test_hash_path_shards_on_first_two_bytes(self):
        assert KeyId.from_fingerprint(FINGERPRINT).hash_path == (
            "58/E7/58E79B6ABC762159DC0B1591164BD2247B936711.asc"
        )
        assert KeyId.from_long(0x164BD2247B936711).hash_path == "16/4B/164BD2247B936711.asc"

    def test_to_bytes_of_long_id(self):
        assert KeyId.from_long(-1).to_bytes() == b"\xff" * 8
