"""
Tests for the on-disk key cache.

Verifies:
- Keys are fetched once and then served from disk
- 64-bit key ids get a fingerprint alias file
- Missing-key markers suppress fetches until they go stale
- Corrupted cache entries are dropped and fetched again
- Revocation-only material fetched by key id lands under keyid/
- A cache path that is a file is rejected
- Concurrent lookups of one key share a single fetch
"""
import io
import logging
import threading
import time
import urllib.error

import pytest

from pgpverify.config import KeyServerConfig
from pgpverify.keyserver.cache import KeyCache
from pgpverify.keyserver.client import KeyServerClient, PGPKeyNotFound, RetryPolicy
from pgpverify.keyserver.servers import KeyServerList, Strategy
from pgpverify.pgp.keyid import KeyId, fingerprint_to_hex
from pgpverify.pgp.packets import PGPError

from pgp_fixtures import revocation_certificate

pytestmark = pytest.mark.keyserver

NOW = 1_700_000_000.0


class FakeResponse(io.BytesIO):
    status = 200


class FakeOpener:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def open(self, request, timeout=None):
        self.requests.append(request.full_url)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return FakeResponse(outcome)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def not_found():
    return urllib.error.HTTPError("http://x", 404, "Not Found", hdrs=None, fp=None)


def make_cache(path, *outcomes, clock=None):
    opener = FakeOpener(*outcomes)
    client = KeyServerClient(
        "hkps://keys.example.org",
        retry_policy=RetryPolicy(max_attempts=1, sleep=lambda _: None),
        opener=opener,
    )
    cache = KeyCache(path, KeyServerList([client]), clock=clock or Clock())
    return cache, opener


class TestFetchAndStore:
    def test_fetched_once_by_fingerprint(self, tmp_path, rsa_certificate, rsa_master):
        cache, opener = make_cache(tmp_path / "cache", rsa_certificate.armored())
        key_id = KeyId.from_fingerprint(rsa_master.fingerprint)

        first = cache.get_key_ring(key_id)
        second = cache.get_key_ring(key_id)

        assert len(opener.requests) == 1
        assert first.key_ring.master.fingerprint == rsa_master.fingerprint
        assert second.key_ring.master.fingerprint == rsa_master.fingerprint
        assert (tmp_path / "cache" / key_id.hash_path).read_bytes() == rsa_certificate.armored()

    def test_long_id_writes_alias(self, tmp_path, ed_certificate, ed_subkey):
        cache, opener = make_cache(tmp_path / "cache", ed_certificate.to_bytes())
        key_id = KeyId.from_long(ed_subkey.key_id)

        cache.get_key_ring(key_id)

        key_file = tmp_path / "cache" / KeyId.from_fingerprint(ed_subkey.fingerprint).hash_path
        alias = (tmp_path / "cache" / "keyid" / key_id.hash_path).with_suffix(".fpr")
        assert key_file.is_file()
        assert alias.read_text() == fingerprint_to_hex(ed_subkey.fingerprint)

        # both forms are now served from disk
        cache.get_key_ring(key_id)
        cache.get_key_ring(KeyId.from_fingerprint(ed_subkey.fingerprint))
        assert len(opener.requests) == 1

    def test_logs_receive(self, tmp_path, rsa_certificate, rsa_master, caplog):
        cache, _ = make_cache(tmp_path / "cache", rsa_certificate.armored())
        with caplog.at_level(logging.INFO, logger="pgpverify"):
            cache.get_key_ring(KeyId.from_fingerprint(rsa_master.fingerprint))
        assert "Receive key: https://keys.example.org/pks/lookup?op=get" in caplog.text

    def test_download_without_key(self, tmp_path, rsa_certificate, ec_master):
        cache, _ = make_cache(tmp_path / "cache", rsa_certificate.armored())
        with pytest.raises(PGPError, match="Can't find public key"):
            cache.get_key_ring(KeyId.from_fingerprint(ec_master.fingerprint))

    def test_revocation_only_by_long_id(self, tmp_path, ec_master):
        cache, _ = make_cache(tmp_path / "cache", revocation_certificate(ec_master))
        key_id = KeyId.from_long(ec_master.key_id)

        pack = cache.get_key_ring(key_id)

        assert not pack.has_public_keys
        assert pack.has_revocation_signature
        assert (tmp_path / "cache" / "keyid" / key_id.hash_path).is_file()

    def test_show_key_url(self, tmp_path):
        cache, _ = make_cache(tmp_path / "cache")
        assert cache.uri_for_show_key(KeyId.from_long(1)).startswith(
            "https://keys.example.org/pks/lookup?op=vindex"
        )


class TestNotFoundMarker:
    def test_marker_suppresses_fetch_until_stale(self, tmp_path, rsa_certificate, rsa_master):
        clock = Clock()
        cache, opener = make_cache(tmp_path / "cache", not_found(), rsa_certificate.armored(), clock=clock)
        key_id = KeyId.from_fingerprint(rsa_master.fingerprint)

        with pytest.raises(PGPKeyNotFound):
            cache.get_key_ring(key_id)
        marker = tmp_path / "cache" / (key_id.hash_path + ".404")
        assert marker.is_file()

        clock.now += 3600
        with pytest.raises(PGPKeyNotFound, match="cached in"):
            cache.get_key_ring(key_id)
        assert len(opener.requests) == 1

        clock.now += 24 * 3600
        pack = cache.get_key_ring(key_id)
        assert pack.has_public_keys
        assert len(opener.requests) == 2
        assert not marker.exists()

    def test_stale_marker_still_missing_is_rewritten(self, tmp_path, rsa_master):
        clock = Clock()
        cache, opener = make_cache(tmp_path / "cache", not_found(), not_found(), clock=clock)
        key_id = KeyId.from_fingerprint(rsa_master.fingerprint)
        marker = tmp_path / "cache" / (key_id.hash_path + ".404")

        with pytest.raises(PGPKeyNotFound):
            cache.get_key_ring(key_id)
        assert marker.read_text() == str(int(NOW * 1000))

        clock.now += 25 * 3600
        with pytest.raises(PGPKeyNotFound):
            cache.get_key_ring(key_id)
        assert len(opener.requests) == 2
        assert marker.read_text() == str(int(clock.now * 1000))

        # fresh again after the second miss
        clock.now += 3600
        with pytest.raises(PGPKeyNotFound, match="cached in"):
            cache.get_key_ring(key_id)
        assert len(opener.requests) == 2


class TestCorruption:
    def test_corrupted_entry_is_refetched(self, tmp_path, rsa_certificate, rsa_master, caplog):
        cache, opener = make_cache(tmp_path / "cache", rsa_certificate.armored())
        key_id = KeyId.from_fingerprint(rsa_master.fingerprint)
        key_file = tmp_path / "cache" / key_id.hash_path
        key_file.parent.mkdir(parents=True)
        key_file.write_bytes(b"\x01\x02garbage")

        with caplog.at_level(logging.WARNING, logger="pgpverify"):
            pack = cache.get_key_ring(key_id)

        assert pack.has_public_keys
        assert len(opener.requests) == 1
        assert "Dropping unusable cached key" in caplog.text
        assert key_file.read_bytes() == rsa_certificate.armored()

    def test_unreadable_alias_is_ignored(self, tmp_path, ed_certificate, ed_subkey):
        cache, opener = make_cache(tmp_path / "cache", ed_certificate.to_bytes())
        key_id = KeyId.from_long(ed_subkey.key_id)
        alias = (tmp_path / "cache" / "keyid" / key_id.hash_path).with_suffix(".fpr")
        alias.parent.mkdir(parents=True)
        alias.write_text("not hex")

        pack = cache.get_key_ring(key_id)

        assert pack.has_public_keys
        assert len(opener.requests) == 1
        assert alias.read_text() == fingerprint_to_hex(ed_subkey.fingerprint)


class TestConstruction:
    def test_file_instead_of_directory(self, tmp_path):
        target = tmp_path / "cache"
        target.write_text("x")
        with pytest.raises(OSError, match="is not a directory"):
            make_cache(target)

    def test_from_config(self, tmp_path):
        config = KeyServerConfig(servers="hkps://a.example.org;hkp://b.example.org", load_balance=False)
        cache = KeyCache.from_config(tmp_path / "cache", config)
        assert cache.key_servers.strategy is Strategy.FALLBACK
        assert [c.keyserver for c in cache.key_servers.clients] == [
            "https://a.example.org", "http://b.example.org:11371",
        ]
        assert cache.not_found_refresh == 24 * 3600


class SlowOpener(FakeOpener):
    def open(self, request, timeout=None):
        time.sleep(0.05)
        return super().open(request, timeout)


class TestConcurrency:
    def test_racing_threads_fetch_once(self, tmp_path, rsa_certificate, rsa_master):
        opener = SlowOpener(rsa_certificate.armored())
        client = KeyServerClient(
            "hkps://keys.example.org",
            retry_policy=RetryPolicy(max_attempts=1, sleep=lambda _: None),
            opener=opener,
        )
        cache = KeyCache(tmp_path / "cache", KeyServerList([client]), clock=Clock())
        key_id = KeyId.from_fingerprint(rsa_master.fingerprint)
        barrier = threading.Barrier(4)
        packs, errors = [], []

        def lookup():
            barrier.wait()
            try:
                packs.append(cache.get_key_ring(key_id))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=lookup) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(opener.requests) == 1
        assert len(packs) == 4
        assert all(pack.key_ring.master.fingerprint == rsa_master.fingerprint for pack in packs)
