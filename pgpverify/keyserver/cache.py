#!/usr/bin/env python3
"""
pgpverify Key Cache

Disk cache of public keys fetched from key servers.

Layout under the cache root:
- ``XX/YY/<FINGERPRINT>.asc``     downloaded key material
- ``keyid/XX/YY/<KEYID>.fpr``      fingerprint recorded for a 64-bit key id
- ``<key path>.404``               marker: the servers reported the key missing

A missing-key marker suppresses further fetches until it is older than
the refresh horizon. All lookups are serialized by one lock, so a key is
fetched at most once even with concurrent callers.
"""
from __future__ import annotations

import io
import logging
import os
import random
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from pgpverify.keyserver.client import KeyServerClient, PGPKeyNotFound
from pgpverify.keyserver.servers import KeyServerList
from pgpverify.pgp.keyid import KeyId, fingerprint_to_hex, hex_to_fingerprint
from pgpverify.pgp.keys import KeyRingPack, load_key_ring
from pgpverify.pgp.packets import PGPError

logger = logging.getLogger(__name__)

NOT_FOUND_SUFFIX = ".404"
ALIAS_SUFFIX = ".fpr"
KEY_ID_DIR = "keyid"
DEFAULT_NOT_FOUND_REFRESH_HOURS = 24.0


class KeyCache:
    """Disk-backed, thread-safe key ring cache in front of a KeyServerList."""

    def __init__(
        self,
        cache_path: Path,
        key_servers: KeyServerList,
        not_found_refresh_hours: float = DEFAULT_NOT_FOUND_REFRESH_HOURS,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_path = Path(cache_path)
        if self.cache_path.exists() and not self.cache_path.is_dir():
            raise OSError(f"PGP keys cache path exist but is not a directory: {self.cache_path}")
        self.cache_path.mkdir(parents=True, exist_ok=True)

        self.key_servers = key_servers
        self.not_found_refresh = not_found_refresh_hours * 3600
        self._clock = clock
        self._lock = threading.Lock()

        logger.info("Key server(s) - %s", key_servers)

    @classmethod
    def from_config(cls, cache_path: Path, config) -> "KeyCache":
        """Build the cache and its server list from a ``KeyServerConfig``."""
        clients = [KeyServerClient.for_server(server, config) for server in config.server_list]
        servers = KeyServerList(clients, load_balance=config.load_balance)
        return cls(cache_path, servers, not_found_refresh_hours=config.not_found_refresh_hours)

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def _key_file(self, fingerprint: bytes) -> Path:
        return self.cache_path / KeyId.from_fingerprint(fingerprint).hash_path

    def _alias_file(self, key_id: KeyId) -> Path:
        return (self.cache_path / KEY_ID_DIR / key_id.hash_path).with_suffix(ALIAS_SUFFIX)

    def _id_key_file(self, key_id: KeyId) -> Path:
        """Storage for material fetched by key id that has no usable fingerprint."""
        return self.cache_path / KEY_ID_DIR / key_id.hash_path

    def _not_found_file(self, key_id: KeyId) -> Path:
        base = self._key_file(key_id.fingerprint) if key_id.is_fingerprint else self._id_key_file(key_id)
        return base.with_name(base.name + NOT_FOUND_SUFFIX)

    def _cached_key_file(self, key_id: KeyId) -> Optional[Path]:
        if key_id.is_fingerprint:
            return self._key_file(key_id.fingerprint)

        alias = self._alias_file(key_id)
        if alias.is_file():
            try:
                return self._key_file(hex_to_fingerprint(alias.read_text(encoding="ascii").strip()))
            except (OSError, ValueError) as e:
                logger.warning("Ignoring unreadable key alias %s: %s", alias, e)
                alias.unlink(missing_ok=True)
        return self._id_key_file(key_id)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def uri_for_show_key(self, key_id: KeyId) -> str:
        return self.key_servers.uri_for_show_key(key_id)

    def get_key_ring(self, key_id: KeyId) -> KeyRingPack:
        """Key ring pack for ``key_id`` from disk or, on a miss, from the servers.

        Raises:
            PGPKeyNotFound: When the servers report the key missing, or a
                fresh missing-key marker exists.
            PGPError: When downloaded material lacks the key or is invalid.
            OSError: For network or filesystem failures.
        """
        with self._lock:
            key_file = self._cached_key_file(key_id)
            if key_file is not None and key_file.is_file():
                pack = self._load_cached(key_file, key_id)
                if pack is not None:
                    return pack

            not_found_file = self._not_found_file(key_id)
            if self._is_fresh(not_found_file):
                raise PGPKeyNotFound(
                    f"PGP key {key_id} not found on key server, cached in: {not_found_file}"
                )

            return self._receive_key(key_id, not_found_file)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load_cached(self, key_file: Path, key_id: KeyId) -> Optional[KeyRingPack]:
        try:
            pack = load_key_ring(key_file.read_bytes(), key_id)
        except (PGPError, OSError) as e:
            logger.warning("Dropping unusable cached key %s: %s", key_file, e)
            key_file.unlink(missing_ok=True)
            return None
        if pack.is_empty:
            logger.warning("Cached file %s does not contain key %s, fetching again", key_file, key_id)
            key_file.unlink(missing_ok=True)
            return None
        return pack

    def _is_fresh(self, marker: Path) -> bool:
        try:
            modified = marker.stat().st_mtime
        except FileNotFoundError:
            return False
        return self._clock() - modified < self.not_found_refresh

    def _receive_key(self, key_id: KeyId, not_found_file: Path) -> KeyRingPack:
        served_by = {}

        def fetch(client: KeyServerClient) -> bytes:
            buffer = io.BytesIO()
            client.fetch_key(key_id, buffer)
            served_by["client"] = client
            return buffer.getvalue()

        try:
            data = self.key_servers.execute(fetch)
        except PGPKeyNotFound:
            self._write_not_found(not_found_file)
            raise

        pack = load_key_ring(data, key_id)
        if pack.is_empty:
            raise PGPError(
                f"Can't find public key {key_id} in download file: "
                f"{served_by['client'].uri_for_get_key(key_id)}"
            )

        key_file = self._destination(key_id, pack)
        self._write_atomic(key_file, data)
        if not key_id.is_fingerprint and pack.key_ring is not None:
            fingerprint = key_id.key_from_ring(pack.key_ring).fingerprint
            self._write_atomic(self._alias_file(key_id), fingerprint_to_hex(fingerprint).encode("ascii"))

        not_found_file.unlink(missing_ok=True)
        logger.info("Receive key: %s\n\tto %s", served_by["client"].uri_for_get_key(key_id), key_file)
        return pack

    def _destination(self, key_id: KeyId, pack: KeyRingPack) -> Path:
        if key_id.is_fingerprint:
            return self._key_file(key_id.fingerprint)
        if pack.key_ring is not None:
            return self._key_file(key_id.key_from_ring(pack.key_ring).fingerprint)
        return self._id_key_file(key_id)

    def _write_not_found(self, marker: Path) -> None:
        now = self._clock()
        self._write_atomic(marker, str(int(now * 1000)).encode("ascii"))
        os.utime(marker, (now, now))

    def _write_atomic(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", suffix=".part", dir=self.cache_path)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            _move_file(tmp_path, target)
        finally:
            tmp_path.unlink(missing_ok=True)


def _move_file(source: Path, target: Path) -> None:
    """Atomically replace ``target``; one retry if the target is locked."""
    try:
        os.replace(source, target)
    except PermissionError:
        time.sleep(0.25 + random.random())
        os.replace(source, target)
