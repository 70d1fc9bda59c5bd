"""
Tests for key server list strategies.

Verifies:
- A single client propagates its errors unchanged
- Fallback stops at the first success
- Load balance starts one client further along on each call
- A missing key short-circuits every strategy
- All failing clients raise the last error
"""
import logging

import pytest

from pgpverify.keyserver.client import KeyServerClient, KeyServerError, PGPKeyNotFound
from pgpverify.keyserver.servers import KeyServerList, Strategy
from pgpverify.pgp.keyid import KeyId

pytestmark = pytest.mark.keyserver

KEY_ID = KeyId.from_long(0x0102030405060708)


class NoOpener:
    def open(self, request, timeout=None):
        raise AssertionError("network access in test")


def clients(*hosts):
    return [KeyServerClient(f"hkps://{host}", opener=NoOpener()) for host in hosts]


def recorder(failures=None):
    """Operation that records the hosts it ran against and fails on demand."""
    failures = failures or {}
    calls = []

    def operation(client):
        calls.append(client.hostname)
        error = failures.get(client.hostname)
        if error is not None:
            raise error
        return client.hostname

    return operation, calls


class TestStrategySelection:
    def test_single(self):
        assert KeyServerList(clients("a")).strategy is Strategy.SINGLE
        assert KeyServerList(clients("a"), load_balance=True).strategy is Strategy.SINGLE

    def test_fallback_and_load_balance(self):
        assert KeyServerList(clients("a", "b")).strategy is Strategy.FALLBACK
        assert KeyServerList(clients("a", "b"), load_balance=True).strategy is Strategy.LOAD_BALANCE

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            KeyServerList([])


class TestExecute:
    def test_single_propagates_error(self):
        servers = KeyServerList(clients("a"))
        operation, calls = recorder({"a": KeyServerError("down")})
        with pytest.raises(KeyServerError, match="down"):
            servers.execute(operation)
        assert calls == ["a"]

    def test_fallback_uses_next_client(self, caplog):
        servers = KeyServerList(clients("a", "b", "c"))
        operation, calls = recorder({"a": KeyServerError("down")})
        with caplog.at_level(logging.WARNING, logger="pgpverify"):
            assert servers.execute(operation) == "b"
        assert calls == ["a", "b"]
        assert "throw exception: down - fallback try next client" in caplog.text
        assert servers.uri_for_show_key(KEY_ID).startswith("https://b/")

    def test_fallback_always_starts_at_first(self):
        servers = KeyServerList(clients("a", "b"))
        operation, calls = recorder()
        servers.execute(operation)
        servers.execute(operation)
        assert calls == ["a", "a"]

    def test_load_balance_rotates_start(self):
        servers = KeyServerList(clients("a", "b", "c"), load_balance=True)
        operation, calls = recorder()
        results = [servers.execute(operation) for _ in range(4)]
        assert results == ["a", "b", "c", "a"]

    def test_load_balance_falls_through(self):
        servers = KeyServerList(clients("a", "b", "c"), load_balance=True)
        operation, calls = recorder({"a": KeyServerError("down")})
        servers.execute(operation)
        calls.clear()
        assert servers.execute(operation) == "b"
        assert servers.execute(operation) == "c"
        assert servers.execute(operation) == "b"
        assert calls == ["b", "c", "a", "b"]

    def test_not_found_short_circuits(self):
        servers = KeyServerList(clients("a", "b"))
        operation, calls = recorder({"a": PGPKeyNotFound("missing")})
        with pytest.raises(PGPKeyNotFound):
            servers.execute(operation)
        assert calls == ["a"]
        assert servers.uri_for_show_key(KEY_ID).startswith("https://a/")

    def test_all_fail_raises_last_error(self, caplog):
        servers = KeyServerList(clients("a", "b"))
        operation, calls = recorder({"a": KeyServerError("first"), "b": KeyServerError("second")})
        with caplog.at_level(logging.ERROR, logger="pgpverify"):
            with pytest.raises(KeyServerError, match="second"):
                servers.execute(operation)
        assert calls == ["a", "b"]
        assert "All servers from list was failed" in caplog.text

    def test_non_os_errors_propagate(self):
        servers = KeyServerList(clients("a", "b"))
        operation, calls = recorder({"a": RuntimeError("bug")})
        with pytest.raises(RuntimeError):
            servers.execute(operation)
        assert calls == ["a"]


class TestStr:
    def test_single(self):
        assert str(KeyServerList(clients("a"))) == "{https://a}"

    def test_list(self):
        servers = KeyServerList(clients("a", "b"), load_balance=True)
        assert str(servers) == "load balance list: [{https://a}, {https://b}]"
