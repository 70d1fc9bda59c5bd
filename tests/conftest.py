"""Pytest configuration and fixtures for pgpverify tests."""

import logging

import pytest

from pgp_fixtures import Certificate, ecdsa_key, ed25519_key, rsa_key


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path, monkeypatch):
    """Keep tests away from the real ~/.pgpverify directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    yield home


@pytest.fixture(autouse=True)
def _reset_logger():
    """Undo handler changes made by the CLI so caplog keeps working."""
    yield
    logger = logging.getLogger("pgpverify")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


# Key generation is slow for RSA, so keys are shared per session.

@pytest.fixture(scope="session")
def rsa_master():
    return rsa_key()


@pytest.fixture(scope="session")
def other_rsa_master():
    return rsa_key()


@pytest.fixture(scope="session")
def ed_master():
    return ed25519_key()


@pytest.fixture(scope="session")
def ed_subkey():
    return ed25519_key(created=1600000100)


@pytest.fixture(scope="session")
def ec_master():
    return ecdsa_key()


@pytest.fixture
def rsa_certificate(rsa_master):
    return Certificate(rsa_master, user_ids=["Alice Example <alice@example.com>"])


@pytest.fixture
def ed_certificate(ed_master, ed_subkey):
    return Certificate(ed_master, user_ids=["Bob Example <bob@example.com>"], subkeys=[ed_subkey])
