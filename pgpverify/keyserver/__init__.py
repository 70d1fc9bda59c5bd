"""pgpverify key server module: HKP client, server list strategies and key cache."""

from pgpverify.keyserver.client import (
    KeyServerClient,
    KeyServerError,
    KeyServerOfflineError,
    PGPKeyNotFound,
    ProxySettings,
    RetryPolicy,
)
from pgpverify.keyserver.servers import KeyServerList, Strategy
from pgpverify.keyserver.cache import KeyCache

__all__ = [
    "KeyServerClient", "KeyServerError", "KeyServerOfflineError", "PGPKeyNotFound",
    "ProxySettings", "RetryPolicy", "KeyServerList", "Strategy", "KeyCache",
]
