#!/usr/bin/env python3
"""
pgpverify Key Server Client

Fetches public keys from one HKP key server over HTTP(S) using urllib.

- hkp:// maps to http:// on port 11371 unless a port is given
- hkps:// maps to https://
- Separate connect and read timeouts
- Bounded retries with exponential backoff; a missing key (HTTP 404)
  and unknown hosts are never retried
- Optional proxy with basic credentials
- Offline mode fails before any network I/O
"""
from __future__ import annotations

import functools
import http.client
import logging
import socket
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Optional

from pgpverify import __version__
from pgpverify.pgp.keyid import KeyId
from pgpverify.sanitize import sanitize_for_log

logger = logging.getLogger(__name__)

HKP_DEFAULT_PORT = 11371
DEFAULT_CONNECT_TIMEOUT = 1.0
DEFAULT_READ_TIMEOUT = 5.0
DEFAULT_MAX_RETRIES = 5
DEFAULT_BACKOFF_BASE = 0.5

LOOKUP_PATH = "/pks/lookup"


class KeyServerError(OSError):
    """Raised when a key server cannot deliver a key."""


class PGPKeyNotFound(KeyServerError):
    """Raised when the key server answers that a key does not exist."""


class KeyServerOfflineError(KeyServerError):
    """Raised when a key is requested while network access is disabled."""


def _causes(error: BaseException):
    """Walk an exception, its causes and URLError reasons."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        reason = getattr(current, "reason", None)
        if isinstance(current, urllib.error.URLError) and isinstance(reason, BaseException):
            current = reason
        else:
            current = current.__cause__ or current.__context__


def is_transient(error: BaseException) -> bool:
    """Whether another attempt could succeed after ``error``."""
    for cause in _causes(error):
        if isinstance(cause, (PGPKeyNotFound, KeyServerOfflineError, socket.gaierror)):
            return False
    return True


def describe_error(error: BaseException) -> str:
    for cause in _causes(error):
        if isinstance(cause, socket.gaierror):
            return f"UnknownHost: {cause}"
    if isinstance(error, urllib.error.URLError) and not isinstance(error, urllib.error.HTTPError):
        return f"{type(error.reason).__name__}: {error.reason}"
    return f"{type(error).__name__}: {error}"


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make and how long to wait between them."""

    max_attempts: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BACKOFF_BASE
    retryable: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def delay(self, attempt: int) -> float:
        """Wait before the retry that follows failed attempt ``attempt`` (0-based)."""
        return self.base_delay * (2 ** attempt)


@dataclass(frozen=True)
class ProxySettings:
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    protocol: str = "http"

    @property
    def url(self) -> str:
        credentials = ""
        if self.username:
            credentials = urllib.parse.quote(self.username, safe="")
            if self.password:
                credentials += ":" + urllib.parse.quote(self.password, safe="")
            credentials += "@"
        return f"{self.protocol}://{credentials}{self.host}:{self.port}"


RetryListener = Callable[[str, int, float, BaseException], None]


def log_retry(address: str, attempt: int, wait: float, error: BaseException) -> None:
    """Default retry listener."""
    logger.warning(
        "[Retry #%d waiting: %.1fs] Last address %s with problem: [%s] %s",
        attempt, wait, address, type(error).__name__, sanitize_for_log(str(error)),
    )


# =============================================================================
# urllib plumbing: a read timeout separate from the connect timeout
# =============================================================================

class _ReadTimeoutMixin:
    read_timeout: Optional[float] = None

    def connect(self):
        super().connect()
        if self.read_timeout is not None:
            self.sock.settimeout(self.read_timeout)


class _HTTPConnection(_ReadTimeoutMixin, http.client.HTTPConnection):
    pass


class _HTTPSConnection(_ReadTimeoutMixin, http.client.HTTPSConnection):
    pass


def _connection_factory(connection_class, read_timeout, host, **kwargs):
    connection = connection_class(host, **kwargs)
    connection.read_timeout = read_timeout
    return connection


class _HTTPHandler(urllib.request.HTTPHandler):
    def __init__(self, read_timeout: float):
        super().__init__()
        self._factory = functools.partial(_connection_factory, _HTTPConnection, read_timeout)

    def http_open(self, req):
        return self.do_open(self._factory, req)


class _HTTPSHandler(urllib.request.HTTPSHandler):
    def __init__(self, read_timeout: float, ssl_context: ssl.SSLContext):
        super().__init__(context=ssl_context)
        self._ssl_context = ssl_context
        self._factory = functools.partial(_connection_factory, _HTTPSConnection, read_timeout)

    def https_open(self, req):
        return self.do_open(self._factory, req, context=self._ssl_context)


def build_opener(read_timeout: float, proxy: Optional[ProxySettings] = None) -> urllib.request.OpenerDirector:
    handlers = [
        _HTTPHandler(read_timeout),
        _HTTPSHandler(read_timeout, ssl.create_default_context()),
    ]
    if proxy is not None:
        handlers.append(urllib.request.ProxyHandler({"http": proxy.url, "https": proxy.url}))
    return urllib.request.build_opener(*handlers)


def prepare_keyserver_url(keyserver: str) -> str:
    """Normalize a key server URL to ``http(s)://[userinfo@]host[:port]``.

    Raises:
        KeyServerError: For unsupported schemes or a missing host.
    """
    parts = urllib.parse.urlsplit(keyserver.strip())
    scheme = parts.scheme.lower()
    if scheme in ("hkp", "http"):
        target_scheme = "http"
    elif scheme in ("hkps", "https"):
        target_scheme = "https"
    else:
        raise KeyServerError(f"Unsupported protocol: {parts.scheme or keyserver}")

    if not parts.hostname:
        raise KeyServerError(f"Key server address has no host: {keyserver}")

    try:
        port = parts.port
    except ValueError as e:
        raise KeyServerError(f"Invalid key server port in: {keyserver}") from e
    if port is None and scheme == "hkp":
        port = HKP_DEFAULT_PORT

    netloc = parts.netloc.rsplit("@", 1)
    userinfo = netloc[0] + "@" if len(netloc) == 2 else ""
    host = parts.hostname if ":" not in parts.hostname else f"[{parts.hostname}]"
    return f"{target_scheme}://{userinfo}{host}" + (f":{port}" if port is not None else "")


class KeyServerClient:
    """Client for a single HKP key server."""

    def __init__(
        self,
        keyserver: str,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        proxy: Optional[ProxySettings] = None,
        offline: bool = False,
        opener: Optional[urllib.request.OpenerDirector] = None,
    ):
        self.keyserver = prepare_keyserver_url(keyserver)
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.proxy = proxy
        self.offline = offline
        self._opener = opener or build_opener(read_timeout, proxy)

    @classmethod
    def for_server(cls, keyserver: str, config=None, **kwargs) -> "KeyServerClient":
        """Build a client from a ``KeyServerConfig`` plus keyword overrides."""
        if config is not None:
            options = {
                "connect_timeout": config.connect_timeout,
                "read_timeout": config.read_timeout,
                "retry_policy": RetryPolicy(
                    max_attempts=config.max_retries,
                    base_delay=config.backoff_base_delay,
                ),
                "offline": config.offline,
            }
            if config.proxy is not None:
                options["proxy"] = ProxySettings(
                    host=config.proxy.host,
                    port=config.proxy.port,
                    username=config.proxy.username,
                    password=config.proxy.password,
                    protocol=config.proxy.protocol,
                )
            options.update(kwargs)
            kwargs = options
        return cls(keyserver, **kwargs)

    @property
    def hostname(self) -> str:
        return urllib.parse.urlsplit(self.keyserver).hostname or self.keyserver

    def _lookup_url(self, query: str, key_id: KeyId) -> str:
        return f"{self.keyserver}{LOOKUP_PATH}?{query}&search={key_id}"

    def uri_for_get_key(self, key_id: KeyId) -> str:
        return self._lookup_url("op=get&options=mr", key_id)

    def uri_for_show_key(self, key_id: KeyId) -> str:
        return self._lookup_url("op=vindex&fingerprint=on", key_id)

    def fetch_key(
        self,
        key_id: KeyId,
        sink: BinaryIO,
        on_retry: Optional[RetryListener] = log_retry,
    ) -> None:
        """Download the key for ``key_id`` and write the body to ``sink``.

        Raises:
            KeyServerOfflineError: When offline mode is on.
            PGPKeyNotFound: When the server answers 404.
            KeyServerError: For any other failure once retries are spent.
        """
        if self.offline:
            raise KeyServerOfflineError(
                f"Offline mode - key {key_id} can't be fetched from {self}"
            )

        url = self.uri_for_get_key(key_id)
        policy = self.retry_policy
        attempt = 0
        while True:
            try:
                body = self._download(url)
                break
            except (OSError, http.client.HTTPException) as e:
                attempt += 1
                if attempt >= policy.max_attempts or not policy.retryable(e):
                    raise self._final_error(e, url) from e
                wait = policy.delay(attempt - 1)
                if on_retry is not None:
                    on_retry(self.hostname, attempt, wait, e)
                policy.sleep(wait)

        sink.write(body)

    def _download(self, url: str) -> bytes:
        request = urllib.request.Request(url, headers={
            "User-Agent": f"pgpverify/{__version__}",
            "Accept": "application/pgp-keys, text/plain, */*",
        })
        try:
            with self._opener.open(request, timeout=self.connect_timeout) as response:
                status = getattr(response, "status", 200)
                body = response.read()
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise PGPKeyNotFound(f"PGP server returned an error: HTTP {e.code} {e.reason}") from e
            raise KeyServerError(f"PGP server returned an error: HTTP {e.code} {e.reason}") from e

        if status != 200:
            raise KeyServerError(f"PGP server returned an error: HTTP {status}")
        if not body:
            raise KeyServerError("No response body returned.")
        return body

    @staticmethod
    def _final_error(error: BaseException, url: str) -> KeyServerError:
        if isinstance(error, PGPKeyNotFound):
            return PGPKeyNotFound(f"{error} for: {url}")
        if isinstance(error, KeyServerError):
            return KeyServerError(f"{error} for: {url}")
        return KeyServerError(f"{describe_error(error)} for: {url}")

    def __str__(self) -> str:
        return "{" + self.keyserver + "}"

    def __repr__(self) -> str:
        return f"KeyServerClient({self.keyserver!r})"
