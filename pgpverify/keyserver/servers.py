"""
pgpverify Key Server List

Runs an operation against an ordered list of key server clients using
one of three strategies:
- single: one client, errors propagate unchanged
- fallback: try each client in order, stop at the first success
- load balance: like fallback, but each call starts one client further
  along the list than the previous call

A missing key is an answer, not a failure: PGPKeyNotFound stops the walk
immediately under every strategy.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, List, Optional, Sequence, TypeVar

from pgpverify.keyserver.client import KeyServerClient, PGPKeyNotFound
from pgpverify.pgp.keyid import KeyId
from pgpverify.sanitize import sanitize_for_log

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Strategy(str, Enum):
    SINGLE = "single"
    FALLBACK = "fallback"
    LOAD_BALANCE = "load balance"


class KeyServerList:
    """Ordered key server clients plus the strategy to walk them."""

    def __init__(self, clients: Sequence[KeyServerClient], load_balance: bool = False):
        if not clients:
            raise ValueError("At least one key server is required")
        self.clients: List[KeyServerClient] = list(clients)
        if len(self.clients) == 1:
            self.strategy = Strategy.SINGLE
        elif load_balance:
            self.strategy = Strategy.LOAD_BALANCE
        else:
            self.strategy = Strategy.FALLBACK
        self._next_start = 0
        self._last_client: KeyServerClient = self.clients[0]
        self._lock = threading.Lock()

    def _order(self) -> List[KeyServerClient]:
        if self.strategy is Strategy.SINGLE:
            return self.clients[:1]
        if self.strategy is Strategy.FALLBACK:
            return list(self.clients)
        with self._lock:
            start = self._next_start
            self._next_start = (start + 1) % len(self.clients)
        return [self.clients[(start + i) % len(self.clients)] for i in range(len(self.clients))]

    def execute(self, operation: Callable[[KeyServerClient], T]) -> T:
        """Run ``operation`` against clients per the strategy.

        Raises:
            PGPKeyNotFound: As soon as any client reports the key missing.
            OSError: The last client's error when every client failed.
        """
        if self.strategy is Strategy.SINGLE:
            result = operation(self.clients[0])
            self._last_client = self.clients[0]
            return result

        last_error: Optional[OSError] = None
        for client in self._order():
            try:
                result = operation(client)
            except PGPKeyNotFound:
                self._last_client = client
                raise
            except OSError as e:
                last_error = e
                logger.warning(
                    "%s throw exception: %s - %s try next client",
                    client, sanitize_for_log(str(e)), self.strategy.value,
                )
                continue
            self._last_client = client
            logger.debug("Key server %s served request", client)
            return result

        logger.error("All servers from list was failed")
        raise last_error

    def uri_for_show_key(self, key_id: KeyId) -> str:
        """Show-key URL on the client that last answered."""
        return self._last_client.uri_for_show_key(key_id)

    def __str__(self) -> str:
        if self.strategy is Strategy.SINGLE:
            return str(self.clients[0])
        return f"{self.strategy.value} list: [{', '.join(str(c) for c in self.clients)}]"
