# credilink_auth/nonces.py
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .errors import NonceNotFound


DEFAULT_NONCE_TTL_SECONDS = 300
DEFAULT_NONCE_BYTES = 32


@dataclass(frozen=True)
class Nonce:
    identity_key: str
    value: str
    issued_at: int
    expires_at: int

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at


class NonceStore:
    """
    One pending, single-use challenge per identity key.

    Contract:
      - issue() always overwrites: a newer challenge invalidates the older one
      - consume() removes the nonce before returning it, so two callers racing
        on the same key cannot both see it
      - expired nonces behave exactly like missing ones

    The store is shared by every request thread; all access goes through
    one lock.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_NONCE_TTL_SECONDS,
        nbytes: int = DEFAULT_NONCE_BYTES,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.nbytes = nbytes
        self._clock = clock
        self._lock = threading.Lock()
        self._data: Dict[str, Nonce] = {}

    def _now(self) -> int:
        return int(self._clock())

    def issue(self, identity_key: str) -> Nonce:
        now = self._now()
        nonce = Nonce(
            identity_key=identity_key,
            value=secrets.token_urlsafe(self.nbytes),
            issued_at=now,
            expires_at=now + self.ttl_seconds,
        )
        with self._lock:
            self._prune_unlocked(now)
            self._data[identity_key] = nonce
        return nonce

    def consume(self, identity_key: str) -> str:
        with self._lock:
            nonce = self._data.pop(identity_key, None)
        if nonce is None or nonce.is_expired(self._now()):
            raise NonceNotFound(identity_key)
        return nonce.value

    def peek(self, identity_key: str) -> Optional[Nonce]:
        """Return the live nonce for a key without consuming it."""
        with self._lock:
            nonce = self._data.get(identity_key)
        if nonce is None or nonce.is_expired(self._now()):
            return None
        return nonce

    def prune(self) -> int:
        with self._lock:
            return self._prune_unlocked(self._now())

    def _prune_unlocked(self, now: int) -> int:
        dead = [k for k, n in self._data.items() if n.is_expired(now)]
        for k in dead:
            del self._data[k]
        return len(dead)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
