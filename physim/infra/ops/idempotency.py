"""Verrous de prise en charge des jobs (Redis ou mémoire).

- IdempotencyStore: `acquire(key, ttl)` pose un verrou à expiration et retourne un jeton;
  `release(key, token)` ne libère que si le jeton correspond toujours (un worker dont le verrou
  a expiré ne peut pas libérer celui d'un autre).

Règle de clé:
    claim:{kind}:{id}

Utiliser `make_claim_key("job", job_id)` pour composer les clés de façon homogène.

Le backend Redis est utilisé quand un client est fourni par le conteneur; sinon un store en
mémoire thread-safe, suffisant pour un process unique et les tests unitaires.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

# suppression conditionnelle atomique: DEL uniquement si la valeur est notre jeton
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


def make_claim_key(kind: str, *parts: str) -> str:
    """Compose une clé de verrou stable suivant la règle `claim:{kind}:{id}`."""
    safe_parts = [str(p).replace("\n", " ").replace("\r", " ") for p in parts]
    suffix = ":".join(safe_parts) if safe_parts else ""
    return f"claim:{kind}:{suffix}" if suffix else f"claim:{kind}"


class _InMemoryKV:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._exp: dict[str, float] = {}
        self._vals: dict[str, str] = {}

    def _purge(self, key: str, now: float) -> None:
        exp = self._exp.get(key)
        if exp is not None and exp <= now:
            self._exp.pop(key, None)
            self._vals.pop(key, None)

    def setnx(self, key: str, value: str, ex: int) -> bool:
        with self._lock:
            now = self._clock()
            self._purge(key, now)
            if key in self._vals:
                return False
            self._vals[key] = value
            self._exp[key] = now + ex
            return True

    def get(self, key: str) -> str | None:
        with self._lock:
            self._purge(key, self._clock())
            return self._vals.get(key)

    def delete_if(self, key: str, value: str) -> bool:
        with self._lock:
            self._purge(key, self._clock())
            if self._vals.get(key) != value:
                return False
            self._vals.pop(key, None)
            self._exp.pop(key, None)
            return True


@dataclass
class IdempotencyStore:
    """Store de verrous de prise en charge avec TTL."""

    ttl_seconds: int = 300
    client: Any = field(default=None)

    def __post_init__(self) -> None:
        """Utilise le client Redis fourni ou le fallback en mémoire."""
        if self.client is None:
            self.client = _InMemoryKV()

    @property
    def _in_memory(self) -> bool:
        return isinstance(self.client, _InMemoryKV)

    def acquire(self, key: str, ttl: int | None = None) -> str | None:
        """Pose le verrou `key`; retourne le jeton du détenteur, ou None si déjà pris."""
        ttl = int(ttl or self.ttl_seconds)
        token = uuid.uuid4().hex
        if self._in_memory:
            return token if self.client.setnx(key, token, ex=ttl) else None
        ok = self.client.set(name=key, value=token, nx=True, ex=ttl)
        return token if ok else None

    def release(self, key: str, token: str) -> bool:
        """Libère le verrou s'il appartient toujours à `token`."""
        if self._in_memory:
            return self.client.delete_if(key, token)
        return bool(self.client.eval(_RELEASE_SCRIPT, 1, key, token))

    def holder(self, key: str) -> str | None:
        """Jeton du détenteur courant (diagnostic)."""
        return self.client.get(key)
