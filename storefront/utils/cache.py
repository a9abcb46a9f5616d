"""
Cache mémoire à durée de vie courte (quelques secondes).

- Horloge injectée (time.monotonic par défaut) pour des tests déterministes.
- Invalidation explicite (clé, préfixe, tout) appelée par les chemins d'écriture.
- Best-effort: un miss recharge depuis la base, rien ne dépend du contenu du cache.
"""
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

_MISSING = object()


class TTLCache:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic, max_entries: int = 512):
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max_entries
        self._clock = clock
        self._data: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= now:
                del self._data[key]
                return default
            return value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + (self.ttl_seconds if ttl is None else float(ttl))
        with self._lock:
            if key not in self._data and len(self._data) >= self.max_entries:
                self._evict_locked()
            self._data[key] = (expires_at, value)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """
        Retourne la valeur en cache, sinon appelle loader().
        - None n'est jamais mis en cache (un produit absent peut apparaître juste après).
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = loader()
        if value is not None:
            self.set(key, value, ttl=ttl)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._data.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._data if isinstance(k, str) and k.startswith(prefix)]:
                del self._data[key]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def _evict_locked(self) -> None:
        # Purge des entrées expirées, sinon de la plus proche de l'expiration
        now = self._clock()
        expired = [k for k, (exp, _) in self._data.items() if exp <= now]
        for k in expired:
            del self._data[k]
        if len(self._data) >= self.max_entries:
            oldest = min(self._data, key=lambda k: self._data[k][0])
            del self._data[oldest]
