from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional

RECEIVABLES_SUMMARY = "receivables-summary:"


class MemoryCache:
    """
    Cache simples em memória com TTL, usado só nas rotas de leitura.

    As regras de parcelas/pagamentos nunca leem daqui: se o cache estiver
    velho, o pior caso é um resumo desatualizado até a próxima invalidação.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._data[key] = (self._clock() + ttl_seconds, value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._data if k.startswith(prefix)]:
                del self._data[key]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


cache = MemoryCache()


def summary_key(client_id: int) -> str:
    return f"{RECEIVABLES_SUMMARY}{client_id}"


def invalidate_receivables() -> None:
    """Chamar depois de qualquer mudança em pagamento/parcela."""
    cache.invalidate_prefix(RECEIVABLES_SUMMARY)
