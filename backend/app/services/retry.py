"""
Discipline d'accès au registre partagé :
- espacement minimal global entre deux appels (anticipe la limitation de débit) ;
- nouvel essai avec backoff exponentiel sur les erreurs passagères (429/503, reset).
Toute autre erreur remonte immédiatement à l'appelant.
"""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from app.stores.base import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerCallGate:

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        min_interval: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def backoff_delay(self, attempt: int) -> float:
        """Délai après l'essai n° attempt (0 → 1 s, 1 → 2 s, ... plafonné à max_delay)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _wait_turn(self) -> None:
        # Le verrou est conservé pendant l'attente : les appelants sont sérialisés
        with self._lock:
            now = self._clock()
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    self._sleep(remaining)
                    now = self._clock()
            self._last_call = now

    def call(self, operation: Callable[[], T], description: str = "appel registre") -> T:
        last_error: Optional[Exception] = None

        for attempt in range(self.max_attempts):
            self._wait_turn()
            try:
                return operation()
            except (TransientStoreError, ConnectionResetError) as exc:
                last_error = exc
                if attempt + 1 >= self.max_attempts:
                    break
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "%s : erreur passagère (%s), nouvel essai dans %.1fs (%d/%d)",
                    description, exc, delay, attempt + 1, self.max_attempts,
                )
                self._sleep(delay)

        logger.error("%s : abandon après %d essais", description, self.max_attempts)
        if isinstance(last_error, TransientStoreError):
            raise last_error
        raise TransientStoreError(str(last_error)) from last_error
