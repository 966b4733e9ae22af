"""In-memory single-flight guard: at most one active pipeline run per fingerprint.

The guard is owned by whoever builds the orchestrator (one per process, one
per test) rather than being a module-level registry. It is process-local and
does not survive restarts; nothing partial is ever committed to the artifact
store, so losing in-flight state on restart is harmless.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from storygen.errors import GenerationInProgress

logger = logging.getLogger(__name__)


class SingleFlightGuard:
    """Registry of fingerprints with an active pipeline run.

    try_acquire/release are atomic under a lock, so the guard is safe to
    share between threads as well as coroutines on one event loop.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def try_acquire(self, fingerprint: str) -> bool:
        """Return True if the caller now owns the run for fingerprint."""
        with self._lock:
            if fingerprint in self._in_flight:
                return False
            self._in_flight.add(fingerprint)
            return True

    def release(self, fingerprint: str) -> None:
        with self._lock:
            if fingerprint not in self._in_flight:
                raise RuntimeError(f"Release of {fingerprint} without a matching acquire")
            self._in_flight.discard(fingerprint)

    def is_in_flight(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._in_flight

    def in_flight(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._in_flight)

    @contextmanager
    def hold(self, fingerprint: str) -> Iterator[None]:
        """Own the run for fingerprint for the duration of the block.

        Raises:
            GenerationInProgress: If another caller already owns it
        """
        if not self.try_acquire(fingerprint):
            raise GenerationInProgress(fingerprint)
        logger.debug(f"Acquired single-flight slot for {fingerprint}")
        try:
            yield
        finally:
            self.release(fingerprint)
            logger.debug(f"Released single-flight slot for {fingerprint}")
