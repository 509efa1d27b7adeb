"""EmbeddingCache: content-addressed, process-local cache of embedding vectors.

Keys are sha256 digests of the whitespace-normalised text, so identical text
from different documents shares one entry. Entries are evicted least recently
used first once the capacity is exceeded, and expire after ttl_seconds
without access.

Concurrent misses for the same key are collapsed into a single computation
(single-flight). The cache runs on one event loop; its maps are only touched
between awaits, so no lock is held across the embedding call.
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from shared.helper.HelperConfig import HelperConfig
from shared.helper.TextHelper import TextHelper
from shared.models.config import CacheConfig
from shared.models.errors import EmbeddingComputeFailed

ComputeFn = Callable[[str], Awaitable[list[float]]]


@dataclass
class CacheEntry:
    vector: tuple[float, ...]
    last_access: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    computations: int = 0


class _Flight:
    """One in-flight computation and the number of callers waiting on it."""

    def __init__(self, task: asyncio.Task):
        self.task = task
        self.waiters = 0


class EmbeddingCache:
    def __init__(self, helper_config: HelperConfig, config: CacheConfig, clock: Callable[[], float] = time.monotonic):
        self.logging = helper_config.get_logger()
        self._capacity = config.capacity
        self._ttl = config.ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, _Flight] = {}
        self.stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def make_key(text: str) -> str:
        return TextHelper.content_hash(text)

    ##########################################
    ################# CORE ###################
    ##########################################

    async def get_or_compute(self, text: str, compute_fn: ComputeFn) -> list[float]:
        """Return the cached vector for text, computing it on a miss.

        Args:
            text (str): The text to embed.
            compute_fn (ComputeFn): Coroutine function producing the vector for text.

        Returns:
            list[float]: The embedding vector.

        Raises:
            EmbeddingComputeFailed: If compute_fn fails. Nothing is cached in that case and
                every caller waiting on the same key receives the same failure.
        """
        key = self.make_key(text)
        cached = self._lookup(key)
        if cached is not None:
            self.stats.hits += 1
            return list(cached)

        self.stats.misses += 1
        flight = self._inflight.get(key)
        if flight is None:
            task = asyncio.ensure_future(self._compute(key, text, compute_fn))
            flight = _Flight(task)
            self._inflight[key] = flight
            task.add_done_callback(lambda _, k=key, f=flight: self._finish_flight(k, f))
        else:
            self.logging.debug("Joining in-flight embedding for key %s", key[:12])

        flight.waiters += 1
        try:
            vector = await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            # last waiter gone: nobody needs the result anymore
            if flight.waiters == 0 and not flight.task.done():
                flight.task.cancel()
                if self._inflight.get(key) is flight:
                    del self._inflight[key]
        return list(vector)

    def invalidate(self, text: str) -> bool:
        """Drop the entry for text. Returns True if one existed."""
        return self._entries.pop(self.make_key(text), None) is not None

    def clear(self) -> None:
        self._entries.clear()

    ##########################################
    ############### HELPERS ##################
    ##########################################

    def _lookup(self, key: str) -> tuple[float, ...] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        now = self._clock()
        if self._ttl and now - entry.last_access > self._ttl:
            del self._entries[key]
            self.stats.expirations += 1
            return None
        entry.last_access = now
        self._entries.move_to_end(key)
        return entry.vector

    def _store(self, key: str, vector: list[float]) -> tuple[float, ...]:
        stored = tuple(vector)
        self._entries[key] = CacheEntry(vector=stored, last_access=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self._capacity:
            evicted_key, _ = self._entries.popitem(last=False)
            self.stats.evictions += 1
            self.logging.debug("Evicted embedding %s", evicted_key[:12])
        return stored

    async def _compute(self, key: str, text: str, compute_fn: ComputeFn) -> tuple[float, ...]:
        self.stats.computations += 1
        try:
            vector = await compute_fn(text)
        except EmbeddingComputeFailed:
            raise
        except Exception as e:
            raise EmbeddingComputeFailed(f"Embedding computation failed: {e}") from e
        if not vector:
            raise EmbeddingComputeFailed("Embedding computation returned an empty vector.")
        return self._store(key, vector)

    def _finish_flight(self, key: str, flight: _Flight) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]
        if not flight.task.cancelled() and flight.task.exception() is not None:
            self.logging.debug("Embedding for key %s failed: %s", key[:12], flight.task.exception())
