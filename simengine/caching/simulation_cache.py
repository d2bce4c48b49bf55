"""
Simulation Cache — content-addressed cache of completed simulation results.

Keys are a SHA-256 hash of a normalized, requester-independent projection of
the request (campaign, timeframe, sorted metrics, sorted scenario types,
sorted external sources), so identical simulations are shared across users.
Entries expire after a TTL; beyond `max_entries` the least recently used
entry is evicted.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Optional, Sequence

import structlog
from pydantic import BaseModel

from simengine.config import get_settings
from simengine.models.enums import Granularity
from simengine.models.request import SimulationRequest
from simengine.models.results import CacheStatistics, SimulationResult

logger = structlog.get_logger()

# Smoothing factor of the retrieval-time moving average
RETRIEVAL_EMA_ALPHA = 0.1


class CacheEntry(BaseModel):
    key: str
    campaign_id: str
    result: SimulationResult
    created_at: float
    expires_at: float
    hit_count: int = 0


def generate_cache_key(request: SimulationRequest) -> str:
    """
    Stable cache key for a request.

    Requester identity is not part of the request, so the key is shareable.
    Reordering metrics, scenarios or sources does not change the key.
    """
    timeframe = request.timeframe
    normalized = {
        "campaign_id": request.campaign_id,
        "timeframe": {
            "start_date": timeframe.start_date.isoformat(),
            "end_date": timeframe.end_date.isoformat(),
            "granularity": timeframe.granularity.value,
        },
        "metrics": sorted(
            (
                {"type": m.type, "weight": m.weight, "benchmark_source": m.benchmark_source}
                for m in request.metrics
            ),
            key=lambda m: (m["type"], m["weight"], m["benchmark_source"] or ""),
        ),
        "scenarios": sorted(s.type.value for s in request.scenarios),
        "external_data_sources": sorted(s.source for s in request.external_data_sources),
    }
    digest = hashlib.sha256(json.dumps(normalized, sort_keys=True).encode("utf-8")).hexdigest()
    return f"sim_{digest}"


class SimulationCache:
    """
    Thread-safe in-process result cache with TTL and LRU eviction.

    Results are copied on the way in and out, so callers can never mutate a
    cached entry.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.cache_ttl_seconds
        self.max_entries = max_entries if max_entries is not None else settings.cache_max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._average_retrieval_ms = 0.0
        self.logger = structlog.get_logger()

    # =========================================================================
    # Reads and writes
    # =========================================================================

    def get(self, request: SimulationRequest) -> Optional[SimulationResult]:
        """Cached result for the request, None on a miss or expired entry."""
        started = time.perf_counter()
        key = generate_cache_key(request)
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at <= self._clock():
                del self._entries[key]
                entry = None

            if entry is None:
                self._record_lookup(hit=False, started=started)
                self.logger.debug("cache_miss", cache_key=key, campaign_id=request.campaign_id)
                return None

            entry.hit_count += 1
            self._entries.move_to_end(key)
            self._record_lookup(hit=True, started=started)
            result = entry.result.model_copy(deep=True)

        self.logger.info("cache_hit", cache_key=key, campaign_id=request.campaign_id)
        return result

    def set(
        self,
        request: SimulationRequest,
        result: SimulationResult,
        ttl_seconds: Optional[float] = None,
    ) -> str:
        """
        Store a completed result.

        Args:
            request: Request the result answers
            result: Completed simulation result
            ttl_seconds: Override of the default TTL

        Returns:
            The cache key
        """
        key = generate_cache_key(request)
        now = self._clock()
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        entry = CacheEntry(
            key=key,
            campaign_id=request.campaign_id,
            result=result.model_copy(deep=True),
            created_at=now,
            expires_at=now + ttl,
        )
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._evictions += 1
                self.logger.debug("cache_evicted", cache_key=evicted_key)
            size = len(self._entries)

        self.logger.info(
            "cache_set",
            cache_key=key,
            campaign_id=request.campaign_id,
            ttl_seconds=ttl,
            cache_size=size,
        )
        return key

    def contains(self, request: SimulationRequest) -> bool:
        key = generate_cache_key(request)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.expires_at > self._clock()

    # =========================================================================
    # Maintenance
    # =========================================================================

    def invalidate_campaign(self, campaign_id: str) -> int:
        """Drop every entry for a campaign; returns the number removed."""
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.campaign_id == campaign_id]
            for key in keys:
                del self._entries[key]

        self.logger.info("cache_campaign_invalidated", campaign_id=campaign_id, removed=len(keys))
        return len(keys)

    def cleanup_expired(self) -> int:
        """Drop expired entries; returns the number removed."""
        now = self._clock()
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in keys:
                del self._entries[key]

        if keys:
            self.logger.info("cache_expired_cleaned", removed=len(keys))
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def reset_statistics(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._average_retrieval_ms = 0.0

    def get_statistics(self) -> CacheStatistics:
        with self._lock:
            total = self._hits + self._misses
            return CacheStatistics(
                total_entries=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                hit_rate=self._hits / total if total else 0.0,
                average_retrieval_time_ms=self._average_retrieval_ms,
                evictions=self._evictions,
            )

    async def warmup(
        self,
        requests: Sequence[SimulationRequest],
        compute: Callable[[SimulationRequest], Awaitable[SimulationResult]],
    ) -> int:
        """
        Pre-populate the cache, most valuable requests first.

        Requests that are already cached or not worth caching are skipped.
        A failed computation is logged and does not stop the warmup.

        Args:
            requests: Candidate requests
            compute: Coroutine producing a result for a request

        Returns:
            Number of entries written
        """
        candidates = sorted(
            (r for r in requests if self.should_cache(r) and not self.contains(r)),
            key=self.estimate_cache_value,
            reverse=True,
        )
        written = 0
        for request in candidates:
            try:
                result = await compute(request)
            except Exception as e:
                self.logger.warning(
                    "cache_warmup_failed",
                    campaign_id=request.campaign_id,
                    error=str(e),
                )
                continue
            self.set(request, result)
            written += 1

        self.logger.info("cache_warmup_completed", candidates=len(candidates), written=written)
        return written

    # =========================================================================
    # Heuristics
    # =========================================================================

    def should_cache(self, request: SimulationRequest) -> bool:
        """Whether a request is expensive enough to be worth caching."""
        if len(request.scenarios) > 1:
            return True
        if request.external_data_sources:
            return True
        if request.timeframe.days > 7:
            return True
        return len(request.metrics) > 3

    def estimate_cache_value(self, request: SimulationRequest) -> float:
        """
        Expected benefit of caching a request; higher is more expensive to
        recompute.
        """
        value = 10.0
        value += len(request.scenarios) * 20
        value += len(request.external_data_sources) * 30
        value += min(request.timeframe.days * 2, 60)
        value += len(request.metrics) * 5
        if request.timeframe.granularity == Granularity.DAILY:
            value += 15
        return value

    def _record_lookup(self, hit: bool, started: float) -> None:
        # Caller holds the lock
        if hit:
            self._hits += 1
        else:
            self._misses += 1
        elapsed_ms = (time.perf_counter() - started) * 1000
        self._average_retrieval_ms = (
            RETRIEVAL_EMA_ALPHA * elapsed_ms + (1 - RETRIEVAL_EMA_ALPHA) * self._average_retrieval_ms
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
