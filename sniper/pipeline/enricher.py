"""Best-effort pair enrichment keyed by validated pool address."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from cachetools import TTLCache
import structlog

from sniper.config.settings import EnrichmentConfig
from sniper.connectors.pair_indexer import PairIndexerClient


@dataclass(frozen=True)
class PairFound:
    pool_address: str
    price_usd: float | None
    volume_24h: float | None
    liquidity_usd: float | None

    @property
    def pair_found(self) -> bool:
        return True


@dataclass(frozen=True)
class PairMissing:
    pool_address: str
    # Whether a live indexer query answered "no pair" during this call.
    queried: bool
    attempts: int
    retry_at: float | None = None

    @property
    def pair_found(self) -> bool:
        return False


PairEnrichment = PairFound | PairMissing


@dataclass(frozen=True)
class _LookupState:
    attempts: int
    next_retry_at: float | None


class PairEnricher:
    """Attach indexer price/volume to a proven-tradable pool.

    A found pair is cached until it expires; misses are retried with backoff
    up to ``max_attempts`` (one attempt in ``rpc`` mode) and then left alone.
    Never raises and never takes longer than ``timeout_sec``.
    """

    def __init__(
        self,
        indexer: PairIndexerClient,
        config: EnrichmentConfig | None = None,
        cache: TTLCache[str, PairFound | _LookupState] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.indexer = indexer
        self.config = config or EnrichmentConfig()
        self._clock = clock
        self.cache = cache if cache is not None else TTLCache(
            maxsize=self.config.cache_size,
            ttl=self.config.cache_ttl_sec,
            timer=clock,
        )
        self.log = structlog.get_logger(__name__)

    @property
    def max_attempts(self) -> int:
        return 1 if self.config.mode == "rpc" else self.config.max_attempts

    def backoff_sec(self, attempts: int) -> float:
        delay = self.config.backoff_min_sec * 2 ** max(0, attempts - 1)
        return min(self.config.backoff_max_sec, delay)

    async def enrich(self, pool_address: str) -> PairEnrichment:
        cached = self.cache.get(pool_address)
        if isinstance(cached, PairFound):
            return cached
        state = cached if isinstance(cached, _LookupState) else _LookupState(attempts=0, next_retry_at=None)
        now = self._clock()
        if state.attempts >= self.max_attempts:
            return PairMissing(pool_address=pool_address, queried=False, attempts=state.attempts)
        if state.next_retry_at is not None and now < state.next_retry_at:
            return PairMissing(
                pool_address=pool_address,
                queried=False,
                attempts=state.attempts,
                retry_at=state.next_retry_at,
            )

        attempts = state.attempts + 1
        queried = False
        pair = None
        try:
            pair = await asyncio.wait_for(
                self.indexer.pair_by_pool(pool_address),
                timeout=self.config.timeout_sec,
            )
            queried = True
        except asyncio.TimeoutError:
            self.log.info("pair_enrichment_timeout", pool=pool_address, attempt=attempts)
        except Exception as exc:
            self.log.info("pair_enrichment_failed", pool=pool_address, attempt=attempts, error=str(exc))

        if pair is not None:
            found = PairFound(
                pool_address=pool_address,
                price_usd=pair.price_usd,
                volume_24h=pair.volume_24h,
                liquidity_usd=pair.liquidity_usd,
            )
            self.cache[pool_address] = found
            self.log.info("pair_enriched", pool=pool_address, price_usd=pair.price_usd)
            return found

        retry_at = now + self.backoff_sec(attempts) if attempts < self.max_attempts else None
        self.cache[pool_address] = _LookupState(attempts=attempts, next_retry_at=retry_at)
        return PairMissing(
            pool_address=pool_address,
            queried=queried,
            attempts=attempts,
            retry_at=retry_at,
        )
