"""Pool validation: decide whether a mint has a genuinely tradable AMM pool right now."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import structlog

from sniper.config.settings import NATIVE_MINT, STABLE_MINT, PipelineConfig
from sniper.connectors.amm_registry import AmmRegistryClient
from sniper.connectors.bonding_curve import BondingCurveClient
from sniper.connectors.http import ServiceError, ServiceHTTPError, ServiceUnavailableError
from sniper.models import PoolRecord

EMPTY_LP_MINT = "11111111111111111111111111111111"


def is_outage(exc: ServiceError) -> bool:
    """True when the error says the service is down, not that the answer is no."""
    if isinstance(exc, ServiceUnavailableError):
        return True
    if isinstance(exc, ServiceHTTPError):
        return exc.server_error or exc.rate_limited
    return False


class PoolCheckOutcome(str, Enum):
    PASS = "PASS"
    WAITING = "WAITING"
    DISCARDED = "DISCARDED"


class PoolFailure(str, Enum):
    """Failure classes, ordered from least to most informative."""

    NOT_FOUND = "NOT_FOUND"
    CHECKLIST = "CHECKLIST"
    LIQUIDITY = "LIQUIDITY"
    WAITING = "WAITING"


_FAILURE_RANK = {
    PoolFailure.NOT_FOUND: 0,
    PoolFailure.CHECKLIST: 1,
    PoolFailure.LIQUIDITY: 2,
    PoolFailure.WAITING: 3,
}


@dataclass(frozen=True)
class PoolCheck:
    outcome: PoolCheckOutcome
    reason: str
    liquidity: float
    failure: PoolFailure | None = None


@dataclass(frozen=True)
class PoolTradable:
    pool_address: str
    liquidity: float
    reason: str
    pool: PoolRecord


@dataclass(frozen=True)
class PoolWaiting:
    pool_address: str
    reason: str


@dataclass(frozen=True)
class PoolDiscarded:
    reason: str
    infrastructure: bool = False
    pool_address: str | None = None


PoolVerdict = PoolTradable | PoolWaiting | PoolDiscarded


def pool_liquidity(pool: PoolRecord, stablecoin_per_native: float) -> float:
    """Base-side reserve expressed in native units."""
    if pool.base_mint == STABLE_MINT:
        return pool.base_reserve / stablecoin_per_native
    return pool.base_reserve


def check_pool(
    pool: PoolRecord,
    min_liquidity: float,
    now: float,
    stablecoin_per_native: float = 150.0,
    hard_floor: float = 20.0,
    valid_statuses: frozenset[int] | set[int] = frozenset({1, 6}),
) -> PoolCheck:
    """Run the checklist against one pool, stopping at the first failure."""
    liquidity = pool_liquidity(pool, stablecoin_per_native)

    if pool.base_mint not in (NATIVE_MINT, STABLE_MINT):
        return PoolCheck(
            PoolCheckOutcome.DISCARDED,
            f"Invalid base mint: {pool.base_mint}",
            liquidity,
            PoolFailure.CHECKLIST,
        )
    if pool.status not in valid_statuses:
        return PoolCheck(
            PoolCheckOutcome.DISCARDED,
            f"Pool not in tradable status: {pool.status}",
            liquidity,
            PoolFailure.CHECKLIST,
        )
    if pool.open_time > now:
        return PoolCheck(
            PoolCheckOutcome.WAITING,
            f"Pool not open yet. Opens at: {int(pool.open_time)}",
            liquidity,
            PoolFailure.WAITING,
        )
    if pool.base_reserve <= 0 or pool.quote_reserve <= 0:
        return PoolCheck(
            PoolCheckOutcome.WAITING,
            f"Empty vault: base={pool.base_reserve}, quote={pool.quote_reserve}",
            liquidity,
            PoolFailure.WAITING,
        )
    required = max(min_liquidity, hard_floor)
    if liquidity < required:
        return PoolCheck(
            PoolCheckOutcome.DISCARDED,
            f"Insufficient liquidity: {liquidity:.2f} < {required:.2f}",
            liquidity,
            PoolFailure.LIQUIDITY,
        )
    if not pool.lp_mint or pool.lp_mint == EMPTY_LP_MINT or pool.lp_supply <= 0:
        return PoolCheck(
            PoolCheckOutcome.DISCARDED,
            f"LP not initialized: mint={pool.lp_mint or 'none'}, supply={pool.lp_supply}",
            liquidity,
            PoolFailure.CHECKLIST,
        )
    return PoolCheck(PoolCheckOutcome.PASS, "All pool checks passed", liquidity)


class PoolValidator:
    """Pick the best pool for a mint that passes every check."""

    def __init__(
        self,
        registry: AmmRegistryClient,
        config: PipelineConfig | None = None,
        bonding: BondingCurveClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.config = config or PipelineConfig()
        self.bonding = bonding
        self._clock = clock
        self.log = structlog.get_logger(__name__)

    async def validate(self, mint: str, min_liquidity: float | None = None) -> PoolVerdict:
        min_liquidity = self.config.min_liquidity if min_liquidity is None else min_liquidity
        try:
            pools = await self.registry.pools_for_mint(mint)
        except ServiceError as exc:
            if is_outage(exc):
                self.log.warning("pool_registry_unavailable", mint=mint, error=str(exc))
                return PoolDiscarded(reason=f"registry unavailable: {exc.message}", infrastructure=True)
            if isinstance(exc, ServiceHTTPError) and exc.not_found:
                return PoolDiscarded(reason="No AMM pool found")
            self.log.info("pool_registry_rejected", mint=mint, error=str(exc))
            return PoolDiscarded(reason=f"registry rejected lookup: {exc.message}")

        if not pools:
            return PoolDiscarded(reason="No AMM pool found")

        now = self._clock()
        stable_rate = self.config.stablecoin_per_native
        ranked = sorted(pools, key=lambda pool: pool_liquidity(pool, stable_rate), reverse=True)
        best_failure: tuple[PoolCheck, PoolRecord] | None = None
        for pool in ranked:
            check = check_pool(
                pool,
                min_liquidity,
                now,
                stablecoin_per_native=stable_rate,
                hard_floor=self.config.liquidity_hard_floor,
                valid_statuses=set(self.config.valid_pool_statuses),
            )
            if check.outcome == PoolCheckOutcome.PASS:
                if self.bonding is not None:
                    status = await self.bonding.status(mint)
                    if status is not None and status.on_curve:
                        return PoolDiscarded(
                            reason="Token still on bonding curve",
                            pool_address=pool.address,
                        )
                self.log.info(
                    "pool_validated",
                    mint=mint,
                    pool=pool.address,
                    liquidity=round(check.liquidity, 4),
                )
                return PoolTradable(
                    pool_address=pool.address,
                    liquidity=check.liquidity,
                    reason=check.reason,
                    pool=pool,
                )
            if best_failure is None or _FAILURE_RANK[check.failure or PoolFailure.CHECKLIST] > _FAILURE_RANK[
                best_failure[0].failure or PoolFailure.CHECKLIST
            ]:
                best_failure = (check, pool)

        if best_failure is None:
            return PoolDiscarded(reason="No AMM pool found")
        check, pool = best_failure
        self.log.info("pool_rejected", mint=mint, pool=pool.address, reason=check.reason)
        if check.outcome == PoolCheckOutcome.WAITING:
            return PoolWaiting(pool_address=pool.address, reason=check.reason)
        return PoolDiscarded(reason=check.reason, pool_address=pool.address)
