from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

import pytest

from sniper.config.settings import NATIVE_MINT, EnrichmentConfig, PipelineConfig
from sniper.connectors.bonding_curve import BondingStatus
from sniper.connectors.pair_indexer import PairData
from sniper.models import CandidateToken, LifecycleStage, PoolRecord
from sniper.pipeline.enricher import PairEnricher
from sniper.pipeline.pool_validator import PoolDiscarded, PoolTradable, PoolWaiting
from sniper.pipeline.route_prover import RouteProven, RouteUnproven
from sniper.pipeline.tradability import (
    Discarded,
    PipelineEvent,
    PipelineEventType,
    PipelineStep,
    StepSignal,
    TradabilityPipeline,
    Tradable,
    next_step,
)

MINT = "TokenMint" + "1" * 34
POOL = "Pool" + "A" * 40


def _candidate(source: str = "discovery", liquidity: float = 100.0) -> CandidateToken:
    return CandidateToken(address=MINT, symbol="NEW", name="New Launch", source=source, liquidity=liquidity)


def _tradable_pool() -> PoolTradable:
    record = PoolRecord(
        address=POOL,
        base_mint=NATIVE_MINT,
        quote_mint=MINT,
        base_reserve=50.0,
        quote_reserve=1e6,
        open_time=0,
        status=6,
        lp_mint="Lp" + "B" * 41,
        lp_supply=10.0,
    )
    return PoolTradable(pool_address=POOL, liquidity=50.0, reason="All pool checks passed", pool=record)


@dataclass
class DummyValidator:
    verdict: object
    calls: int = 0

    async def validate(self, mint: str, min_liquidity: float | None = None):
        self.calls += 1
        return self.verdict


@dataclass
class DummyProver:
    proof: object
    calls: int = 0

    async def prove(self, mint: str):
        self.calls += 1
        return self.proof


@dataclass
class DummyBonding:
    on_curve: bool

    async def status(self, mint: str) -> BondingStatus:
        return BondingStatus(mint=mint, on_curve=self.on_curve)


@dataclass
class DummyIndexer:
    pair: PairData | None = None
    hang: bool = False

    async def pair_by_pool(self, pool_address: str) -> PairData | None:
        if self.hang:
            await asyncio.Event().wait()
        return self.pair


@dataclass
class Recorder:
    events: list[PipelineEvent] = field(default_factory=list)

    def __call__(self, event: PipelineEvent) -> None:
        self.events.append(event)


PROVEN = RouteProven(venue="aggregator", output_amount=1000, price_impact_pct=0.5)


def test_next_step_transitions() -> None:
    assert next_step(PipelineStep.START, StepSignal.ON_CURVE) == PipelineStep.DONE
    assert next_step(PipelineStep.START, StepSignal.OFF_CURVE) == PipelineStep.POOL_CHECK
    assert next_step(PipelineStep.POOL_CHECK, StepSignal.PASSED) == PipelineStep.SWAP_CHECK
    assert next_step(PipelineStep.POOL_CHECK, StepSignal.TRUSTED) == PipelineStep.SWAP_CHECK
    assert next_step(PipelineStep.SWAP_CHECK, StepSignal.PASSED) == PipelineStep.ENRICH
    assert next_step(PipelineStep.SWAP_CHECK, StepSignal.FAILED) == PipelineStep.DONE


def test_next_step_rejects_skipping_swap_check() -> None:
    with pytest.raises(ValueError):
        next_step(PipelineStep.POOL_CHECK, StepSignal.PASSED_UNVERIFIED)
    with pytest.raises(ValueError):
        next_step(PipelineStep.DONE, StepSignal.PASSED)


@pytest.mark.asyncio
async def test_bonding_curve_token_short_circuits() -> None:
    validator = DummyValidator(_tradable_pool())
    pipeline = TradabilityPipeline(validator, DummyProver(PROVEN), bonding=DummyBonding(on_curve=True))
    verdict = await pipeline.check(_candidate())
    assert isinstance(verdict, Tradable)
    assert verdict.stage == LifecycleStage.BONDING
    assert validator.calls == 0


@pytest.mark.asyncio
async def test_pool_pass_without_route_is_never_tradable() -> None:
    prover = DummyProver(RouteUnproven(error="No route: aggregator: NO_ROUTE", definitive=True))
    pipeline = TradabilityPipeline(DummyValidator(_tradable_pool()), prover)
    verdict = await pipeline.check(_candidate())
    assert isinstance(verdict, Discarded)
    assert verdict.failed_at == PipelineStep.SWAP_CHECK
    assert verdict.reason.startswith("No route")


@pytest.mark.asyncio
async def test_waiting_pool_is_retryable_discard() -> None:
    prover = DummyProver(PROVEN)
    pipeline = TradabilityPipeline(DummyValidator(PoolWaiting(POOL, "Pool not open yet")), prover)
    verdict = await pipeline.check(_candidate())
    assert isinstance(verdict, Discarded)
    assert verdict.retryable is True
    assert prover.calls == 0


@pytest.mark.asyncio
async def test_listed_when_indexer_has_pair() -> None:
    pair = PairData(POOL, 0.01, 0.0001, 5000.0, 20000.0, NATIVE_MINT)
    recorder = Recorder()
    pipeline = TradabilityPipeline(
        DummyValidator(_tradable_pool()),
        DummyProver(PROVEN),
        enricher=PairEnricher(DummyIndexer(pair=pair), EnrichmentConfig()),
        observer=recorder,
    )
    verdict = await pipeline.check(_candidate())
    assert isinstance(verdict, Tradable)
    assert verdict.stage == LifecycleStage.LISTED
    assert verdict.pool_address == POOL
    assert [event.event_type for event in recorder.events] == [
        PipelineEventType.BONDING_CHECKED,
        PipelineEventType.POOL_VALIDATED,
        PipelineEventType.SWAP_SIMULATED,
        PipelineEventType.ENRICHED,
        PipelineEventType.VERDICT,
    ]


@pytest.mark.asyncio
async def test_indexing_when_indexer_has_no_pair_yet() -> None:
    pipeline = TradabilityPipeline(
        DummyValidator(_tradable_pool()),
        DummyProver(PROVEN),
        enricher=PairEnricher(DummyIndexer(pair=None), EnrichmentConfig()),
    )
    verdict = await pipeline.check(_candidate())
    assert isinstance(verdict, Tradable)
    assert verdict.stage == LifecycleStage.INDEXING


@pytest.mark.asyncio
async def test_hanging_enrichment_never_blocks_verdict() -> None:
    pipeline = TradabilityPipeline(
        DummyValidator(_tradable_pool()),
        DummyProver(PROVEN),
        enricher=PairEnricher(DummyIndexer(hang=True), EnrichmentConfig(timeout_sec=0.2)),
    )
    started = time.monotonic()
    verdict = await pipeline.check(_candidate())
    assert time.monotonic() - started < 3.0
    assert isinstance(verdict, Tradable)
    assert verdict.stage in (LifecycleStage.LP_LIVE, LifecycleStage.INDEXING)


@pytest.mark.asyncio
async def test_trusted_source_falls_back_when_registry_is_down() -> None:
    prover = DummyProver(PROVEN)
    pipeline = TradabilityPipeline(
        DummyValidator(PoolDiscarded(reason="registry unavailable", infrastructure=True)),
        prover,
        config=PipelineConfig(trusted_sources=["launchpad"], trusted_min_liquidity=50.0),
    )
    verdict = await pipeline.check(_candidate(source="Launchpad", liquidity=60.0))
    assert isinstance(verdict, Tradable)
    assert verdict.verified is False
    assert verdict.stage == LifecycleStage.LP_LIVE
    assert verdict.reason.startswith("unverified - trusted source")
    assert prover.calls == 1


@pytest.mark.asyncio
async def test_untrusted_source_is_discarded_when_registry_is_down() -> None:
    pipeline = TradabilityPipeline(
        DummyValidator(PoolDiscarded(reason="registry unavailable", infrastructure=True)),
        DummyProver(PROVEN),
        config=PipelineConfig(trusted_sources=["launchpad"], trusted_min_liquidity=50.0),
    )
    verdict = await pipeline.check(_candidate(source="launchpad", liquidity=10.0))
    assert isinstance(verdict, Discarded)
    assert verdict.infrastructure is True


@pytest.mark.asyncio
async def test_failing_observer_does_not_break_pipeline() -> None:
    def explode(event: PipelineEvent) -> None:
        raise RuntimeError("observer down")

    pipeline = TradabilityPipeline(DummyValidator(_tradable_pool()), DummyProver(PROVEN), observer=explode)
    verdict = await pipeline.check(_candidate())
    assert isinstance(verdict, Tradable)
    assert verdict.stage == LifecycleStage.LP_LIVE
