"""Tradability pipeline: bonding check, pool validation, swap proof, enrichment."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import structlog

from sniper.config.settings import PipelineConfig
from sniper.connectors.bonding_curve import BondingCurveClient
from sniper.models import CandidateToken, LifecycleStage
from sniper.pipeline.enricher import PairEnricher, PairEnrichment, PairFound
from sniper.pipeline.pool_validator import PoolDiscarded, PoolTradable, PoolValidator, PoolWaiting
from sniper.pipeline.route_prover import RouteProven, SwapRouteProver

UNVERIFIED_PREFIX = "unverified - trusted source"


class PipelineStep(str, Enum):
    START = "START"
    POOL_CHECK = "POOL_CHECK"
    SWAP_CHECK = "SWAP_CHECK"
    ENRICH = "ENRICH"
    DONE = "DONE"


class StepSignal(str, Enum):
    ON_CURVE = "ON_CURVE"
    OFF_CURVE = "OFF_CURVE"
    PASSED = "PASSED"
    FAILED = "FAILED"
    TRUSTED = "TRUSTED"
    PASSED_UNVERIFIED = "PASSED_UNVERIFIED"


_TRANSITIONS: dict[tuple[PipelineStep, StepSignal], PipelineStep] = {
    (PipelineStep.START, StepSignal.ON_CURVE): PipelineStep.DONE,
    (PipelineStep.START, StepSignal.OFF_CURVE): PipelineStep.POOL_CHECK,
    (PipelineStep.POOL_CHECK, StepSignal.PASSED): PipelineStep.SWAP_CHECK,
    (PipelineStep.POOL_CHECK, StepSignal.TRUSTED): PipelineStep.SWAP_CHECK,
    (PipelineStep.POOL_CHECK, StepSignal.FAILED): PipelineStep.DONE,
    (PipelineStep.SWAP_CHECK, StepSignal.PASSED): PipelineStep.ENRICH,
    (PipelineStep.SWAP_CHECK, StepSignal.PASSED_UNVERIFIED): PipelineStep.DONE,
    (PipelineStep.SWAP_CHECK, StepSignal.FAILED): PipelineStep.DONE,
    (PipelineStep.ENRICH, StepSignal.PASSED): PipelineStep.DONE,
    (PipelineStep.ENRICH, StepSignal.FAILED): PipelineStep.DONE,
}


def next_step(step: PipelineStep, signal: StepSignal) -> PipelineStep:
    """Pure transition function; unknown pairs are a programming error."""
    try:
        return _TRANSITIONS[(step, signal)]
    except KeyError:
        raise ValueError(f"invalid transition: {step.value} on {signal.value}") from None


class PipelineEventType(str, Enum):
    BONDING_CHECKED = "BONDING_CHECKED"
    POOL_VALIDATED = "POOL_VALIDATED"
    SWAP_SIMULATED = "SWAP_SIMULATED"
    ENRICHED = "ENRICHED"
    VERDICT = "VERDICT"


@dataclass(frozen=True)
class PipelineEvent:
    event_type: PipelineEventType
    mint: str
    payload: dict[str, Any] = field(default_factory=dict)


PipelineObserver = Callable[[PipelineEvent], None]


@dataclass(frozen=True)
class Tradable:
    mint: str
    stage: LifecycleStage
    reason: str
    verified: bool = True
    pool_address: str | None = None
    liquidity: float | None = None
    output_amount: int | None = None
    price_impact_pct: float | None = None
    enrichment: PairEnrichment | None = None

    @property
    def status(self) -> str:
        return "TRADABLE"


@dataclass(frozen=True)
class Discarded:
    mint: str
    reason: str
    failed_at: PipelineStep
    # Pool exists but is not open/funded yet; worth re-checking later.
    retryable: bool = False
    infrastructure: bool = False

    @property
    def status(self) -> str:
        return "DISCARDED"


TradabilityVerdict = Tradable | Discarded


class TradabilityPipeline:
    """Compose the checks into one verdict per invocation."""

    def __init__(
        self,
        pool_validator: PoolValidator,
        route_prover: SwapRouteProver,
        enricher: PairEnricher | None = None,
        bonding: BondingCurveClient | None = None,
        config: PipelineConfig | None = None,
        observer: PipelineObserver | None = None,
    ) -> None:
        self.pool_validator = pool_validator
        self.route_prover = route_prover
        self.enricher = enricher
        self.bonding = bonding
        self.config = config or PipelineConfig()
        self.observer = observer
        self.log = structlog.get_logger(__name__)

    def _emit(self, event_type: PipelineEventType, mint: str, **payload: Any) -> None:
        if self.observer is None:
            return
        try:
            self.observer(PipelineEvent(event_type=event_type, mint=mint, payload=payload))
        except Exception:
            self.log.exception("pipeline_observer_failed", mint=mint, event_type=event_type.value)

    def _trusted(self, candidate: CandidateToken) -> bool:
        trusted = {source.lower() for source in self.config.trusted_sources}
        return (
            candidate.source.lower() in trusted
            and candidate.liquidity >= self.config.trusted_min_liquidity
        )

    async def check(self, candidate: CandidateToken, min_liquidity: float | None = None) -> TradabilityVerdict:
        mint = candidate.address
        step = PipelineStep.START
        pool: PoolTradable | None = None
        route: RouteProven | None = None
        verified = True
        verdict: TradabilityVerdict | None = None

        while step != PipelineStep.DONE:
            if step == PipelineStep.START:
                status = await self.bonding.status(mint) if self.bonding is not None else None
                on_curve = status is not None and status.on_curve
                self._emit(PipelineEventType.BONDING_CHECKED, mint, on_curve=on_curve)
                if on_curve:
                    verdict = Tradable(
                        mint=mint,
                        stage=LifecycleStage.BONDING,
                        reason="Trading on bonding curve",
                    )
                step = next_step(step, StepSignal.ON_CURVE if on_curve else StepSignal.OFF_CURVE)

            elif step == PipelineStep.POOL_CHECK:
                result = await self.pool_validator.validate(mint, min_liquidity)
                self._emit(
                    PipelineEventType.POOL_VALIDATED,
                    mint,
                    status=type(result).__name__,
                    reason=result.reason,
                )
                if isinstance(result, PoolTradable):
                    pool = result
                    signal = StepSignal.PASSED
                elif isinstance(result, PoolDiscarded) and result.infrastructure and self._trusted(candidate):
                    verified = False
                    self.log.warning("pool_check_trust_fallback", mint=mint, source=candidate.source)
                    signal = StepSignal.TRUSTED
                else:
                    verdict = Discarded(
                        mint=mint,
                        reason=result.reason,
                        failed_at=step,
                        retryable=isinstance(result, PoolWaiting),
                        infrastructure=isinstance(result, PoolDiscarded) and result.infrastructure,
                    )
                    signal = StepSignal.FAILED
                step = next_step(step, signal)

            elif step == PipelineStep.SWAP_CHECK:
                proof = await self.route_prover.prove(mint)
                self._emit(
                    PipelineEventType.SWAP_SIMULATED,
                    mint,
                    success=isinstance(proof, RouteProven),
                    output_amount=getattr(proof, "output_amount", None),
                )
                if isinstance(proof, RouteProven):
                    route = proof
                    if verified:
                        signal = StepSignal.PASSED
                    else:
                        verdict = Tradable(
                            mint=mint,
                            stage=LifecycleStage.LP_LIVE,
                            reason=f"{UNVERIFIED_PREFIX} ({candidate.source})",
                            verified=False,
                            liquidity=candidate.liquidity,
                            output_amount=proof.output_amount,
                            price_impact_pct=proof.price_impact_pct,
                        )
                        signal = StepSignal.PASSED_UNVERIFIED
                else:
                    verdict = Discarded(mint=mint, reason=proof.error, failed_at=step)
                    signal = StepSignal.FAILED
                step = next_step(step, signal)

            elif step == PipelineStep.ENRICH:
                if pool is None or route is None:
                    raise RuntimeError("enrichment reached without a validated pool")
                enrichment = await self.enricher.enrich(pool.pool_address) if self.enricher else None
                if isinstance(enrichment, PairFound):
                    stage = LifecycleStage.LISTED
                elif enrichment is not None and enrichment.queried:
                    stage = LifecycleStage.INDEXING
                else:
                    stage = LifecycleStage.LP_LIVE
                self._emit(PipelineEventType.ENRICHED, mint, stage=stage.value)
                verdict = Tradable(
                    mint=mint,
                    stage=stage,
                    reason="Pool validated and swap route proven",
                    pool_address=pool.pool_address,
                    liquidity=pool.liquidity,
                    output_amount=route.output_amount,
                    price_impact_pct=route.price_impact_pct,
                    enrichment=enrichment,
                )
                step = next_step(step, StepSignal.PASSED if isinstance(enrichment, PairFound) else StepSignal.FAILED)

        if verdict is None:
            raise RuntimeError(f"pipeline finished without a verdict for {mint}")
        self._emit(
            PipelineEventType.VERDICT,
            mint,
            status=verdict.status,
            reason=verdict.reason,
            stage=verdict.stage.value if isinstance(verdict, Tradable) else None,
        )
        self.log.info(
            "tradability_verdict",
            mint=mint,
            status=verdict.status,
            stage=verdict.stage.value if isinstance(verdict, Tradable) else None,
            reason=verdict.reason,
        )
        return verdict
