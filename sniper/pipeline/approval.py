"""Approval gate: screener, tradability pipeline and risk assessor in one pass."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Callable

import structlog

from sniper.config.settings import PipelineConfig, ScreenerConfig
from sniper.models import CandidateToken, LifecycleStage
from sniper.monitoring.activity import ActivityCategory, ActivityLog
from sniper.pipeline.screener import screen_candidate
from sniper.pipeline.tradability import Discarded, TradabilityPipeline, Tradable
from sniper.risk.assessor import RiskAssessment, RiskAssessor

if TYPE_CHECKING:
    from sniper.monitoring.metrics import Metrics


@dataclass(frozen=True)
class Approval:
    candidate: CandidateToken
    approved: bool
    reason: str
    # Screener rejections carry no verdict.
    verdict: Tradable | Discarded | None = None
    risk: RiskAssessment | None = None

    @property
    def retryable(self) -> bool:
        return isinstance(self.verdict, Discarded) and self.verdict.retryable


def approved_token(candidate: CandidateToken, verdict: Tradable, risk: RiskAssessment) -> CandidateToken:
    return replace(
        candidate,
        stage=verdict.stage,
        liquidity=verdict.liquidity if verdict.liquidity is not None else candidate.liquidity,
        risk_score=risk.overall_score,
        is_tradeable=True,
        can_buy=True,
        can_sell=True,
    )


class ApprovalGate:
    def __init__(
        self,
        pipeline: TradabilityPipeline,
        assessor: RiskAssessor,
        screener: ScreenerConfig | None = None,
        activity: ActivityLog | None = None,
        config: PipelineConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.pipeline = pipeline
        self.assessor = assessor
        self.screener = screener or ScreenerConfig()
        self.activity = activity or ActivityLog()
        self.config = config or PipelineConfig()
        self._clock = clock
        # mint -> (due_at, candidate) for pools that were not open yet
        self._deferred: dict[str, tuple[float, CandidateToken]] = {}
        self._rechecks: dict[str, int] = {}
        self.log = structlog.get_logger(__name__)
        self.metrics: Metrics | None = None

    def set_metrics(self, metrics: Metrics) -> None:
        self.metrics = metrics

    async def evaluate(self, candidate: CandidateToken) -> Approval:
        screen = screen_candidate(candidate, self.screener)
        if not screen.passed:
            reason = "; ".join(screen.rejections)
            self.log.info("candidate_screened_out", mint=candidate.address, reason=reason)
            return Approval(candidate=candidate, approved=False, reason=reason)

        started = time.perf_counter()
        verdict = await self.pipeline.check(candidate)
        if self.metrics:
            self.metrics.pipeline_latency_sec.observe(time.perf_counter() - started)
            stage = verdict.stage.value if isinstance(verdict, Tradable) else "none"
            self.metrics.pipeline_verdicts_total.labels(status=verdict.status, stage=stage).inc()
        if isinstance(verdict, Discarded):
            self.activity.info(
                ActivityCategory.EVALUATE,
                f"Not tradable: {verdict.reason}",
                token_symbol=candidate.symbol,
                token_address=candidate.address,
            )
            return Approval(candidate=candidate, approved=False, reason=verdict.reason, verdict=verdict)

        if verdict.stage == LifecycleStage.BONDING:
            # Bonding-curve tokens have no pool holders to score yet.
            risk = RiskAssessment(
                overall_score=candidate.risk_score,
                is_rug_pull=False,
                is_honeypot=False,
                has_mint_authority=False,
                has_freeze_authority=candidate.freeze_authority,
                holder_count=0,
                top_holder_percent=0.0,
                passed=True,
                verified=False,
            )
        else:
            risk = await self.assessor.assess(candidate.address)
        if not risk.passed:
            if self.metrics:
                self.metrics.risk_rejections_total.inc()
            reason = "; ".join(risk.reasons)
            self.activity.warning(
                ActivityCategory.EVALUATE,
                f"Risk check failed: {reason}",
                details={"risk_score": risk.overall_score},
                token_symbol=candidate.symbol,
                token_address=candidate.address,
            )
            return Approval(candidate=candidate, approved=False, reason=reason, verdict=verdict, risk=risk)

        self.activity.success(
            ActivityCategory.EVALUATE,
            f"Approved ({verdict.stage.value}): {verdict.reason}",
            details={"risk_score": risk.overall_score, "verified": verdict.verified and risk.verified},
            token_symbol=candidate.symbol,
            token_address=candidate.address,
        )
        return Approval(
            candidate=approved_token(candidate, verdict, risk),
            approved=True,
            reason=verdict.reason,
            verdict=verdict,
            risk=risk,
        )

    async def approve(self, candidates: list[CandidateToken]) -> list[CandidateToken]:
        """Evaluate sequentially and return the candidates cleared for buying."""
        approved: list[CandidateToken] = []
        for candidate in candidates:
            try:
                result = await self.evaluate(candidate)
            except Exception as exc:
                self.log.warning("candidate_evaluation_failed", mint=candidate.address, error=str(exc))
                continue
            if result.retryable:
                self._defer(candidate)
                continue
            self._rechecks.pop(candidate.address, None)
            self._deferred.pop(candidate.address, None)
            if result.approved:
                approved.append(result.candidate)
        return approved

    @property
    def deferred_count(self) -> int:
        return len(self._deferred)

    def take_due(self) -> list[CandidateToken]:
        """Pop deferred candidates whose re-check time has come."""
        now = self._clock()
        due = [mint for mint, (due_at, _) in self._deferred.items() if due_at <= now]
        return [self._deferred.pop(mint)[1] for mint in due]

    def _defer(self, candidate: CandidateToken) -> None:
        rechecks = self._rechecks.get(candidate.address, 0) + 1
        if rechecks > self.config.max_rechecks:
            self._rechecks.pop(candidate.address, None)
            self._deferred.pop(candidate.address, None)
            self.log.info("candidate_recheck_limit_reached", mint=candidate.address, rechecks=rechecks - 1)
            return
        self._rechecks[candidate.address] = rechecks
        self._deferred[candidate.address] = (self._clock() + self.config.recheck_interval_sec, candidate)
        self.log.info("candidate_deferred", mint=candidate.address, recheck=rechecks)
