"""Tradability pipeline: pool checks, swap proofs, enrichment and approval."""

from sniper.pipeline.approval import Approval, ApprovalGate
from sniper.pipeline.enricher import PairEnricher, PairFound, PairMissing
from sniper.pipeline.pool_validator import PoolValidator, check_pool
from sniper.pipeline.route_prover import RouteProven, RouteUnproven, SwapRouteProver
from sniper.pipeline.route_validator import RouteValidation, RouteValidator
from sniper.pipeline.screener import ScreenResult, screen_candidate
from sniper.pipeline.tradability import (
    Discarded,
    PipelineStep,
    StepSignal,
    TradabilityPipeline,
    Tradable,
    next_step,
)

__all__ = [
    "Approval",
    "ApprovalGate",
    "PairEnricher",
    "PairFound",
    "PairMissing",
    "PoolValidator",
    "check_pool",
    "RouteProven",
    "RouteUnproven",
    "SwapRouteProver",
    "RouteValidation",
    "RouteValidator",
    "ScreenResult",
    "screen_candidate",
    "Discarded",
    "PipelineStep",
    "StepSignal",
    "TradabilityPipeline",
    "Tradable",
    "next_step",
]
