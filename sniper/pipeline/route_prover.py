"""Prove a buy route exists by quoting a tiny test trade."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from sniper.config.settings import NATIVE_MINT, PipelineConfig
from sniper.connectors.swap_venues import Quote, QuoteError, QuoteErrorKind, SwapVenue, to_lamports


@dataclass(frozen=True)
class RouteProven:
    venue: str
    output_amount: int
    price_impact_pct: float


@dataclass(frozen=True)
class RouteUnproven:
    error: str
    # True only when every backend answered with a definitive no-route.
    definitive: bool = False


RouteProof = RouteProven | RouteUnproven


class SwapRouteProver:
    """Quote native -> token at the test amount across venues in order."""

    def __init__(self, venues: list[SwapVenue], config: PipelineConfig | None = None) -> None:
        if not venues:
            raise ValueError("at least one swap venue is required")
        self.venues = venues
        self.config = config or PipelineConfig()
        self.log = structlog.get_logger(__name__)

    async def prove(self, mint: str) -> RouteProof:
        try:
            return await asyncio.wait_for(self._prove(mint), timeout=self.config.prover_budget_sec)
        except asyncio.TimeoutError:
            self.log.warning("route_proof_timeout", mint=mint, budget_sec=self.config.prover_budget_sec)
            return RouteUnproven(error="route proof timed out")

    async def _prove(self, mint: str) -> RouteProof:
        amount = to_lamports(self.config.quote_amount)
        errors: list[QuoteError] = []
        for venue in self.venues:
            outcome = await venue.quote(
                NATIVE_MINT,
                mint,
                amount,
                self.config.quote_slippage_bps,
                timeout=self.config.backend_timeout_sec,
            )
            if isinstance(outcome, Quote):
                if outcome.out_amount > 0:
                    self.log.info(
                        "route_proven",
                        mint=mint,
                        venue=outcome.venue,
                        output_amount=outcome.out_amount,
                    )
                    return RouteProven(
                        venue=outcome.venue,
                        output_amount=outcome.out_amount,
                        price_impact_pct=outcome.price_impact_pct,
                    )
                errors.append(QuoteError(venue.name, QuoteErrorKind.NO_ROUTE, "zero output amount"))
                continue
            errors.append(outcome)

        definitive = bool(errors) and all(error.kind == QuoteErrorKind.NO_ROUTE for error in errors)
        summary = "; ".join(f"{error.venue}: {error.kind.value} {error.message}".strip() for error in errors)
        self.log.info("route_unproven", mint=mint, definitive=definitive, errors=summary)
        return RouteUnproven(
            error=("No route: " if definitive else "Route check failed: ") + summary,
            definitive=definitive,
        )
