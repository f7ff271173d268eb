"""Pre-trade route validation across independent swap venues."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import structlog

from sniper.config.settings import NATIVE_MINT
from sniper.connectors.swap_venues import Quote, SwapVenue, to_lamports

MIN_ADDRESS_LENGTH = 26


@dataclass(frozen=True)
class RouteValidation:
    has_route: bool
    venues: dict[str, bool] = field(default_factory=dict)
    source: str | None = None
    error: str | None = None


class RouteValidator:
    """Quote every venue concurrently; any positive quote is enough."""

    def __init__(
        self,
        venues: list[SwapVenue],
        quote_amount: float = 0.001,
        slippage_bps: int = 100,
        timeout_sec: float = 8.0,
    ) -> None:
        if len(venues) < 2:
            raise ValueError("route validation requires at least two venues")
        self.venues = venues
        self.quote_amount = quote_amount
        self.slippage_bps = slippage_bps
        self.timeout_sec = timeout_sec
        self.log = structlog.get_logger(__name__)

    async def _check(self, venue: SwapVenue, mint: str) -> tuple[bool, str | None]:
        try:
            outcome = await asyncio.wait_for(
                venue.quote(NATIVE_MINT, mint, to_lamports(self.quote_amount), self.slippage_bps),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError:
            return False, f"{venue.name}: timeout"
        if isinstance(outcome, Quote):
            if outcome.out_amount > 0:
                return True, None
            return False, f"{venue.name}: zero output"
        return False, f"{venue.name}: {outcome.kind.value}"

    async def validate(self, mint: str) -> RouteValidation:
        if not mint or len(mint) < MIN_ADDRESS_LENGTH:
            return RouteValidation(has_route=False, error="Invalid token address")
        results = await asyncio.gather(*(self._check(venue, mint) for venue in self.venues))
        venues = {venue.name: ok for venue, (ok, _) in zip(self.venues, results)}
        for venue, (ok, _) in zip(self.venues, results):
            if ok:
                return RouteValidation(has_route=True, venues=venues, source=venue.name)
        error = "; ".join(message for _, message in results if message)
        self.log.info("route_validation_failed", mint=mint, error=error)
        return RouteValidation(has_route=False, venues=venues, error=f"No route: {error}")
