"""Bonding-curve service client."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from sniper.connectors.http import ServiceClient, ServiceError


@dataclass(frozen=True)
class BondingStatus:
    mint: str
    on_curve: bool
    symbol: str = ""
    name: str = ""
    market_cap_usd: float | None = None


class BondingCurveClient:
    """Ask the bonding-curve venue whether a mint is still trading on its curve."""

    def __init__(self, client: ServiceClient, timeout_sec: float = 5.0) -> None:
        self.client = client
        self.timeout_sec = timeout_sec
        self.log = structlog.get_logger(__name__)

    async def status(self, mint: str) -> BondingStatus | None:
        """Return the curve status, or None when the venue does not know the mint.

        Lookup failures are reported as unknown so the pool path still runs.
        """
        try:
            data = await asyncio.wait_for(
                self.client.get_json(f"/coins/{mint}", attempts=1),
                timeout=self.timeout_sec,
            )
        except (ServiceError, asyncio.TimeoutError) as exc:
            self.log.debug("bonding_lookup_failed", mint=mint, error=str(exc))
            return None
        if not isinstance(data, dict) or data.get("mint") != mint:
            return None
        return BondingStatus(
            mint=mint,
            on_curve=data.get("complete") is False,
            symbol=str(data.get("symbol") or ""),
            name=str(data.get("name") or ""),
            market_cap_usd=data.get("usd_market_cap"),
        )
