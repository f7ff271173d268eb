"""Price sources used to reprice open positions."""

from __future__ import annotations

from typing import Protocol

import structlog

from sniper.config.settings import NATIVE_MINT
from sniper.connectors.http import ServiceClient, ServiceError


class PriceSource(Protocol):
    name: str

    async def price_native(self, mint: str) -> float | None: ...


class TokenPriceClient:
    """Secondary price source returning USD quotes, converted to native units."""

    name = "token_price"

    def __init__(self, client: ServiceClient, network: str = "solana") -> None:
        self.client = client
        self.network = network

    async def price_native(self, mint: str) -> float | None:
        data = await self.client.get_json(
            f"/simple/networks/{self.network}/token_price/{mint},{NATIVE_MINT}",
            attempts=1,
        )
        attributes = (data.get("data") or {}).get("attributes") or {} if isinstance(data, dict) else {}
        prices = attributes.get("token_prices") or {}
        token_usd = _positive(prices.get(mint))
        native_usd = _positive(prices.get(NATIVE_MINT))
        if token_usd is None or native_usd is None:
            return None
        return token_usd / native_usd


def _positive(value: object) -> float | None:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class PriceChain:
    """Ask each source in order; the first positive price wins."""

    def __init__(self, sources: list[PriceSource]) -> None:
        self.sources = sources
        self.log = structlog.get_logger(__name__)

    async def price_native(self, mint: str) -> float | None:
        for source in self.sources:
            try:
                price = await source.price_native(mint)
            except ServiceError as exc:
                self.log.debug("price_source_failed", source=source.name, mint=mint, error=str(exc))
                continue
            if price is not None and price > 0:
                return price
        return None
