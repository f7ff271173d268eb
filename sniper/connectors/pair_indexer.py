"""Pair indexer client (price/volume analytics for pools)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from sniper.config.settings import NATIVE_MINT
from sniper.connectors.http import ServiceClient, ServiceHTTPError


@dataclass(frozen=True)
class PairData:
    pair_address: str
    price_usd: float | None
    price_native: float | None
    volume_24h: float | None
    liquidity_usd: float | None
    quote_mint: str
    base_mint: str = ""
    base_symbol: str = ""
    base_name: str = ""


def _float(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_pair(data: dict[str, Any]) -> PairData:
    volume = data.get("volume") or {}
    liquidity = data.get("liquidity") or {}
    quote = data.get("quoteToken") or {}
    base = data.get("baseToken") or {}
    if not isinstance(base, dict):
        base = {}
    return PairData(
        pair_address=str(data.get("pairAddress") or ""),
        price_usd=_float(data.get("priceUsd")),
        price_native=_float(data.get("priceNative")),
        volume_24h=_float(volume.get("h24")) if isinstance(volume, dict) else None,
        liquidity_usd=_float(liquidity.get("usd")) if isinstance(liquidity, dict) else None,
        quote_mint=str(quote.get("address") or "") if isinstance(quote, dict) else "",
        base_mint=str(base.get("address") or ""),
        base_symbol=str(base.get("symbol") or "").strip(),
        base_name=str(base.get("name") or "").strip(),
    )


class PairIndexerClient:
    """Query the pair indexer.

    Pool lookups are keyed by validated pool address. Token lookups are only
    used to reprice positions that are already held.
    """

    name = "pair_indexer"

    def __init__(self, client: ServiceClient, chain: str = "solana") -> None:
        self.client = client
        self.chain = chain
        self.log = structlog.get_logger(__name__)

    async def pair_by_pool(self, pool_address: str) -> PairData | None:
        try:
            data = await self.client.get_json(
                f"/latest/dex/pairs/{self.chain}/{pool_address}",
                attempts=1,
            )
        except ServiceHTTPError as exc:
            if exc.not_found:
                return None
            raise
        if not isinstance(data, dict):
            return None
        pair = data.get("pair")
        if not isinstance(pair, dict):
            pairs = data.get("pairs")
            if not isinstance(pairs, list) or not pairs:
                return None
            pair = pairs[0] if isinstance(pairs[0], dict) else None
        return parse_pair(pair) if pair else None

    async def _token_pairs(self, mint: str) -> list[PairData]:
        data = await self.client.get_json(f"/latest/dex/tokens/{mint}", attempts=1)
        pairs = data.get("pairs") if isinstance(data, dict) else None
        if not isinstance(pairs, list):
            return []
        parsed = [
            parse_pair(pair) for pair in pairs if isinstance(pair, dict) and pair.get("chainId") == self.chain
        ]
        return [pair for pair in parsed if pair.base_mint in ("", mint)]

    async def pair_for_token(self, mint: str) -> PairData | None:
        """Deepest pair trading ``mint`` as its base token."""
        pairs = await self._token_pairs(mint)
        if not pairs:
            return None
        return max(pairs, key=lambda pair: pair.liquidity_usd or 0.0)

    async def price_native(self, mint: str) -> float | None:
        """Native-denominated price from the deepest native-quoted pair."""
        pairs = await self._token_pairs(mint)
        candidates = [pair for pair in pairs if pair.quote_mint == NATIVE_MINT and pair.price_native]
        if not candidates:
            return None
        best = max(candidates, key=lambda pair: pair.liquidity_usd or 0.0)
        return best.price_native
