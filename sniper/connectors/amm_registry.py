"""AMM registry client: list liquidity pools for a mint."""

from __future__ import annotations

from typing import Any

import structlog

from sniper.config.settings import NATIVE_MINT, STABLE_MINT
from sniper.connectors.http import ServiceClient
from sniper.models import PoolRecord

BASE_MINTS = {NATIVE_MINT, STABLE_MINT}


def _mint_of(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("address") or "")
    return str(value or "")


def parse_pool(data: dict[str, Any], mint: str) -> PoolRecord | None:
    """Orient a registry pool so the native/stable side is the base."""
    mint_a = _mint_of(data.get("mintA"))
    mint_b = _mint_of(data.get("mintB"))
    amount_a = float(data.get("mintAmountA") or 0)
    amount_b = float(data.get("mintAmountB") or 0)
    if mint_a == mint:
        base_mint, quote_mint = mint_b, mint_a
        base_reserve, quote_reserve = amount_b, amount_a
    elif mint_b == mint:
        base_mint, quote_mint = mint_a, mint_b
        base_reserve, quote_reserve = amount_a, amount_b
    else:
        return None
    lp_supply = data.get("lpAmount")
    if lp_supply is None:
        lp_supply = data.get("lpSupply", 0)
    status = data.get("status")
    return PoolRecord(
        address=str(data.get("id") or data.get("poolId") or ""),
        base_mint=base_mint,
        quote_mint=quote_mint,
        base_reserve=base_reserve,
        quote_reserve=quote_reserve,
        open_time=float(data.get("openTime") or 0),
        # Registry omits status for standard pools that are already swap-enabled.
        status=int(status) if status is not None else 6,
        lp_mint=_mint_of(data.get("lpMint")),
        lp_supply=float(lp_supply or 0),
    )


class AmmRegistryClient:
    """Query the AMM registry for standard pools containing a mint."""

    def __init__(self, client: ServiceClient, page_size: int = 10) -> None:
        self.client = client
        self.page_size = page_size
        self.log = structlog.get_logger(__name__)

    async def pools_for_mint(self, mint: str) -> list[PoolRecord]:
        """Return parsed pools. Raises ServiceError when the registry is unreachable."""
        data = await self.client.get_json(
            "/pools/info/mint",
            params={
                "mint1": mint,
                "poolType": "standard",
                "poolSortField": "liquidity",
                "sortType": "desc",
                "pageSize": self.page_size,
                "page": 1,
            },
        )
        payload = data.get("data") if isinstance(data, dict) else None
        rows = payload.get("data", []) if isinstance(payload, dict) else []
        pools: list[PoolRecord] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            pool = parse_pool(row, mint)
            if pool is not None:
                pools.append(pool)
        self.log.debug("registry_pools_loaded", mint=mint, count=len(pools))
        return pools
