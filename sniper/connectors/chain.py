"""JSON-RPC reads against the chain."""

from __future__ import annotations

from itertools import count
from typing import Any

import structlog

from sniper.connectors.http import ServiceClient, ServiceError

LAMPORTS_PER_NATIVE = 1_000_000_000


class ChainClient:
    """Minimal ledger reader: native balance and token holdings."""

    def __init__(self, client: ServiceClient) -> None:
        self.client = client
        self._ids = count(1)
        self.log = structlog.get_logger(__name__)

    async def _call(self, method: str, params: list[Any]) -> Any:
        data = await self.client.post_json(
            "",
            {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params},
        )
        if not isinstance(data, dict):
            raise ServiceError(self.client.name, f"{method}: malformed response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ServiceError(self.client.name, f"{method}: {message}")
        return data.get("result")

    async def native_balance(self, owner: str) -> float:
        result = await self._call("getBalance", [owner])
        lamports = result.get("value", 0) if isinstance(result, dict) else 0
        return int(lamports) / LAMPORTS_PER_NATIVE

    async def token_balance(self, owner: str, mint: str) -> float:
        """Sum of UI amounts across the owner's token accounts for ``mint``."""
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed"}],
        )
        accounts = result.get("value", []) if isinstance(result, dict) else []
        total = 0.0
        for account in accounts:
            info = (
                account.get("account", {})
                .get("data", {})
                .get("parsed", {})
                .get("info", {})
            )
            amount = info.get("tokenAmount", {}).get("uiAmount")
            total += float(amount or 0)
        return total
