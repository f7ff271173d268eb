"""Safety-report service client."""

from __future__ import annotations

from typing import Any

from sniper.connectors.http import ServiceClient


class SafetyReportClient:
    """Fetch the raw safety report for a mint."""

    def __init__(self, client: ServiceClient, timeout_sec: float = 10.0) -> None:
        self.client = client
        self.timeout_sec = timeout_sec

    async def report(self, mint: str) -> dict[str, Any]:
        data = await self.client.get_json(
            f"/tokens/{mint}/report",
            timeout=self.timeout_sec,
            attempts=2,
        )
        return data if isinstance(data, dict) else {}
