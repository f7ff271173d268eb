"""Swap venues: quote and transaction building against the aggregator and the AMM."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import structlog

from sniper.config.settings import NATIVE_MINT
from sniper.connectors.http import ServiceClient, ServiceError, ServiceHTTPError, ServiceUnavailableError
from sniper.models import UnsignedTransaction

LAMPORTS_PER_NATIVE = 1_000_000_000


class QuoteErrorKind(str, Enum):
    NO_ROUTE = "NO_ROUTE"
    RATE_LIMITED = "RATE_LIMITED"
    HTTP_ERROR = "HTTP_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


@dataclass(frozen=True)
class Quote:
    venue: str
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    price_impact_pct: float
    endpoint: str
    output_decimals: int | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QuoteError:
    venue: str
    kind: QuoteErrorKind
    message: str
    status_code: int | None = None

    @property
    def transient(self) -> bool:
        return self.kind != QuoteErrorKind.NO_ROUTE


QuoteOutcome = Quote | QuoteError


class SwapVenue(Protocol):
    name: str

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        timeout: float | None = None,
    ) -> QuoteOutcome: ...

    async def build_transaction(
        self,
        quote: Quote,
        wallet_address: str,
        priority_fee_lamports: int,
    ) -> UnsignedTransaction: ...


def to_lamports(amount: float) -> int:
    return int(amount * LAMPORTS_PER_NATIVE)


def _classify(venue: str, exc: ServiceError) -> QuoteError:
    if isinstance(exc, ServiceHTTPError):
        if exc.rate_limited:
            return QuoteError(venue, QuoteErrorKind.RATE_LIMITED, "rate limited", exc.status_code)
        if exc.not_found:
            return QuoteError(venue, QuoteErrorKind.NO_ROUTE, exc.body or "no route available", exc.status_code)
        return QuoteError(venue, QuoteErrorKind.HTTP_ERROR, exc.message, exc.status_code)
    if isinstance(exc, ServiceUnavailableError):
        return QuoteError(venue, QuoteErrorKind.NETWORK_ERROR, exc.message)
    return QuoteError(venue, QuoteErrorKind.HTTP_ERROR, exc.message)


class AggregatorVenue:
    """Route aggregator with equivalent primary and fallback quote endpoints."""

    name = "aggregator"

    def __init__(self, client: ServiceClient, endpoints: list[str], timeout: float = 10.0) -> None:
        if not endpoints:
            raise ValueError("at least one aggregator endpoint is required")
        self.client = client
        self.endpoints = [endpoint.rstrip("/") for endpoint in endpoints]
        self.timeout = timeout
        self.log = structlog.get_logger(__name__)

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        timeout: float | None = None,
    ) -> QuoteOutcome:
        """Try each endpoint in order.

        429 and 5xx fall through to the next endpoint; 400/404 or an error
        body is a definitive no-route and stops the walk.
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }
        saw_rate_limit = False
        last_error: QuoteError | None = None
        for endpoint in self.endpoints:
            try:
                data = await self.client.get_json(
                    f"{endpoint}/quote",
                    params=params,
                    timeout=timeout or self.timeout,
                    attempts=1,
                )
            except ServiceError as exc:
                error = _classify(self.name, exc)
                if error.kind == QuoteErrorKind.NO_ROUTE:
                    return error
                if error.kind == QuoteErrorKind.RATE_LIMITED:
                    saw_rate_limit = True
                last_error = error
                self.log.debug("aggregator_endpoint_failed", endpoint=endpoint, kind=error.kind.value)
                continue
            if not isinstance(data, dict) or data.get("error"):
                message = data.get("error") if isinstance(data, dict) else "malformed quote"
                return QuoteError(self.name, QuoteErrorKind.NO_ROUTE, str(message or "no route available"))
            try:
                out_amount = int(data.get("outAmount") or 0)
            except (TypeError, ValueError):
                out_amount = 0
            return Quote(
                venue=self.name,
                input_mint=input_mint,
                output_mint=output_mint,
                in_amount=amount,
                out_amount=out_amount,
                price_impact_pct=float(data.get("priceImpactPct") or 0.0),
                endpoint=endpoint,
                raw=data,
            )
        if saw_rate_limit:
            return QuoteError(self.name, QuoteErrorKind.RATE_LIMITED, "aggregator rate limited")
        return last_error or QuoteError(self.name, QuoteErrorKind.NETWORK_ERROR, "aggregator unavailable")

    async def build_transaction(
        self,
        quote: Quote,
        wallet_address: str,
        priority_fee_lamports: int,
    ) -> UnsignedTransaction:
        data = await self.client.post_json(
            f"{quote.endpoint}/swap",
            {
                "quoteResponse": quote.raw,
                "userPublicKey": wallet_address,
                "wrapAndUnwrapSol": True,
                "prioritizationFeeLamports": priority_fee_lamports,
                "dynamicComputeUnitLimit": True,
            },
            timeout=self.timeout,
            attempts=1,
        )
        transaction = data.get("swapTransaction") if isinstance(data, dict) else None
        if not transaction:
            raise ServiceError(self.name, "swap build returned no transaction")
        return UnsignedTransaction(
            payload=transaction,
            venue=self.name,
            last_valid_block_height=data.get("lastValidBlockHeight"),
        )


class AmmVenue:
    """Direct AMM swap computation and transaction building."""

    name = "amm"

    def __init__(self, client: ServiceClient, timeout: float = 10.0) -> None:
        self.client = client
        self.timeout = timeout

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        timeout: float | None = None,
    ) -> QuoteOutcome:
        try:
            data = await self.client.get_json(
                "/compute/swap-base-in",
                params={
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "amount": str(amount),
                    "slippageBps": str(slippage_bps),
                    "txVersion": "V0",
                },
                timeout=timeout or self.timeout,
                attempts=1,
            )
        except ServiceError as exc:
            return _classify(self.name, exc)
        if not isinstance(data, dict) or not data.get("success") or not isinstance(data.get("data"), dict):
            message = data.get("msg") if isinstance(data, dict) else None
            return QuoteError(self.name, QuoteErrorKind.NO_ROUTE, str(message or "no route available"))
        body = data["data"]
        try:
            out_amount = int(body.get("outputAmount") or 0)
        except (TypeError, ValueError):
            out_amount = 0
        decimals = body.get("outputDecimals")
        return Quote(
            venue=self.name,
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=amount,
            out_amount=out_amount,
            price_impact_pct=float(body.get("priceImpactPct") or 0.0),
            endpoint="",
            output_decimals=int(decimals) if decimals is not None else None,
            raw=data,
        )

    async def build_transaction(
        self,
        quote: Quote,
        wallet_address: str,
        priority_fee_lamports: int,
    ) -> UnsignedTransaction:
        data = await self.client.post_json(
            "/transaction/swap-base-in",
            {
                "computeUnitPriceMicroLamports": str(priority_fee_lamports),
                "swapResponse": quote.raw,
                "txVersion": "V0",
                "wallet": wallet_address,
                "wrapSol": quote.input_mint == NATIVE_MINT,
                "unwrapSol": quote.output_mint == NATIVE_MINT,
            },
            timeout=self.timeout,
            attempts=1,
        )
        rows = data.get("data") if isinstance(data, dict) else None
        if not rows or not isinstance(rows, list) or not rows[0].get("transaction"):
            raise ServiceError(self.name, "swap build returned no transaction")
        return UnsignedTransaction(
            payload=rows[0]["transaction"],
            venue=self.name,
            last_valid_block_height=rows[0].get("lastValidBlockHeight"),
        )
