"""Swap execution: buy (snipe) and sell (exit) with bounded retry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog

from sniper.config.settings import NATIVE_MINT, PRIORITY_FEES, TradingConfig
from sniper.connectors.http import ServiceError
from sniper.connectors.swap_venues import (
    LAMPORTS_PER_NATIVE,
    Quote,
    QuoteErrorKind,
    SwapVenue,
    to_lamports,
)
from sniper.models import SignFn, SignResult

MIN_RETRY_DELAY_SEC = 1.0
MAX_RETRY_DELAY_SEC = 4.0


def backoff_delay(attempt: int, retry_delay_ms: int) -> float:
    """Delay before retrying after ``attempt`` (1-based), clamped to [1s, 4s]."""
    delay = (retry_delay_ms / 1000) * 2 ** max(0, attempt - 1)
    return min(MAX_RETRY_DELAY_SEC, max(MIN_RETRY_DELAY_SEC, delay))


@dataclass(frozen=True)
class Fill:
    token_mint: str
    venue: str
    tx_hash: str
    native_spent: float
    token_amount: float
    entry_price: float
    attempts: int


@dataclass(frozen=True)
class SnipeSucceeded:
    fill: Fill

    @property
    def status(self) -> str:
        return "SUCCESS"


@dataclass(frozen=True)
class SnipeFailed:
    error: str
    attempts: int
    no_route: bool = False

    @property
    def status(self) -> str:
        return "FAILED"


SnipeResult = SnipeSucceeded | SnipeFailed


@dataclass(frozen=True)
class ExitSucceeded:
    native_received: float
    tx_hash: str
    venue: str

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class ExitFailed:
    error: str
    attempts: int
    no_route: bool = False

    @property
    def success(self) -> bool:
        return False


ExitResult = ExitSucceeded | ExitFailed


@dataclass(frozen=True)
class _Swap:
    quote: Quote
    signature: str
    output_amount: int


@dataclass(frozen=True)
class _SwapFailure:
    error: str
    no_route: bool


class TradeExecutor:
    """Quote, build, sign. Venues are tried in order inside each attempt."""

    def __init__(
        self,
        venues: list[SwapVenue],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not venues:
            raise ValueError("at least one swap venue is required")
        self.venues = venues
        self._sleep = sleep
        self.log = structlog.get_logger(__name__)

    async def snipe(
        self,
        token_mint: str,
        wallet_address: str,
        sign_fn: SignFn,
        config: TradingConfig,
    ) -> SnipeResult:
        amount = to_lamports(config.buy_amount)
        fee = to_lamports(config.priority_fee)
        failure = _SwapFailure(error="no attempts made", no_route=False)
        for attempt in range(1, config.max_retries + 1):
            outcome = await self._swap_once(
                NATIVE_MINT,
                token_mint,
                amount,
                config.slippage_bps,
                wallet_address,
                sign_fn,
                fee,
            )
            if isinstance(outcome, _Swap):
                decimals = outcome.quote.output_decimals
                if decimals is None:
                    decimals = config.token_decimals
                token_amount = outcome.output_amount / 10**decimals
                if token_amount <= 0:
                    return SnipeFailed(error="Swap confirmed with zero output", attempts=attempt)
                fill = Fill(
                    token_mint=token_mint,
                    venue=outcome.quote.venue,
                    tx_hash=outcome.signature,
                    native_spent=config.buy_amount,
                    token_amount=token_amount,
                    entry_price=config.buy_amount / token_amount,
                    attempts=attempt,
                )
                self.log.info(
                    "snipe_filled",
                    mint=token_mint,
                    venue=fill.venue,
                    tx=fill.tx_hash,
                    entry_price=fill.entry_price,
                    attempts=attempt,
                )
                return SnipeSucceeded(fill=fill)
            failure = outcome
            self.log.warning("snipe_attempt_failed", mint=token_mint, attempt=attempt, error=outcome.error)
            if attempt < config.max_retries:
                await self._sleep(backoff_delay(attempt, config.retry_delay_ms))
        return SnipeFailed(error=failure.error, attempts=config.max_retries, no_route=failure.no_route)

    async def exit_position(
        self,
        token_mint: str,
        amount: float,
        wallet_address: str,
        sign_fn: SignFn,
        slippage_bps: int = 1500,
        priority_fee: float = PRIORITY_FEES["fast"],
        max_retries: int = 2,
        retry_delay_ms: int = 800,
        token_decimals: int = 9,
    ) -> ExitResult:
        raw_amount = int(amount * 10**token_decimals)
        if raw_amount <= 0:
            return ExitFailed(error="Nothing to sell", attempts=0)
        fee = to_lamports(priority_fee)
        failure = _SwapFailure(error="no attempts made", no_route=False)
        for attempt in range(1, max_retries + 1):
            outcome = await self._swap_once(
                token_mint,
                NATIVE_MINT,
                raw_amount,
                slippage_bps,
                wallet_address,
                sign_fn,
                fee,
            )
            if isinstance(outcome, _Swap):
                received = outcome.output_amount / LAMPORTS_PER_NATIVE
                self.log.info("exit_filled", mint=token_mint, tx=outcome.signature, native_received=received)
                return ExitSucceeded(
                    native_received=received,
                    tx_hash=outcome.signature,
                    venue=outcome.quote.venue,
                )
            failure = outcome
            self.log.warning("exit_attempt_failed", mint=token_mint, attempt=attempt, error=outcome.error)
            if attempt < max_retries:
                await self._sleep(backoff_delay(attempt, retry_delay_ms))
        return ExitFailed(error=failure.error, attempts=max_retries, no_route=failure.no_route)

    async def _swap_once(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        wallet_address: str,
        sign_fn: SignFn,
        priority_fee_lamports: int,
    ) -> _Swap | _SwapFailure:
        errors: list[str] = []
        no_route = True
        for venue in self.venues:
            outcome = await venue.quote(input_mint, output_mint, amount, slippage_bps)
            if not isinstance(outcome, Quote):
                errors.append(f"{venue.name}: {outcome.kind.value} {outcome.message}")
                if outcome.kind != QuoteErrorKind.NO_ROUTE:
                    no_route = False
                continue
            if outcome.out_amount <= 0:
                errors.append(f"{venue.name}: NO_ROUTE zero output")
                continue
            try:
                transaction = await venue.build_transaction(outcome, wallet_address, priority_fee_lamports)
            except ServiceError as exc:
                no_route = False
                errors.append(f"{venue.name}: build failed {exc.message}")
                continue
            try:
                signed: SignResult = await sign_fn(transaction)
            except Exception as exc:
                return _SwapFailure(error=f"Signing failed: {exc}", no_route=False)
            if not signed.signature:
                return _SwapFailure(error=f"Transaction not sent: {signed.error or 'empty signature'}", no_route=False)
            output = signed.output_amount if signed.output_amount is not None else outcome.out_amount
            return _Swap(quote=outcome, signature=signed.signature, output_amount=output)
        prefix = "No route" if no_route else "Swap failed"
        return _SwapFailure(error=f"{prefix}: " + "; ".join(errors), no_route=no_route)
