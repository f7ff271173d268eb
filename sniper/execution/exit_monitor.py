"""Position exit monitor: reprice open positions and drive take-profit/stop-loss sells."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

import structlog

from sniper.config.settings import PRIORITY_FEES, ExitMonitorConfig
from sniper.connectors.chain import ChainClient
from sniper.connectors.http import ServiceError
from sniper.connectors.pair_indexer import PairData
from sniper.connectors.prices import PriceSource
from sniper.connectors.wallet import WalletCapability
from sniper.execution.executor import ExitSucceeded, TradeExecutor
from sniper.execution.positions import PositionStore
from sniper.execution.trade_state import TokenTradeStateStore
from sniper.models import ExitReason, Position, PositionStatus
from sniper.monitoring.activity import ActivityCategory, ActivityLog
from sniper.pipeline.screener import is_placeholder

if TYPE_CHECKING:
    from sniper.monitoring.metrics import Metrics


class TokenMetadataSource(Protocol):
    async def pair_for_token(self, mint: str) -> PairData | None: ...


class ExitAction(str, Enum):
    HOLD = "hold"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"


# P&L percent is rounded before threshold comparison.
PNL_DECIMALS = 9


def pnl_percent(entry_price: float, current_price: float) -> float:
    if entry_price <= 0:
        return 0.0
    return round((current_price - entry_price) / entry_price * 100, PNL_DECIMALS)


def evaluate_exit(position: Position, current_price: float) -> ExitAction:
    pnl = pnl_percent(position.entry_price, current_price)
    if pnl >= position.profit_take_percentage:
        return ExitAction.TAKE_PROFIT
    if pnl <= -position.stop_loss_percentage:
        return ExitAction.STOP_LOSS
    return ExitAction.HOLD


def _prefer_real(current: str, candidate: str) -> str:
    if is_placeholder(current) and not is_placeholder(candidate):
        return candidate
    return current


@dataclass(frozen=True)
class ExitDecision:
    position_id: str
    mint: str
    action: str
    pnl_percent: float | None
    current_price: float | None
    executed: bool = False
    tx_hash: str | None = None
    reason: str = ""


@dataclass
class ExitSummary:
    total: int = 0
    holding: int = 0
    take_profit_triggered: int = 0
    stop_loss_triggered: int = 0
    executed: int = 0
    sold_externally: int = 0
    force_closed: int = 0
    failed: int = 0
    metadata_updated: int = 0
    decisions: list[ExitDecision] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "holding": self.holding,
            "take_profit_triggered": self.take_profit_triggered,
            "stop_loss_triggered": self.stop_loss_triggered,
            "executed": self.executed,
            "sold_externally": self.sold_externally,
            "force_closed": self.force_closed,
            "failed": self.failed,
            "metadata_updated": self.metadata_updated,
        }


class PositionExitMonitor:
    """One ``check_positions`` call is one tick; ``run`` repeats it on an interval."""

    def __init__(
        self,
        positions: PositionStore,
        prices: PriceSource,
        executor: TradeExecutor,
        wallet: WalletCapability,
        trade_states: TokenTradeStateStore,
        chain: ChainClient | None = None,
        activity: ActivityLog | None = None,
        config: ExitMonitorConfig | None = None,
        token_decimals: int = 9,
        metadata: TokenMetadataSource | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.positions = positions
        self.prices = prices
        self.executor = executor
        self.wallet = wallet
        self.trade_states = trade_states
        self.chain = chain
        self.activity = activity or ActivityLog()
        self.config = config or ExitMonitorConfig()
        self.token_decimals = token_decimals
        self.metadata = metadata
        self._sleep = sleep
        self._last_prices: dict[str, float] = {}
        self._stopped = asyncio.Event()
        self.log = structlog.get_logger(__name__)
        self.metrics: Metrics | None = None

    def set_metrics(self, metrics: Metrics) -> None:
        self.metrics = metrics

    def stop(self) -> None:
        self._stopped.set()

    async def run(self) -> None:
        while not self._stopped.is_set():
            try:
                summary = await self.check_positions()
                if self.metrics:
                    self.metrics.record_loop_tick("exit_monitor")
                if summary.total:
                    self.log.info("exit_monitor_tick", **summary.to_dict())
            except Exception as exc:
                self.log.warning("exit_monitor_tick_failed", error=str(exc))
            await self._sleep(self.config.interval_sec)

    async def check_positions(self) -> ExitSummary:
        summary = ExitSummary()
        open_positions = await self.positions.fetch_positions(PositionStatus.OPEN)
        summary.total = len(open_positions)
        if self.metrics:
            self.metrics.open_positions.set(len(open_positions))
        summary.metadata_updated = await self.reconcile_metadata(open_positions)
        for position in open_positions:
            try:
                decision = await self._check_position(position)
            except Exception as exc:
                # Failures are isolated per position.
                self.log.warning(
                    "exit_check_failed",
                    position_id=position.id,
                    mint=position.token_address,
                    error=str(exc),
                )
                decision = ExitDecision(
                    position.id,
                    position.token_address,
                    "check_failed",
                    None,
                    None,
                    reason=str(exc),
                )
                summary.failed += 1
            summary.decisions.append(decision)
            if decision.action == ExitAction.HOLD.value:
                summary.holding += 1
            elif decision.action == ExitReason.SOLD_EXTERNALLY.value:
                summary.sold_externally += 1
            elif decision.action == ExitReason.FORCE_CLOSED_DEAD_TOKEN.value:
                summary.force_closed += 1
            if decision.reason.startswith(ExitAction.TAKE_PROFIT.value):
                summary.take_profit_triggered += 1
            elif decision.reason.startswith(ExitAction.STOP_LOSS.value):
                summary.stop_loss_triggered += 1
            if decision.executed:
                summary.executed += 1
            if decision.action == "sell_failed":
                summary.failed += 1
        return summary

    async def reconcile_metadata(self, positions: list[Position]) -> int:
        """Fill placeholder symbol/name from the indexer's base-token metadata.

        Lookup failures leave the position untouched until the next tick.
        """
        if self.metadata is None:
            return 0
        updated = 0
        for position in positions:
            if not (is_placeholder(position.token_symbol) or is_placeholder(position.token_name)):
                continue
            try:
                pair = await self.metadata.pair_for_token(position.token_address)
            except Exception as exc:
                self.log.debug("position_metadata_lookup_failed", mint=position.token_address, error=str(exc))
                continue
            if pair is None:
                continue
            symbol = _prefer_real(position.token_symbol, pair.base_symbol)
            name = _prefer_real(position.token_name, pair.base_name)
            if symbol == position.token_symbol and name == position.token_name:
                continue
            await self.positions.update_metadata(position.id, symbol, name)
            position.token_symbol = symbol
            position.token_name = name
            updated += 1
        return updated

    async def _still_held(self, position: Position, owner: str | None) -> bool:
        if not self.config.verify_holdings or self.chain is None or not owner:
            return True
        try:
            balance = await self.chain.token_balance(owner, position.token_address)
        except ServiceError as exc:
            # Unknown on-chain state counts as still holding.
            self.log.debug("holding_check_failed", mint=position.token_address, error=str(exc))
            return True
        return balance >= position.amount * self.config.dust_ratio

    async def _current_price(self, position: Position) -> float | None:
        price = await self.prices.price_native(position.token_address)
        if price is not None and price > 0:
            self._last_prices[position.id] = price
            return price
        return self._last_prices.get(position.id) or position.current_price

    async def _close(
        self,
        position: Position,
        price: float,
        reason: ExitReason,
        tx_hash: str | None,
    ) -> None:
        await self.positions.close_position(position.id, price, reason, tx_hash)
        self._last_prices.pop(position.id, None)
        if self.metrics:
            self.metrics.exits_total.labels(reason=reason.value).inc()

    async def _check_position(self, position: Position) -> ExitDecision:
        wallet = self.wallet.state()
        mint = position.token_address

        if not await self._still_held(position, wallet.address):
            price = await self._current_price(position) or position.entry_price
            await self._close(position, price, ExitReason.SOLD_EXTERNALLY, None)
            self.activity.warning(
                ActivityCategory.EXIT,
                "Token no longer in wallet, closing position as sold externally",
                token_symbol=position.token_symbol,
                token_address=mint,
            )
            return ExitDecision(
                position_id=position.id,
                mint=mint,
                action=ExitReason.SOLD_EXTERNALLY.value,
                pnl_percent=pnl_percent(position.entry_price, price),
                current_price=price,
                reason="wallet no longer holds token",
            )

        price = await self._current_price(position)
        if price is None:
            return ExitDecision(
                position_id=position.id,
                mint=mint,
                action=ExitAction.HOLD.value,
                pnl_percent=None,
                current_price=None,
                reason="price unavailable",
            )
        await self.positions.update_price(position.id, price)
        pnl = pnl_percent(position.entry_price, price)
        action = evaluate_exit(position, price)
        if action == ExitAction.HOLD:
            return ExitDecision(position.id, mint, ExitAction.HOLD.value, pnl, price)

        trigger = f"{action.value} at {pnl:.2f}%"
        if not wallet.is_connected or not wallet.address:
            self.activity.warning(
                ActivityCategory.WALLET,
                f"Exit triggered ({trigger}) but wallet is not connected",
                token_symbol=position.token_symbol,
                token_address=mint,
            )
            return ExitDecision(position.id, mint, "sell_deferred", pnl, price, reason=trigger)

        async with self.trade_states.lock(mint):
            result = await self.executor.exit_position(
                mint,
                position.amount,
                wallet.address,
                self.wallet.sign_and_send,
                slippage_bps=self.config.exit_slippage_bps,
                priority_fee=PRIORITY_FEES[self.config.exit_priority],
                token_decimals=self.token_decimals,
            )
        reason = ExitReason(action.value)
        if isinstance(result, ExitSucceeded):
            await self._close(position, price, reason, result.tx_hash)
            try:
                await self.wallet.refresh_balance()
            except Exception as exc:
                self.log.warning("wallet_balance_refresh_failed", error=str(exc))
            self.activity.success(
                ActivityCategory.EXIT,
                f"Sold on {trigger}, received {result.native_received:.4f}",
                details={"tx_hash": result.tx_hash},
                token_symbol=position.token_symbol,
                token_address=mint,
            )
            return ExitDecision(
                position.id,
                mint,
                reason.value,
                pnl,
                price,
                executed=True,
                tx_hash=result.tx_hash,
                reason=trigger,
            )

        if self.metrics:
            self.metrics.exit_failures_total.inc()
        if result.no_route and pnl <= self.config.dead_token_pnl_pct:
            await self._close(position, price, ExitReason.FORCE_CLOSED_DEAD_TOKEN, None)
            self.activity.error(
                ActivityCategory.EXIT,
                f"No sell route at {pnl:.2f}%, force-closing dead token",
                details={"error": result.error},
                token_symbol=position.token_symbol,
                token_address=mint,
            )
            return ExitDecision(
                position.id,
                mint,
                ExitReason.FORCE_CLOSED_DEAD_TOKEN.value,
                pnl,
                price,
                reason=trigger,
            )

        self.activity.error(
            ActivityCategory.EXIT,
            f"Sell failed on {trigger}: {result.error}",
            token_symbol=position.token_symbol,
            token_address=mint,
        )
        return ExitDecision(position.id, mint, "sell_failed", pnl, price, reason=trigger)
