"""Live trading orchestrator: dedup, queue, single-flight execution with cooldown."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable

import structlog

from sniper.config.settings import OrchestratorConfig, TradingConfig
from sniper.connectors.wallet import WalletCapability
from sniper.execution.executor import SnipeSucceeded, TradeExecutor
from sniper.execution.positions import PositionStore
from sniper.execution.trade_state import TokenTradeStateStore
from sniper.models import CandidateToken, PositionStatus, TradeStatus
from sniper.monitoring.activity import ActivityCategory, ActivityLog
from sniper.pipeline.route_validator import RouteValidator

if TYPE_CHECKING:
    from sniper.monitoring.metrics import Metrics

MAX_CONCURRENT_TRADES = 1

RETRYABLE_ERROR_MARKERS = ("route", "liquidity", "pool not", "not tradable")


def is_retryable_failure(error: str) -> bool:
    """Liquidity/route-class failures are worth retrying later."""
    lowered = error.lower()
    return any(marker in lowered for marker in RETRYABLE_ERROR_MARKERS)


class TradeOutcomeKind(str, Enum):
    EXECUTED = "EXECUTED"
    SKIPPED = "SKIPPED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class TradeOutcome:
    kind: TradeOutcomeKind
    mint: str
    reason: str
    position_id: str | None = None
    tx_hash: str | None = None


@dataclass(frozen=True)
class PrerequisiteCheck:
    ok: bool
    reason: str = ""
    wallet_blocking: bool = False


class LiveTradingOrchestrator:
    """Consume approved candidates and execute buys one at a time."""

    def __init__(
        self,
        executor: TradeExecutor,
        route_validator: RouteValidator,
        trade_states: TokenTradeStateStore,
        positions: PositionStore,
        wallet: WalletCapability,
        trading_config: Callable[[], TradingConfig | None],
        activity: ActivityLog | None = None,
        config: OrchestratorConfig | None = None,
        network: str = "solana",
        trading_gate: Callable[[], tuple[bool, list[str]]] | None = None,
        on_wallet_prompt: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.executor = executor
        self.route_validator = route_validator
        self.trade_states = trade_states
        self.positions = positions
        self.wallet = wallet
        self._trading_config = trading_config
        self.activity = activity or ActivityLog()
        self.config = config or OrchestratorConfig()
        self.network = network
        self._trading_gate = trading_gate
        self._on_wallet_prompt = on_wallet_prompt
        self._clock = clock
        self._sleep = sleep
        self.log = structlog.get_logger(__name__)
        self.metrics: Metrics | None = None

        self._queue: deque[CandidateToken] = deque()
        self._queued: set[str] = set()
        self._executed: set[str] = set()
        self._active_addresses: set[str] = set()
        self._execution_lock = asyncio.Lock()
        self._executing = False
        self._last_attempt_start: float | None = None
        self._worker: asyncio.Task[None] | None = None
        self._in_flight: str | None = None
        self._blocked_reason: str | None = None

    def set_metrics(self, metrics: Metrics) -> None:
        self.metrics = metrics

    @property
    def is_executing(self) -> bool:
        return self._executing

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def status(self) -> dict[str, object]:
        return {
            "is_executing": self._executing,
            "queue_length": len(self._queue),
            "queued": [token.address for token in self._queue],
            "executed_count": len(self._executed),
            "active_positions": len(self._active_addresses),
            "trade_states": self.trade_states.counts(),
            "max_concurrent_trades": MAX_CONCURRENT_TRADES,
        }

    async def sync_active_positions(self) -> int:
        """Refresh the open-position address cache from the position store."""
        open_positions = await self.positions.fetch_positions(PositionStatus.OPEN)
        self._active_addresses = {position.token_address for position in open_positions}
        return len(self._active_addresses)

    def _dedup_reason(self, mint: str) -> str | None:
        if mint in self._executed:
            return "executed_this_session"
        if mint in self._active_addresses:
            return "open_position"
        if not self.trade_states.is_eligible(mint):
            record = self.trade_states.get(mint)
            return f"trade_state_{record.status.value.lower()}"
        return None

    def _drop(self, token: CandidateToken, reason: str) -> None:
        self.log.info("candidate_deduplicated", mint=token.address, symbol=token.symbol, reason=reason)
        if self.metrics:
            self.metrics.dedup_drops_total.labels(layer=reason).inc()

    def queue_tokens(self, candidates: Iterable[CandidateToken]) -> int:
        """Queue candidates that pass every dedup layer. Returns how many were queued."""
        added = 0
        for token in candidates:
            if not token.address:
                continue
            if token.address in self._queued or token.address == self._in_flight:
                self._drop(token, "already_queued")
                continue
            reason = self._dedup_reason(token.address)
            if reason:
                self._drop(token, reason)
                continue
            self._queue.append(token)
            self._queued.add(token.address)
            added += 1
        if self.metrics:
            self.metrics.queue_length.set(len(self._queue))
        if added:
            self.activity.info(
                ActivityCategory.TRADE,
                f"Queued {added} token(s) for execution",
                details={"queue_length": len(self._queue)},
            )
        if self._queue:
            self._ensure_worker()
        return added

    def clear_queue(self) -> int:
        cleared = len(self._queue)
        self._queue.clear()
        self._queued.clear()
        if self.metrics:
            self.metrics.queue_length.set(0)
        if cleared:
            self.activity.info(ActivityCategory.TRADE, f"Cleared {cleared} queued token(s)")
        return cleared

    def reset_executed_tokens(self) -> int:
        """Forget the in-session executed set. Durable trade state is untouched."""
        count = len(self._executed)
        self._executed.clear()
        self.activity.info(ActivityCategory.SYSTEM, f"Reset {count} executed token(s)")
        return count

    def resume(self) -> bool:
        """Restart the queue worker after prerequisites may have changed.

        Returns whether tokens are waiting.
        """
        if not self._queue:
            return False
        self._ensure_worker()
        return True

    async def drain(self) -> None:
        """Wait for the queue worker to finish."""
        while self._worker is not None and not self._worker.done():
            await self._worker

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._process_queue())

    async def check_prerequisites(self) -> PrerequisiteCheck:
        if self._trading_gate is not None:
            allowed, reasons = self._trading_gate()
            if not allowed:
                return PrerequisiteCheck(ok=False, reason="Trading disabled: " + ", ".join(reasons))
        config = self._trading_config()
        if config is None:
            return PrerequisiteCheck(ok=False, reason="Settings not loaded")
        wallet = self.wallet.state()
        if not wallet.is_connected or not wallet.address:
            return PrerequisiteCheck(ok=False, reason="Wallet not connected", wallet_blocking=True)
        if wallet.network != self.network:
            return PrerequisiteCheck(
                ok=False,
                reason=f"Wrong network: {wallet.network} (expected {self.network})",
                wallet_blocking=True,
            )
        required = config.buy_amount + self.config.fee_buffer
        if wallet.balance < required:
            return PrerequisiteCheck(
                ok=False,
                reason=f"Insufficient balance: {wallet.balance:.4f} < {required:.4f}",
                wallet_blocking=True,
            )
        return PrerequisiteCheck(ok=True)

    def _report_blocked(self, check: PrerequisiteCheck) -> None:
        if check.wallet_blocking:
            self.activity.warning(
                ActivityCategory.WALLET,
                f"{check.reason}. Connect or top up the wallet to continue trading.",
                details={"queue_length": len(self._queue)},
            )
            if self._on_wallet_prompt is not None:
                self._on_wallet_prompt(check.reason)
        else:
            self.activity.warning(ActivityCategory.SYSTEM, check.reason)
        self.log.warning("trading_prerequisites_failed", reason=check.reason, wallet=check.wallet_blocking)

    async def _process_queue(self) -> None:
        try:
            await self.sync_active_positions()
        except Exception as exc:
            self.log.warning("active_position_sync_failed", error=str(exc))
        while self._queue:
            check = await self.check_prerequisites()
            if not check.ok:
                # Repeated resumes against the same blocker report it once.
                if check.reason != self._blocked_reason:
                    self._report_blocked(check)
                self._blocked_reason = check.reason
                return
            self._blocked_reason = None
            token = self._queue.popleft()
            self._queued.discard(token.address)
            self._in_flight = token.address
            if self.metrics:
                self.metrics.queue_length.set(len(self._queue))
            try:
                await self._execute_guarded(token)
            finally:
                self._in_flight = None

    async def execute_immediate(self, token: CandidateToken) -> TradeOutcome:
        """Execute one token now, still honouring dedup, the lock and the cooldown."""
        check = await self.check_prerequisites()
        if not check.ok:
            self._report_blocked(check)
            return TradeOutcome(TradeOutcomeKind.BLOCKED, token.address, check.reason)
        if token.address in self._queued:
            self._queue = deque(queued for queued in self._queue if queued.address != token.address)
            self._queued.discard(token.address)
        return await self._execute_guarded(token)

    async def _respect_cooldown(self) -> None:
        if self._last_attempt_start is None:
            return
        cooldown = self.config.cooldown_ms / 1000
        elapsed = self._clock() - self._last_attempt_start
        if elapsed < cooldown:
            await self._sleep(cooldown - elapsed)

    async def _execute_guarded(self, token: CandidateToken) -> TradeOutcome:
        mint = token.address
        async with self._execution_lock:
            self._executing = True
            try:
                reason = self._dedup_reason(mint)
                if reason:
                    self._drop(token, reason)
                    return TradeOutcome(TradeOutcomeKind.SKIPPED, mint, reason)
                if token.awaiting_indexing:
                    self.trade_states.mark_pending(mint, "awaiting_indexing")
                    self.activity.info(
                        ActivityCategory.TRADE,
                        "Token awaiting indexing, will retry later",
                        token_symbol=token.symbol,
                        token_address=mint,
                    )
                    return TradeOutcome(TradeOutcomeKind.PENDING, mint, "awaiting_indexing")

                await self._respect_cooldown()
                self._last_attempt_start = self._clock()
                self._executed.add(mint)
                started = time.perf_counter()
                async with self.trade_states.lock(mint):
                    try:
                        outcome = await self._execute_single(token)
                    except Exception as exc:
                        self.log.exception("trade_execution_crashed", mint=mint)
                        outcome = self._record_failure(token, f"Unexpected error: {exc}")
                if outcome.kind == TradeOutcomeKind.PENDING:
                    # Durable state owns the retry window; the session set is only a fast path.
                    self._executed.discard(mint)
                if self.metrics:
                    self.metrics.trades_total.labels(outcome=outcome.kind.value).inc()
                    self.metrics.trade_latency_sec.observe(time.perf_counter() - started)
                return outcome
            finally:
                self._executing = False

    async def _execute_single(self, token: CandidateToken) -> TradeOutcome:
        mint = token.address
        config = self._trading_config()
        if config is None:
            return TradeOutcome(TradeOutcomeKind.BLOCKED, mint, "Settings not loaded")

        validation = await self.route_validator.validate(mint)
        if not validation.has_route:
            self.trade_states.mark_pending(mint, "no_route")
            self.activity.warning(
                ActivityCategory.TRADE,
                "No swap route on any venue, will retry later",
                details={"error": validation.error},
                token_symbol=token.symbol,
                token_address=mint,
            )
            return TradeOutcome(TradeOutcomeKind.PENDING, mint, "no_route")

        wallet = self.wallet.state()
        self.activity.info(
            ActivityCategory.TRADE,
            f"Buying {config.buy_amount} via {validation.source}",
            token_symbol=token.symbol,
            token_address=mint,
        )
        result = await self.executor.snipe(mint, wallet.address or "", self.wallet.sign_and_send, config)
        if not isinstance(result, SnipeSucceeded):
            return self._record_failure(token, result.error)

        fill = result.fill
        try:
            position = await self.positions.create_position(
                token_address=mint,
                token_symbol=token.symbol,
                token_name=token.name,
                chain=self.network,
                entry_price=fill.entry_price,
                amount=fill.token_amount,
                profit_take_percentage=config.take_profit_pct,
                stop_loss_percentage=config.stop_loss_pct,
            )
            position_id = position.id
        except Exception:
            # The buy landed; the mint must still be marked traded.
            self.log.exception("position_persist_failed", mint=mint, tx=fill.tx_hash)
            self.activity.error(
                ActivityCategory.TRADE,
                "Buy filled but the position could not be recorded",
                details={"tx_hash": fill.tx_hash},
                token_symbol=token.symbol,
                token_address=mint,
            )
            position_id = ""
        self.trade_states.mark_traded(mint, fill.tx_hash, position_id)
        self._active_addresses.add(mint)
        try:
            await self.wallet.refresh_balance()
        except Exception as exc:
            self.log.warning("wallet_balance_refresh_failed", error=str(exc))
        self.activity.success(
            ActivityCategory.TRADE,
            f"Bought {fill.token_amount:.4f} {token.symbol} at {fill.entry_price:.10f}",
            details={"tx_hash": fill.tx_hash, "venue": fill.venue, "attempts": fill.attempts},
            token_symbol=token.symbol,
            token_address=mint,
        )
        return TradeOutcome(
            TradeOutcomeKind.EXECUTED,
            mint,
            "executed",
            position_id=position_id or None,
            tx_hash=fill.tx_hash,
        )

    def _record_failure(self, token: CandidateToken, error: str) -> TradeOutcome:
        mint = token.address
        reason = error[: self.config.reason_max_chars]
        if is_retryable_failure(error):
            self.trade_states.mark_pending(mint, reason)
            kind = TradeOutcomeKind.PENDING
        else:
            self.trade_states.mark_rejected(mint, reason)
            kind = TradeOutcomeKind.REJECTED
        self.activity.error(
            ActivityCategory.TRADE,
            f"Buy failed ({kind.value.lower()}): {reason}",
            token_symbol=token.symbol,
            token_address=mint,
        )
        return TradeOutcome(kind, mint, reason)


def describe_state(trade_states: TokenTradeStateStore, mint: str) -> dict[str, object]:
    record = trade_states.get(mint)
    return {
        **record.to_dict(),
        "eligible": trade_states.is_eligible(mint),
        "terminal": record.status in (TradeStatus.TRADED, TradeStatus.REJECTED),
    }
