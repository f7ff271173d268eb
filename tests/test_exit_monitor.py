from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from sniper.config.settings import ExitMonitorConfig
from sniper.connectors.http import ServiceError, ServiceUnavailableError
from sniper.connectors.pair_indexer import PairData
from sniper.connectors.prices import PriceChain
from sniper.execution.executor import ExitFailed, ExitSucceeded
from sniper.execution.exit_monitor import ExitAction, PositionExitMonitor, evaluate_exit, pnl_percent
from sniper.execution.positions import JsonPositionStore
from sniper.execution.trade_state import TokenTradeStateStore
from sniper.models import ExitReason, Position, PositionStatus, SignResult, WalletState

MINT = "TokenMint" + "1" * 34
WALLET = "Wallet" + "1" * 38


@dataclass
class DummyPrices:
    name: str = "indexer"
    prices: list[float | None] = field(default_factory=list)
    error: Exception | None = None
    calls: int = 0

    async def price_native(self, mint: str) -> float | None:
        self.calls += 1
        if self.error:
            raise self.error
        if not self.prices:
            return None
        return self.prices.pop(0)


@dataclass
class DummyChain:
    balance: float = 1000.0
    error: Exception | None = None

    async def token_balance(self, owner: str, mint: str) -> float:
        if self.error:
            raise self.error
        return self.balance


@dataclass
class DummyWallet:
    connected: bool = True

    def state(self) -> WalletState:
        return WalletState(
            is_connected=self.connected,
            network="solana",
            address=WALLET if self.connected else None,
            balance=1.0,
        )

    async def connect(self) -> bool:
        return self.connected

    async def refresh_balance(self) -> float:
        return 1.0

    async def sign_and_send(self, transaction) -> SignResult:
        return SignResult(signature="sig")


@dataclass
class DummyExecutor:
    result: ExitSucceeded | ExitFailed = field(
        default_factory=lambda: ExitSucceeded(native_received=0.2, tx_hash="sell-tx", venue="aggregator")
    )
    calls: list[tuple[str, float]] = field(default_factory=list)
    broken_mints: set[str] = field(default_factory=set)

    async def exit_position(self, token_mint, amount, wallet_address, sign_fn, **kwargs):
        self.calls.append((token_mint, amount))
        if token_mint in self.broken_mints:
            raise RuntimeError("signer crashed")
        return self.result


def _position(entry: float = 1.0, tp: float = 10.0, sl: float = 20.0) -> Position:
    return Position(
        id="pos-1",
        token_address=MINT,
        token_symbol="TKN",
        token_name="Token",
        chain="solana",
        entry_price=entry,
        amount=1000.0,
        entry_value=entry * 1000.0,
        profit_take_percentage=tp,
        stop_loss_percentage=sl,
    )


async def _monitor(
    workspace_tmp_path,
    prices: DummyPrices,
    executor: DummyExecutor | None = None,
    chain: DummyChain | None = None,
    wallet: DummyWallet | None = None,
    entry: float = 1.0,
) -> tuple[PositionExitMonitor, JsonPositionStore, Position]:
    store = JsonPositionStore(workspace_tmp_path)
    position = await store.create_position(
        token_address=MINT,
        token_symbol="TKN",
        token_name="Token",
        chain="solana",
        entry_price=entry,
        amount=1000.0,
        profit_take_percentage=100.0,
        stop_loss_percentage=20.0,
    )
    monitor = PositionExitMonitor(
        positions=store,
        prices=PriceChain([prices]),
        executor=executor or DummyExecutor(),
        wallet=wallet or DummyWallet(),
        trade_states=TokenTradeStateStore(workspace_tmp_path),
        chain=chain or DummyChain(),
        config=ExitMonitorConfig(),
    )
    return monitor, store, position


def test_take_profit_boundary() -> None:
    position = _position(entry=1.0, tp=10.0)
    assert evaluate_exit(position, 1.10) == ExitAction.TAKE_PROFIT
    assert evaluate_exit(position, 1.099999) == ExitAction.HOLD


def test_stop_loss_boundary() -> None:
    position = _position(entry=1.0, sl=25.0)
    assert evaluate_exit(position, 0.75) == ExitAction.STOP_LOSS
    assert evaluate_exit(position, 0.750001) == ExitAction.HOLD


def test_thresholds_hit_at_inexact_float_prices() -> None:
    assert evaluate_exit(_position(entry=1.0, sl=10.0), 0.9) == ExitAction.STOP_LOSS
    assert evaluate_exit(_position(entry=0.1, tp=10.0), 0.11) == ExitAction.TAKE_PROFIT
    assert pnl_percent(1.0, 0.9) == -10.0


def test_pnl_with_zero_entry() -> None:
    assert pnl_percent(0.0, 5.0) == 0.0


@pytest.mark.asyncio
async def test_holding_position_is_repriced(workspace_tmp_path) -> None:
    executor = DummyExecutor()
    monitor, store, position = await _monitor(workspace_tmp_path, DummyPrices(prices=[1.2]), executor)
    summary = await monitor.check_positions()
    assert summary.total == 1
    assert summary.holding == 1
    assert executor.calls == []
    refreshed = (await store.fetch_positions(PositionStatus.OPEN))[0]
    assert refreshed.current_price == 1.2
    assert refreshed.profit_loss_percent == pytest.approx(20.0)


@pytest.mark.asyncio
async def test_take_profit_sells_and_closes(workspace_tmp_path) -> None:
    executor = DummyExecutor()
    monitor, store, position = await _monitor(workspace_tmp_path, DummyPrices(prices=[2.5]), executor)
    summary = await monitor.check_positions()
    assert summary.take_profit_triggered == 1
    assert summary.executed == 1
    assert executor.calls == [(MINT, 1000.0)]
    closed = (await store.fetch_positions(PositionStatus.CLOSED))[0]
    assert closed.exit_reason == ExitReason.TAKE_PROFIT
    assert closed.exit_tx_id == "sell-tx"


@pytest.mark.asyncio
async def test_stop_loss_sell_failure_keeps_position_open(workspace_tmp_path) -> None:
    executor = DummyExecutor(result=ExitFailed(error="Swap failed: aggregator RATE_LIMITED", attempts=2))
    monitor, store, _ = await _monitor(workspace_tmp_path, DummyPrices(prices=[0.5]), executor)
    summary = await monitor.check_positions()
    assert summary.stop_loss_triggered == 1
    assert summary.failed == 1
    assert summary.executed == 0
    assert len(await store.fetch_positions(PositionStatus.OPEN)) == 1


@pytest.mark.asyncio
async def test_dead_token_is_force_closed(workspace_tmp_path) -> None:
    executor = DummyExecutor(result=ExitFailed(error="No route: aggregator NO_ROUTE", attempts=2, no_route=True))
    monitor, store, _ = await _monitor(workspace_tmp_path, DummyPrices(prices=[0.15]), executor)
    summary = await monitor.check_positions()
    assert summary.force_closed == 1
    assert summary.decisions[0].pnl_percent == pytest.approx(-85.0)
    closed = (await store.fetch_positions(PositionStatus.CLOSED))[0]
    assert closed.exit_reason == ExitReason.FORCE_CLOSED_DEAD_TOKEN
    assert closed.exit_tx_id is None


@pytest.mark.asyncio
async def test_no_route_above_dead_threshold_stays_open(workspace_tmp_path) -> None:
    executor = DummyExecutor(result=ExitFailed(error="No route: amm NO_ROUTE", attempts=2, no_route=True))
    monitor, store, _ = await _monitor(workspace_tmp_path, DummyPrices(prices=[0.5]), executor)
    summary = await monitor.check_positions()
    assert summary.force_closed == 0
    assert summary.failed == 1
    assert len(await store.fetch_positions(PositionStatus.OPEN)) == 1


@pytest.mark.asyncio
async def test_token_gone_from_wallet_is_sold_externally(workspace_tmp_path) -> None:
    executor = DummyExecutor()
    monitor, store, _ = await _monitor(
        workspace_tmp_path, DummyPrices(prices=[1.05]), executor, chain=DummyChain(balance=0.0)
    )
    summary = await monitor.check_positions()
    assert summary.sold_externally == 1
    assert executor.calls == []
    closed = (await store.fetch_positions(PositionStatus.CLOSED))[0]
    assert closed.exit_reason == ExitReason.SOLD_EXTERNALLY
    assert closed.exit_tx_id is None


@pytest.mark.asyncio
async def test_holding_check_error_counts_as_held(workspace_tmp_path) -> None:
    chain = DummyChain(error=ServiceError("rpc", "node is behind"))
    monitor, store, _ = await _monitor(workspace_tmp_path, DummyPrices(prices=[1.05]), chain=chain)
    summary = await monitor.check_positions()
    assert summary.holding == 1
    assert summary.sold_externally == 0


@pytest.mark.asyncio
async def test_price_falls_back_to_last_known(workspace_tmp_path) -> None:
    prices = DummyPrices(prices=[1.3])
    monitor, store, _ = await _monitor(workspace_tmp_path, prices)
    await monitor.check_positions()
    prices.error = ServiceUnavailableError("pair_indexer", "timeout")
    summary = await monitor.check_positions()
    assert summary.decisions[0].current_price == 1.3
    assert summary.holding == 1


@pytest.mark.asyncio
async def test_no_price_at_all_holds(workspace_tmp_path) -> None:
    monitor, store, position = await _monitor(workspace_tmp_path, DummyPrices())
    summary = await monitor.check_positions()
    # A fresh position carries its entry price as the current price.
    assert summary.decisions[0].current_price == position.entry_price
    assert summary.holding == 1


@pytest.mark.asyncio
async def test_disconnected_wallet_defers_sell(workspace_tmp_path) -> None:
    executor = DummyExecutor()
    monitor, store, _ = await _monitor(
        workspace_tmp_path, DummyPrices(prices=[3.0]), executor, wallet=DummyWallet(connected=False)
    )
    summary = await monitor.check_positions()
    assert summary.decisions[0].action == "sell_deferred"
    assert summary.take_profit_triggered == 1
    assert executor.calls == []
    assert len(await store.fetch_positions(PositionStatus.OPEN)) == 1


@pytest.mark.asyncio
async def test_failing_position_does_not_block_others(workspace_tmp_path) -> None:
    other_mint = "OtherMint" + "2" * 34
    executor = DummyExecutor(broken_mints={MINT})
    monitor, store, _ = await _monitor(workspace_tmp_path, DummyPrices(prices=[2.5, 2.5]), executor)
    await store.create_position(
        token_address=other_mint,
        token_symbol="OTH",
        token_name="Other",
        chain="solana",
        entry_price=1.0,
        amount=1000.0,
        profit_take_percentage=100.0,
        stop_loss_percentage=20.0,
    )
    summary = await monitor.check_positions()
    assert summary.total == 2
    assert summary.failed == 1
    assert summary.executed == 1
    assert [decision.action for decision in summary.decisions] == ["check_failed", "take_profit"]
    closed = await store.fetch_positions(PositionStatus.CLOSED)
    assert [position.token_address for position in closed] == [other_mint]


@dataclass
class DummyMetadata:
    pair: PairData | None = None
    error: Exception | None = None
    calls: list[str] = field(default_factory=list)

    async def pair_for_token(self, mint: str) -> PairData | None:
        self.calls.append(mint)
        if self.error:
            raise self.error
        return self.pair


def _base_pair(symbol: str, name: str) -> PairData:
    return PairData(
        pair_address="Pool" + "P" * 40,
        price_usd=0.001,
        price_native=0.00001,
        volume_24h=None,
        liquidity_usd=25_000.0,
        quote_mint="So11111111111111111111111111111111111111112",
        base_mint=MINT,
        base_symbol=symbol,
        base_name=name,
    )


async def _placeholder_monitor(
    workspace_tmp_path,
    metadata: DummyMetadata,
    symbol: str = "UNKNOWN",
    name: str = "Unknown Token",
) -> tuple[PositionExitMonitor, JsonPositionStore]:
    store = JsonPositionStore(workspace_tmp_path)
    await store.create_position(
        token_address=MINT,
        token_symbol=symbol,
        token_name=name,
        chain="solana",
        entry_price=1.0,
        amount=1000.0,
        profit_take_percentage=100.0,
        stop_loss_percentage=20.0,
    )
    monitor = PositionExitMonitor(
        positions=store,
        prices=PriceChain([DummyPrices(prices=[1.05])]),
        executor=DummyExecutor(),
        wallet=DummyWallet(),
        trade_states=TokenTradeStateStore(workspace_tmp_path),
        chain=DummyChain(),
        metadata=metadata,
    )
    return monitor, store


@pytest.mark.asyncio
async def test_placeholder_metadata_is_reconciled(workspace_tmp_path) -> None:
    metadata = DummyMetadata(pair=_base_pair("PEPE", "Pepe Coin"))
    monitor, store = await _placeholder_monitor(workspace_tmp_path, metadata)
    summary = await monitor.check_positions()
    assert summary.metadata_updated == 1
    assert metadata.calls == [MINT]
    position = (await store.fetch_positions(PositionStatus.OPEN))[0]
    assert position.token_symbol == "PEPE"
    assert position.token_name == "Pepe Coin"

    reloaded = (await JsonPositionStore(workspace_tmp_path).fetch_positions())[0]
    assert reloaded.token_symbol == "PEPE"


@pytest.mark.asyncio
async def test_real_metadata_is_left_alone(workspace_tmp_path) -> None:
    metadata = DummyMetadata(pair=_base_pair("PEPE", "Pepe Coin"))
    monitor, store = await _placeholder_monitor(workspace_tmp_path, metadata, symbol="BONK", name="Bonk")
    summary = await monitor.check_positions()
    assert summary.metadata_updated == 0
    assert metadata.calls == []


@pytest.mark.asyncio
async def test_metadata_lookup_failure_keeps_placeholder(workspace_tmp_path) -> None:
    metadata = DummyMetadata(error=ServiceUnavailableError("pair_indexer", "timeout"))
    monitor, store = await _placeholder_monitor(workspace_tmp_path, metadata)
    summary = await monitor.check_positions()
    assert summary.metadata_updated == 0
    assert summary.holding == 1
    position = (await store.fetch_positions(PositionStatus.OPEN))[0]
    assert position.token_symbol == "UNKNOWN"
