"""Tests for the Operator API."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest
from fastapi.testclient import TestClient

from sniper.api.operator import create_app
from sniper.config.settings import Settings, StorageConfig
from sniper.connectors.prices import PriceChain
from sniper.execution.executor import ExitSucceeded
from sniper.execution.exit_monitor import PositionExitMonitor
from sniper.execution.orchestrator import LiveTradingOrchestrator
from sniper.execution.positions import JsonPositionStore
from sniper.execution.trade_state import TokenTradeStateStore
from sniper.models import CandidateToken, LifecycleStage, SignResult, WalletState
from sniper.monitoring.activity import ActivityLog
from sniper.monitoring.metrics import Metrics
from sniper.pipeline.approval import ApprovalGate
from sniper.pipeline.route_validator import RouteValidation
from sniper.pipeline.tradability import Tradable
from sniper.risk.assessor import RiskAssessment
from sniper.runtime import SniperRuntime

MINT = "TokenMint" + "1" * 34
WALLET = "Wallet" + "1" * 38


@dataclass
class DummyWallet:
    def state(self) -> WalletState:
        return WalletState(is_connected=True, network="solana", address=WALLET, balance=2.5)

    async def connect(self) -> bool:
        return True

    async def refresh_balance(self) -> float:
        return 2.5

    async def sign_and_send(self, transaction) -> SignResult:
        return SignResult(signature="sig")


@dataclass
class DummyPipeline:
    async def check(self, candidate: CandidateToken) -> Tradable:
        return Tradable(mint=candidate.address, stage=LifecycleStage.LISTED, reason="Listed", liquidity=30.0)


@dataclass
class DummyAssessor:
    async def assess(self, mint: str) -> RiskAssessment:
        return RiskAssessment(
            overall_score=95.0,
            is_rug_pull=True,
            is_honeypot=False,
            has_mint_authority=False,
            has_freeze_authority=False,
            holder_count=40,
            top_holder_percent=10.0,
            passed=False,
            reasons=["Rug pull risk: flagged"],
        )


@dataclass
class DummyRouteValidator:
    async def validate(self, mint: str) -> RouteValidation:
        return RouteValidation(has_route=True, source="aggregator")


@dataclass
class DummyExecutor:
    sells: list[str] = field(default_factory=list)

    async def snipe(self, token_mint, wallet_address, sign_fn, config):
        raise AssertionError("buys are blocked in dry run")

    async def exit_position(self, token_mint, amount, wallet_address, sign_fn, **kwargs):
        self.sells.append(token_mint)
        return ExitSucceeded(native_received=0.3, tx_hash="sell-tx", venue="aggregator")


@dataclass
class DummyPrices:
    name: str = "indexer"
    price: float = 3.0

    async def price_native(self, mint: str) -> float | None:
        return self.price


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("RUN_MODE", "RUN_ENABLE_TRADING", "WALLET_ADDRESS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def runtime(workspace_tmp_path) -> SniperRuntime:
    settings = Settings(
        WALLET_ADDRESS=WALLET,
        storage=StorageConfig(
            state_path=str(workspace_tmp_path / "state"),
            logs_path=str(workspace_tmp_path / "logs"),
            inbox_path=str(workspace_tmp_path / "inbox"),
        ),
    )
    activity = ActivityLog()
    wallet = DummyWallet()
    trade_states = TokenTradeStateStore(settings.storage.state_path)
    positions = JsonPositionStore(settings.storage.state_path)
    executor = DummyExecutor()
    orchestrator = LiveTradingOrchestrator(
        executor=executor,
        route_validator=DummyRouteValidator(),
        trade_states=trade_states,
        positions=positions,
        wallet=wallet,
        trading_config=lambda: None,
        activity=activity,
        trading_gate=settings.trading_gate,
    )
    exit_monitor = PositionExitMonitor(
        positions=positions,
        prices=PriceChain([DummyPrices()]),
        executor=executor,
        wallet=wallet,
        trade_states=trade_states,
        activity=activity,
    )
    return SniperRuntime(
        settings=settings,
        activity=activity,
        metrics=Metrics(),
        wallet=wallet,
        trade_states=trade_states,
        positions=positions,
        approval=ApprovalGate(DummyPipeline(), DummyAssessor(), activity=activity),
        orchestrator=orchestrator,
        exit_monitor=exit_monitor,
    )


@pytest.fixture
def client(runtime: SniperRuntime) -> TestClient:
    """Create a test client for the API."""
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def test_root_endpoint(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Launch Sniper Operator API"
    assert "queue" in data["endpoints"]


def test_health_endpoint(client: TestClient) -> None:
    """Dry run reports healthy but blocks trading."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["mode"] == "dry_run"
    assert data["trading_enabled"] is False
    assert "RUN_MODE_DRY_RUN" in data["trading_blocked_by"]
    assert data["wallet_connected"] is True


def test_status_endpoint(client: TestClient) -> None:
    data = client.get("/status").json()
    assert data["orchestrator"]["queue_length"] == 0
    assert data["orchestrator"]["max_concurrent_trades"] == 1
    assert data["wallet"]["address"] == WALLET
    assert data["open_positions"] == 0
    assert data["deferred_candidates"] == 0


def test_activity_tail_limits(client: TestClient) -> None:
    assert client.get("/activity?tail=0").status_code == 422
    assert client.get("/activity?tail=1001").status_code == 422
    assert client.get("/activity?tail=5").status_code == 200


def test_trade_state_validates_mint(client: TestClient) -> None:
    assert client.get("/trade-state/not-a-mint").status_code == 422
    data = client.get(f"/trade-state/{MINT}").json()
    assert data["status"] == "UNTRADED"
    assert data["eligible"] is True
    assert data["terminal"] is False


def test_queue_runs_approval_gate(client: TestClient) -> None:
    response = client.post("/queue", json={"tokens": [{"address": MINT, "symbol": "MCAT", "liquidity": 10}]})
    assert response.status_code == 200
    assert response.json()["queued"] == 0


def test_queue_skip_approval_and_clear(client: TestClient) -> None:
    response = client.post(
        "/queue",
        json={"tokens": [{"mint": MINT, "symbol": "MCAT"}], "skip_approval": True},
    )
    assert response.json()["queued"] == 1
    # Dry run blocks the worker, so the token stays queued.
    assert client.get("/status").json()["orchestrator"]["queued"] == [MINT]
    assert client.post("/actions/clear-queue").json()["cleared"] == 1


def test_queue_rejects_empty_list(client: TestClient) -> None:
    assert client.post("/queue", json={"tokens": []}).status_code == 422


def test_check_exits_sells_on_take_profit(client: TestClient, runtime: SniperRuntime) -> None:
    position = asyncio.run(
        runtime.positions.create_position(
            token_address=MINT,
            token_symbol="MCAT",
            token_name="Moon Cat",
            chain="solana",
            entry_price=1.0,
            amount=100.0,
            profit_take_percentage=100.0,
            stop_loss_percentage=20.0,
        )
    )
    data = client.post("/actions/check-exits").json()
    assert data["summary"]["take_profit_triggered"] == 1
    assert data["summary"]["executed"] == 1
    assert data["decisions"][0]["position_id"] == position.id
    assert data["decisions"][0]["tx_hash"] == "sell-tx"

    closed = client.get("/positions?status=closed").json()
    assert closed["count"] == 1
    assert closed["positions"][0]["exit_reason"] == "take_profit"
