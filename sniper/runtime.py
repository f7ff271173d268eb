"""Component wiring shared by the process entrypoint and the operator API."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path

import orjson
import structlog

from sniper.config.settings import Settings, TradingConfig
from sniper.connectors.amm_registry import AmmRegistryClient
from sniper.connectors.bonding_curve import BondingCurveClient
from sniper.connectors.chain import ChainClient
from sniper.connectors.http import ServiceClient
from sniper.connectors.pair_indexer import PairIndexerClient
from sniper.connectors.prices import PriceChain, TokenPriceClient
from sniper.connectors.safety import SafetyReportClient
from sniper.connectors.swap_venues import AggregatorVenue, AmmVenue
from sniper.connectors.wallet import ExternalSignerWallet, WalletCapability
from sniper.execution.executor import TradeExecutor
from sniper.execution.exit_monitor import PositionExitMonitor
from sniper.execution.orchestrator import LiveTradingOrchestrator
from sniper.execution.positions import JsonPositionStore, PositionStore
from sniper.execution.trade_state import TokenTradeStateStore
from sniper.models import CandidateToken
from sniper.monitoring.activity import (
    ActivityCategory,
    ActivityLog,
    JsonlActivitySink,
    StructlogActivitySink,
)
from sniper.monitoring.metrics import Metrics
from sniper.pipeline.approval import ApprovalGate
from sniper.pipeline.enricher import PairEnricher
from sniper.pipeline.pool_validator import PoolValidator
from sniper.pipeline.route_prover import SwapRouteProver
from sniper.pipeline.route_validator import RouteValidator
from sniper.pipeline.tradability import PipelineEvent, TradabilityPipeline
from sniper.risk.assessor import RiskAssessor

log = structlog.get_logger(__name__)


@dataclass
class SniperRuntime:
    settings: Settings
    activity: ActivityLog
    metrics: Metrics
    wallet: WalletCapability
    trade_states: TokenTradeStateStore
    positions: PositionStore
    approval: ApprovalGate
    orchestrator: LiveTradingOrchestrator
    exit_monitor: PositionExitMonitor
    clients: list[ServiceClient] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)

    async def submit(self, candidates: list[CandidateToken], skip_approval: bool = False) -> int:
        """Run candidates through the approval gate and queue the survivors."""
        approved = candidates if skip_approval else await self.approval.approve(candidates)
        return self.orchestrator.queue_tokens(approved)

    async def recheck_deferred(self) -> int:
        """Re-submit candidates whose pool was not open yet when last checked."""
        due = self.approval.take_due()
        if not due:
            return 0
        return await self.submit(due)

    async def close(self) -> None:
        self.exit_monitor.stop()
        for client in self.clients:
            await client.close()


def _pipeline_observer(event: PipelineEvent) -> None:
    log.debug("pipeline_event", event_type=event.event_type.value, mint=event.mint, **event.payload)


def build_runtime(settings: Settings) -> SniperRuntime:
    endpoints = settings.endpoints
    monitoring = settings.monitoring

    activity = ActivityLog(max_entries=monitoring.activity_tail)
    activity.subscribe(JsonlActivitySink(settings.storage.logs_path))
    activity.subscribe(StructlogActivitySink())
    metrics = Metrics()

    def client(name: str, base_url: str, timeout: float | None = None) -> ServiceClient:
        return ServiceClient(
            name,
            base_url=base_url,
            timeout=timeout or endpoints.request_timeout_sec,
            retry_attempts=endpoints.retry_attempts,
            log_http=monitoring.log_http,
        )

    bonding_http = client("bonding_curve", endpoints.bonding_curve_url)
    registry_http = client("amm_registry", endpoints.amm_registry_url)
    aggregator_http = client("aggregator", "")
    amm_http = client("amm_swap", endpoints.amm_swap_url)
    indexer_http = client("pair_indexer", endpoints.pair_indexer_url)
    price_http = client("token_price", endpoints.secondary_price_url)
    safety_http = client("safety_report", endpoints.safety_report_url, settings.risk.timeout_sec)
    rpc_http = client("rpc", endpoints.rpc_url)
    signer_http = client("signer", endpoints.signer_url)
    clients = [
        bonding_http,
        registry_http,
        aggregator_http,
        amm_http,
        indexer_http,
        price_http,
        safety_http,
        rpc_http,
        signer_http,
    ]

    venues = [
        AggregatorVenue(aggregator_http, endpoints.aggregator_quote_urls, endpoints.request_timeout_sec),
        AmmVenue(amm_http, endpoints.request_timeout_sec),
    ]
    bonding = BondingCurveClient(bonding_http, settings.pipeline.bonding_timeout_sec)
    indexer = PairIndexerClient(indexer_http, settings.run.network)
    chain = ChainClient(rpc_http)

    pipeline = TradabilityPipeline(
        pool_validator=PoolValidator(AmmRegistryClient(registry_http), settings.pipeline),
        route_prover=SwapRouteProver(venues, settings.pipeline),
        enricher=PairEnricher(indexer, settings.enrichment),
        bonding=bonding,
        config=settings.pipeline,
        observer=_pipeline_observer,
    )
    approval = ApprovalGate(
        pipeline,
        RiskAssessor(SafetyReportClient(safety_http, settings.risk.timeout_sec), settings.risk),
        settings.screener,
        activity,
        config=settings.pipeline,
    )

    wallet = ExternalSignerWallet(signer_http, chain, settings.wallet_address, settings.run.network)
    trade_states = TokenTradeStateStore(
        settings.storage.state_path,
        retry_window_sec=settings.orchestrator.pending_retry_sec,
    )
    positions = JsonPositionStore(settings.storage.state_path)
    executor = TradeExecutor(venues)

    def trading_config() -> TradingConfig:
        return TradingConfig.from_settings(settings.sniper, settings.risk, settings.pipeline)

    orchestrator = LiveTradingOrchestrator(
        executor=executor,
        route_validator=RouteValidator(
            venues,
            quote_amount=settings.pipeline.quote_amount,
            timeout_sec=settings.pipeline.route_validation_timeout_sec,
        ),
        trade_states=trade_states,
        positions=positions,
        wallet=wallet,
        trading_config=trading_config,
        activity=activity,
        config=settings.orchestrator,
        network=settings.run.network,
        trading_gate=settings.trading_gate,
        on_wallet_prompt=lambda reason: log.warning("wallet_action_required", reason=reason),
    )
    exit_monitor = PositionExitMonitor(
        positions=positions,
        prices=PriceChain([indexer, TokenPriceClient(price_http, settings.run.network)]),
        executor=executor,
        wallet=wallet,
        trade_states=trade_states,
        chain=chain,
        activity=activity,
        config=settings.exit_monitor,
        token_decimals=settings.sniper.token_decimals,
        metadata=indexer,
    )

    approval.set_metrics(metrics)
    orchestrator.set_metrics(metrics)
    exit_monitor.set_metrics(metrics)
    activity.info(ActivityCategory.SYSTEM, f"Runtime ready ({settings.run.mode})")

    return SniperRuntime(
        settings=settings,
        activity=activity,
        metrics=metrics,
        wallet=wallet,
        trade_states=trade_states,
        positions=positions,
        approval=approval,
        orchestrator=orchestrator,
        exit_monitor=exit_monitor,
        clients=clients,
    )


def read_inbox(inbox_path: str | Path) -> list[CandidateToken]:
    """Consume candidate files dropped by the discovery feed.

    Each ``*.json`` file holds one candidate object, a list of them, or
    ``{"tokens": [...]}``. Files are removed once parsed; unreadable files are
    renamed to ``*.rejected`` so they are not retried.
    """
    inbox = Path(inbox_path)
    inbox.mkdir(parents=True, exist_ok=True)
    candidates: list[CandidateToken] = []
    for path in sorted(inbox.glob("*.json")):
        try:
            data = orjson.loads(path.read_bytes())
            if isinstance(data, dict):
                data = data.get("tokens", [data])
            parsed = [CandidateToken.from_dict(entry) for entry in data if isinstance(entry, dict)]
        except (orjson.JSONDecodeError, TypeError, ValueError, KeyError) as exc:
            log.warning("inbox_file_rejected", file=path.name, error=str(exc))
            path.replace(path.with_suffix(".rejected"))
            continue
        path.unlink()
        candidates.extend(candidate for candidate in parsed if candidate.address)
    return candidates
