"""
Configuration management with Pydantic validation.

Loads settings from YAML config file and environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


NATIVE_MINT = "So11111111111111111111111111111111111111112"
STABLE_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

PriorityLevel = Literal["normal", "fast", "turbo"]

# Priority fee per trade in native units.
PRIORITY_FEES: dict[str, float] = {
    "normal": 0.001,
    "fast": 0.002,
    "turbo": 0.005,
}


class RunConfig(BaseModel):
    """Runtime trading mode configuration."""

    mode: Literal["dry_run", "live"] = Field(default="dry_run", validation_alias="RUN_MODE")
    enable_trading: bool = Field(default=False, validation_alias="RUN_ENABLE_TRADING")
    network: str = "solana"

    model_config = {
        "populate_by_name": True,
    }


class EndpointsConfig(BaseModel):
    """Base URLs of the external capability providers."""

    bonding_curve_url: str = "https://frontend-api.pump.fun"
    amm_registry_url: str = "https://api-v3.raydium.io"
    aggregator_quote_urls: list[str] = Field(
        default_factory=lambda: [
            "https://quote-api.jup.ag/v6",
            "https://lite-api.jup.ag/swap/v1",
        ]
    )
    amm_swap_url: str = "https://transaction-v1.raydium.io"
    pair_indexer_url: str = "https://api.dexscreener.com"
    secondary_price_url: str = "https://api.geckoterminal.com/api/v2"
    safety_report_url: str = "https://api.rugcheck.xyz/v1"
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    signer_url: str = "http://127.0.0.1:8787"
    request_timeout_sec: float = Field(default=10.0, ge=1.0, le=30.0)
    retry_attempts: int = Field(default=3, ge=1, le=10)


class PipelineConfig(BaseModel):
    """Tradability pipeline thresholds."""

    min_liquidity: float = Field(default=5.0, ge=0.0)
    liquidity_hard_floor: float = Field(default=20.0, ge=0.0)
    # Approximate stablecoin units per native unit for stable-paired pools.
    stablecoin_per_native: float = Field(default=150.0, gt=0.0)
    valid_pool_statuses: list[int] = Field(default_factory=lambda: [1, 6])
    quote_amount: float = Field(default=0.001, gt=0.0, le=1.0)
    quote_slippage_bps: int = Field(default=1500, ge=1, le=5000)
    backend_timeout_sec: float = Field(default=10.0, ge=1.0, le=10.0)
    prover_budget_sec: float = Field(default=15.0, ge=1.0, le=30.0)
    bonding_timeout_sec: float = Field(default=5.0, ge=1.0, le=15.0)
    trusted_sources: list[str] = Field(default_factory=list)
    trusted_min_liquidity: float = Field(default=50.0, ge=0.0)
    route_validation_timeout_sec: float = Field(default=8.0, ge=1.0, le=15.0)
    # Candidates whose pool is not open yet are re-checked on this cadence.
    recheck_interval_sec: float = Field(default=15.0, ge=1.0)
    max_rechecks: int = Field(default=8, ge=0, le=100)


class EnrichmentConfig(BaseModel):
    """Pair indexer enrichment limits."""

    mode: Literal["rpc", "http"] = "http"
    timeout_sec: float = Field(default=3.0, ge=0.1, le=3.0)
    max_attempts: int = Field(default=3, ge=1, le=10)
    backoff_min_sec: float = Field(default=30.0, ge=0.0)
    backoff_max_sec: float = Field(default=120.0, ge=0.0)
    cache_size: int = Field(default=2048, ge=16)
    cache_ttl_sec: float = Field(default=3600.0, ge=60.0)


class ScreenerConfig(BaseModel):
    """Pre-screen rules applied to discovery output."""

    max_token_age_hours: float = Field(default=6.0, gt=0.0)
    min_liquidity: float = Field(default=2.0, ge=0.0)
    max_risk_score: int = Field(default=70, ge=0, le=100)
    max_buy_tax: float = Field(default=15.0, ge=0.0, le=100.0)
    max_sell_tax: float = Field(default=15.0, ge=0.0, le=100.0)
    block_freeze_authority: bool = True


class RiskConfig(BaseModel):
    """Safety-report filters."""

    max_risk_score: int = Field(default=65, ge=0, le=100)
    check_rug_pull: bool = True
    check_honeypot: bool = True
    check_mint_authority: bool = True
    check_freeze_authority: bool = True
    min_holders: int = Field(default=10, ge=0)
    max_ownership_percent: float = Field(default=30.0, ge=0.0, le=100.0)
    timeout_sec: float = Field(default=10.0, ge=1.0, le=15.0)


class SniperSettings(BaseModel):
    """User-facing trade settings."""

    trade_amount: float = Field(default=0.1, gt=0.0)
    slippage: float = Field(default=15.0, ge=0.0, le=100.0)
    priority: PriorityLevel = "normal"
    profit_take_percentage: float = Field(default=100.0, gt=0.0)
    stop_loss_percentage: float = Field(default=20.0, gt=0.0, le=100.0)
    max_retries: int = Field(default=3, ge=1, le=5)
    retry_delay_ms: int = Field(default=800, ge=0, le=10_000)
    token_decimals: int = Field(default=9, ge=0, le=18)


class OrchestratorConfig(BaseModel):
    """Live trading orchestrator limits."""

    cooldown_ms: int = Field(default=2000, ge=0, le=60_000)
    fee_buffer: float = Field(default=0.01, ge=0.0)
    pending_retry_sec: float = Field(default=120.0, ge=0.0)
    reason_max_chars: int = Field(default=200, ge=20, le=2000)


class ExitMonitorConfig(BaseModel):
    """Position exit monitor configuration."""

    enabled: bool = True
    interval_sec: float = Field(default=20.0, ge=1.0, le=300.0)
    verify_holdings: bool = True
    dust_ratio: float = Field(default=0.01, ge=0.0, le=1.0)
    exit_slippage_bps: int = Field(default=1500, ge=1, le=5000)
    exit_priority: PriorityLevel = "fast"
    dead_token_pnl_pct: float = Field(default=-80.0, le=0.0)


class StorageConfig(BaseModel):
    """Storage paths configuration."""

    state_path: str = "./data/state"
    logs_path: str = "./logs"
    inbox_path: str = "./data/inbox"


class MonitoringConfig(BaseModel):
    """Monitoring and alerting configuration."""

    metrics_port: int = Field(default=9090, ge=1024, le=65535)
    api_port: int = Field(default=8000, ge=1024, le=65535)
    api_enabled: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_http: bool = False
    activity_tail: int = Field(default=500, ge=10, le=10_000)
    error_log_max_bytes: int = Field(default=5_000_000, ge=100_000, le=50_000_000)
    error_log_backup_count: int = Field(default=3, ge=1, le=20)


class Settings(BaseSettings):
    """Main application settings."""

    run: RunConfig = Field(default_factory=RunConfig)
    wallet_address: str = Field(default="", alias="WALLET_ADDRESS")

    endpoints: EndpointsConfig = Field(default_factory=EndpointsConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    screener: ScreenerConfig = Field(default_factory=ScreenerConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    sniper: SniperSettings = Field(default_factory=SniperSettings)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    exit_monitor: ExitMonitorConfig = Field(default_factory=ExitMonitorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "env_nested_delimiter": "__",
        "populate_by_name": True,
    }

    @field_validator("wallet_address")
    @classmethod
    def strip_wallet_address(cls, v: str) -> str:
        return v.strip()

    def trading_gate(self) -> tuple[bool, list[str]]:
        """Return whether trading is allowed along with blocking reasons."""
        reasons: list[str] = []
        if self.run.mode != "live":
            reasons.append("RUN_MODE_DRY_RUN")
        if not self.run.enable_trading:
            reasons.append("RUN_ENABLE_TRADING_FALSE")
        if not self.wallet_address:
            reasons.append("WALLET_ADDRESS not set")
        return (len(reasons) == 0, reasons)


@dataclass(frozen=True)
class TradingConfig:
    """Per-trade snapshot of the user's settings. Never mutated mid-trade."""

    buy_amount: float
    slippage: float
    priority_fee: float
    max_retries: int
    retry_delay_ms: int
    take_profit_pct: float
    stop_loss_pct: float
    max_risk_score: int
    min_liquidity: float
    min_holders: int
    max_ownership_percent: float
    token_decimals: int = 9

    @property
    def slippage_bps(self) -> int:
        return int(round(self.slippage * 10_000))

    @classmethod
    def from_settings(
        cls,
        sniper: SniperSettings,
        risk: RiskConfig | None = None,
        pipeline: PipelineConfig | None = None,
    ) -> TradingConfig:
        risk = risk or RiskConfig()
        pipeline = pipeline or PipelineConfig()
        return cls(
            buy_amount=sniper.trade_amount,
            slippage=sniper.slippage / 100,
            priority_fee=PRIORITY_FEES[sniper.priority],
            max_retries=sniper.max_retries,
            retry_delay_ms=sniper.retry_delay_ms,
            take_profit_pct=sniper.profit_take_percentage,
            stop_loss_pct=sniper.stop_loss_percentage,
            max_risk_score=risk.max_risk_score,
            min_liquidity=pipeline.min_liquidity,
            min_holders=risk.min_holders,
            max_ownership_percent=risk.max_ownership_percent,
            token_decimals=sniper.token_decimals,
        )


def load_settings(config_path: str | Path | None = None) -> Settings:
    """
    Load settings from YAML config file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file values
    3. Default values
    """
    config_data = {}

    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config.yaml")

    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            config_data = yaml.safe_load(f) or {}

    run_overrides = {}
    env_run_mode = os.environ.get("RUN_MODE")
    env_run_enable = os.environ.get("RUN_ENABLE_TRADING")
    if env_run_mode:
        run_overrides["mode"] = env_run_mode
    if env_run_enable is not None:
        run_overrides["enable_trading"] = env_run_enable
    if run_overrides:
        config_data.setdefault("run", {}).update(run_overrides)

    env_path = config_file.parent / ".env"
    settings = Settings(**config_data, _env_file=env_path)

    return settings


def create_default_config(path: str | Path = "config.yaml") -> None:
    """Create a default configuration file."""
    default_config = {
        "run": {
            "mode": "dry_run",
            "enable_trading": False,
            "network": "solana",
        },
        "pipeline": {
            "min_liquidity": 5.0,
            "liquidity_hard_floor": 20.0,
            "stablecoin_per_native": 150.0,
            "quote_amount": 0.001,
            "quote_slippage_bps": 1500,
            "trusted_sources": ["pump.fun", "raydium"],
            "trusted_min_liquidity": 50.0,
            "recheck_interval_sec": 15.0,
            "max_rechecks": 8,
        },
        "enrichment": {
            "mode": "http",
            "timeout_sec": 3.0,
            "max_attempts": 3,
            "backoff_min_sec": 30.0,
            "backoff_max_sec": 120.0,
        },
        "risk": {
            "max_risk_score": 65,
            "check_rug_pull": True,
            "check_honeypot": True,
            "check_mint_authority": True,
            "check_freeze_authority": True,
            "min_holders": 10,
            "max_ownership_percent": 30.0,
        },
        "sniper": {
            "trade_amount": 0.1,
            "slippage": 15.0,
            "priority": "normal",
            "profit_take_percentage": 100.0,
            "stop_loss_percentage": 20.0,
            "max_retries": 3,
            "retry_delay_ms": 800,
        },
        "orchestrator": {
            "cooldown_ms": 2000,
            "fee_buffer": 0.01,
            "pending_retry_sec": 120.0,
        },
        "exit_monitor": {
            "enabled": True,
            "interval_sec": 20.0,
            "verify_holdings": True,
            "exit_slippage_bps": 1500,
            "dead_token_pnl_pct": -80.0,
        },
        "storage": {
            "state_path": "./data/state",
            "logs_path": "./logs",
            "inbox_path": "./data/inbox",
        },
        "monitoring": {
            "metrics_port": 9090,
            "api_port": 8000,
            "log_level": "INFO",
        },
    }

    with open(path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
