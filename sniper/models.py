"""Shared data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class LifecycleStage(str, Enum):
    BONDING = "BONDING"
    LP_LIVE = "LP_LIVE"
    INDEXING = "INDEXING"
    LISTED = "LISTED"


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    PENDING = "pending"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    MANUAL = "manual"
    SOLD_EXTERNALLY = "sold_externally"
    FORCE_CLOSED_DEAD_TOKEN = "force_closed_dead_token"


class TradeStatus(str, Enum):
    UNTRADED = "UNTRADED"
    PENDING = "PENDING"
    TRADED = "TRADED"
    REJECTED = "REJECTED"


@dataclass(frozen=True)
class CandidateToken:
    """A discovered token that has not been traded yet."""

    address: str
    symbol: str
    name: str
    source: str
    liquidity: float = 0.0
    risk_score: float = 0.0
    is_tradeable: bool = False
    can_buy: bool = False
    can_sell: bool = False
    buyer_position: int | None = None
    stage: LifecycleStage | None = None
    awaiting_indexing: bool = False
    created_at: datetime | None = None
    buy_tax: float = 0.0
    sell_tax: float = 0.0
    freeze_authority: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CandidateToken:
        """Build a candidate from a discovery-feed record (camelCase or snake_case keys)."""

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        created = pick("created_at", "createdAt")
        if isinstance(created, str):
            created = parse_timestamp(created)
        elif isinstance(created, (int, float)):
            created = datetime.fromtimestamp(created / 1000 if created > 1e12 else created, timezone.utc)
        stage = pick("stage")
        return cls(
            address=str(pick("address", "mint", default="")).strip(),
            symbol=str(pick("symbol", default="")),
            name=str(pick("name", default="")),
            source=str(pick("source", default="unknown")),
            liquidity=float(pick("liquidity", default=0.0)),
            risk_score=float(pick("risk_score", "riskScore", default=0.0)),
            is_tradeable=bool(pick("is_tradeable", "isTradeable", default=False)),
            can_buy=bool(pick("can_buy", "canBuy", default=False)),
            can_sell=bool(pick("can_sell", "canSell", default=False)),
            buyer_position=pick("buyer_position", "buyerPosition"),
            stage=LifecycleStage(stage) if stage else None,
            awaiting_indexing=bool(pick("awaiting_indexing", "awaitingIndexing", default=False)),
            created_at=created,
            buy_tax=float(pick("buy_tax", "buyTax", default=0.0)),
            sell_tax=float(pick("sell_tax", "sellTax", default=0.0)),
            freeze_authority=bool(pick("freeze_authority", "freezeAuthority", default=False)),
        )


@dataclass(frozen=True)
class PoolRecord:
    """A liquidity pool for a mint, oriented so base is the native or stable side."""

    address: str
    base_mint: str
    quote_mint: str
    base_reserve: float
    quote_reserve: float
    open_time: float
    status: int
    lp_mint: str
    lp_supply: float


@dataclass
class Position:
    id: str
    token_address: str
    token_symbol: str
    token_name: str
    chain: str
    entry_price: float
    amount: float
    entry_value: float
    profit_take_percentage: float
    stop_loss_percentage: float
    status: PositionStatus = PositionStatus.OPEN
    current_price: float | None = None
    current_value: float | None = None
    profit_loss_percent: float | None = None
    profit_loss_value: float | None = None
    exit_reason: ExitReason | None = None
    exit_price: float | None = None
    exit_tx_id: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    closed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token_address": self.token_address,
            "token_symbol": self.token_symbol,
            "token_name": self.token_name,
            "chain": self.chain,
            "entry_price": self.entry_price,
            "amount": self.amount,
            "entry_value": self.entry_value,
            "profit_take_percentage": self.profit_take_percentage,
            "stop_loss_percentage": self.stop_loss_percentage,
            "status": self.status.value,
            "current_price": self.current_price,
            "current_value": self.current_value,
            "profit_loss_percent": self.profit_loss_percent,
            "profit_loss_value": self.profit_loss_value,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
            "exit_price": self.exit_price,
            "exit_tx_id": self.exit_tx_id,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "closed_at": format_timestamp(self.closed_at) if self.closed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Position:
        return cls(
            id=data["id"],
            token_address=data["token_address"],
            token_symbol=data.get("token_symbol", ""),
            token_name=data.get("token_name", ""),
            chain=data.get("chain", "solana"),
            entry_price=float(data["entry_price"]),
            amount=float(data["amount"]),
            entry_value=float(data.get("entry_value", 0.0)),
            profit_take_percentage=float(data["profit_take_percentage"]),
            stop_loss_percentage=float(data["stop_loss_percentage"]),
            status=PositionStatus(data.get("status", "open")),
            current_price=data.get("current_price"),
            current_value=data.get("current_value"),
            profit_loss_percent=data.get("profit_loss_percent"),
            profit_loss_value=data.get("profit_loss_value"),
            exit_reason=ExitReason(data["exit_reason"]) if data.get("exit_reason") else None,
            exit_price=data.get("exit_price"),
            exit_tx_id=data.get("exit_tx_id"),
            created_at=parse_timestamp(data["created_at"]) if data.get("created_at") else utc_now(),
            updated_at=parse_timestamp(data["updated_at"]) if data.get("updated_at") else utc_now(),
            closed_at=parse_timestamp(data["closed_at"]) if data.get("closed_at") else None,
        )


@dataclass(frozen=True)
class TradeStateRecord:
    mint: str
    status: TradeStatus
    reason: str | None = None
    tx_hash: str | None = None
    position_id: str | None = None
    attempts: int = 0
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mint": self.mint,
            "status": self.status.value,
            "reason": self.reason,
            "tx_hash": self.tx_hash,
            "position_id": self.position_id,
            "attempts": self.attempts,
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TradeStateRecord:
        return cls(
            mint=data["mint"],
            status=TradeStatus(data["status"]),
            reason=data.get("reason"),
            tx_hash=data.get("tx_hash"),
            position_id=data.get("position_id"),
            attempts=int(data.get("attempts", 0)),
            updated_at=parse_timestamp(data["updated_at"]),
        )


@dataclass(frozen=True)
class WalletState:
    is_connected: bool
    network: str
    address: str | None
    balance: float


@dataclass(frozen=True)
class UnsignedTransaction:
    """Serialized swap transaction ready for the wallet to sign."""

    payload: str
    venue: str
    last_valid_block_height: int | None = None


@dataclass(frozen=True)
class SignResult:
    signature: str | None
    error: str | None = None
    # Raw output amount observed on confirmation, when the signer reports it.
    output_amount: int | None = None


SignFn = Callable[[UnsignedTransaction], Awaitable[SignResult]]
