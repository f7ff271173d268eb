"""Position store interface and a file-backed implementation."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol
from uuid import uuid4

import orjson
import structlog

from sniper.models import ExitReason, Position, PositionStatus, utc_now


class PositionStore(Protocol):
    async def create_position(
        self,
        token_address: str,
        token_symbol: str,
        token_name: str,
        chain: str,
        entry_price: float,
        amount: float,
        profit_take_percentage: float,
        stop_loss_percentage: float,
    ) -> Position: ...

    async def fetch_positions(self, status: PositionStatus | None = None) -> list[Position]: ...

    async def update_price(self, position_id: str, current_price: float) -> Position | None: ...

    async def update_metadata(self, position_id: str, token_symbol: str, token_name: str) -> Position | None: ...

    async def close_position(
        self,
        position_id: str,
        exit_price: float,
        reason: ExitReason = ExitReason.MANUAL,
        tx_id: str | None = None,
    ) -> Position | None: ...


def apply_price(position: Position, current_price: float) -> None:
    position.current_price = current_price
    position.current_value = current_price * position.amount
    if position.entry_price > 0:
        position.profit_loss_percent = (current_price - position.entry_price) / position.entry_price * 100
    position.profit_loss_value = position.current_value - position.entry_value
    position.updated_at = utc_now()


class JsonPositionStore:
    """Positions kept in one orjson document keyed by id."""

    def __init__(self, state_path: str | Path) -> None:
        self.state_path = Path(state_path)
        self.state_path.mkdir(parents=True, exist_ok=True)
        self._file = self.state_path / "positions.json"
        self._positions = self._load_all()
        self.log = structlog.get_logger(__name__)

    async def create_position(
        self,
        token_address: str,
        token_symbol: str,
        token_name: str,
        chain: str,
        entry_price: float,
        amount: float,
        profit_take_percentage: float,
        stop_loss_percentage: float,
    ) -> Position:
        position = Position(
            id=uuid4().hex,
            token_address=token_address,
            token_symbol=token_symbol,
            token_name=token_name,
            chain=chain,
            entry_price=entry_price,
            amount=amount,
            entry_value=entry_price * amount,
            profit_take_percentage=profit_take_percentage,
            stop_loss_percentage=stop_loss_percentage,
            current_price=entry_price,
            current_value=entry_price * amount,
            profit_loss_percent=0.0,
            profit_loss_value=0.0,
        )
        self._positions[position.id] = position
        self._save_all()
        self.log.info("position_created", position_id=position.id, token=token_symbol, entry_price=entry_price)
        return position

    async def fetch_positions(self, status: PositionStatus | None = None) -> list[Position]:
        positions = list(self._positions.values())
        if status is not None:
            positions = [position for position in positions if position.status == status]
        return sorted(positions, key=lambda position: position.created_at)

    async def update_price(self, position_id: str, current_price: float) -> Position | None:
        position = self._positions.get(position_id)
        if position is None or position.status != PositionStatus.OPEN:
            return None
        apply_price(position, current_price)
        self._save_all()
        return position

    async def update_metadata(self, position_id: str, token_symbol: str, token_name: str) -> Position | None:
        position = self._positions.get(position_id)
        if position is None:
            return None
        position.token_symbol = token_symbol
        position.token_name = token_name
        position.updated_at = utc_now()
        self._save_all()
        self.log.info("position_metadata_updated", position_id=position_id, token=token_symbol)
        return position

    async def close_position(
        self,
        position_id: str,
        exit_price: float,
        reason: ExitReason = ExitReason.MANUAL,
        tx_id: str | None = None,
    ) -> Position | None:
        """Close an open position. Returns None if it is unknown or already closed."""
        position = self._positions.get(position_id)
        if position is None or position.status == PositionStatus.CLOSED:
            return None
        apply_price(position, exit_price)
        position.status = PositionStatus.CLOSED
        position.exit_price = exit_price
        position.exit_reason = reason
        position.exit_tx_id = tx_id
        position.closed_at = utc_now()
        self._save_all()
        self.log.info(
            "position_closed",
            position_id=position_id,
            reason=reason.value,
            exit_price=exit_price,
            tx_id=tx_id,
        )
        return position

    def _load_all(self) -> dict[str, Position]:
        if not self._file.exists():
            return {}
        with open(self._file, "rb") as f:
            data = orjson.loads(f.read())
        if not isinstance(data, dict):
            return {}
        return {position_id: Position.from_dict(entry) for position_id, entry in data.items()}

    def _save_all(self) -> None:
        tmp = self._file.with_suffix(".tmp")
        with open(tmp, "wb") as f:
            f.write(orjson.dumps({pid: position.to_dict() for pid, position in self._positions.items()}))
        os.replace(tmp, self._file)
