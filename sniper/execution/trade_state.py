"""Persist per-mint trade state to survive process restarts."""

from __future__ import annotations

import asyncio
import os
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

import orjson
import structlog

from sniper.models import TradeStateRecord, TradeStatus, utc_now

TERMINAL_STATUSES = {TradeStatus.TRADED, TradeStatus.REJECTED}


class TokenTradeStateStore:
    """Durable guard against duplicate buys.

    Transitions only move forward: UNTRADED -> PENDING/TRADED/REJECTED and
    PENDING -> PENDING/TRADED/REJECTED. TRADED and REJECTED are terminal.
    """

    def __init__(
        self,
        state_path: str | Path,
        retry_window_sec: float = 120.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.state_path = Path(state_path)
        self.state_path.mkdir(parents=True, exist_ok=True)
        self._file = self.state_path / "token_trade_state.json"
        self.retry_window = timedelta(seconds=retry_window_sec)
        self._clock = clock
        self._records = self._load_all()
        self._locks: dict[str, asyncio.Lock] = {}
        self.log = structlog.get_logger(__name__)

    def lock(self, mint: str) -> asyncio.Lock:
        """Per-mint lock serializing buys and sells on the same token."""
        lock = self._locks.get(mint)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[mint] = lock
        return lock

    def get(self, mint: str) -> TradeStateRecord:
        record = self._records.get(mint)
        if record is None:
            return TradeStateRecord(mint=mint, status=TradeStatus.UNTRADED, updated_at=self._clock())
        return record

    def is_eligible(self, mint: str, now: datetime | None = None) -> bool:
        """True when a buy may be attempted for ``mint``."""
        record = self._records.get(mint)
        if record is None or record.status == TradeStatus.UNTRADED:
            return True
        if record.status == TradeStatus.PENDING:
            now = now or self._clock()
            return now - record.updated_at >= self.retry_window
        return False

    def mark_pending(self, mint: str, reason: str) -> bool:
        return self._transition(mint, TradeStatus.PENDING, reason=reason)

    def mark_traded(self, mint: str, tx_hash: str, position_id: str) -> bool:
        return self._transition(mint, TradeStatus.TRADED, tx_hash=tx_hash, position_id=position_id)

    def mark_rejected(self, mint: str, reason: str) -> bool:
        return self._transition(mint, TradeStatus.REJECTED, reason=reason)

    def records(self) -> dict[str, TradeStateRecord]:
        return dict(self._records)

    def counts(self) -> dict[str, int]:
        counts = Counter(record.status.value for record in self._records.values())
        return {status.value: counts.get(status.value, 0) for status in TradeStatus}

    def _transition(
        self,
        mint: str,
        status: TradeStatus,
        reason: str | None = None,
        tx_hash: str | None = None,
        position_id: str | None = None,
    ) -> bool:
        current = self._records.get(mint)
        if current is not None and current.status in TERMINAL_STATUSES:
            self.log.warning(
                "trade_state_transition_refused",
                mint=mint,
                current=current.status.value,
                requested=status.value,
            )
            return False
        attempts = (current.attempts if current else 0) + 1
        self._records[mint] = TradeStateRecord(
            mint=mint,
            status=status,
            reason=reason,
            tx_hash=tx_hash,
            position_id=position_id,
            attempts=attempts,
            updated_at=self._clock(),
        )
        self._save_all()
        self.log.info("trade_state_updated", mint=mint, status=status.value, reason=reason)
        return True

    def _load_all(self) -> dict[str, TradeStateRecord]:
        if not self._file.exists():
            return {}
        with open(self._file, "rb") as f:
            data = orjson.loads(f.read())
        if not isinstance(data, dict):
            return {}
        return {mint: TradeStateRecord.from_dict(entry) for mint, entry in data.items()}

    def _save_all(self) -> None:
        tmp = self._file.with_suffix(".tmp")
        payload = {mint: record.to_dict() for mint, record in self._records.items()}
        with open(tmp, "wb") as f:
            f.write(orjson.dumps(payload))
        os.replace(tmp, self._file)
