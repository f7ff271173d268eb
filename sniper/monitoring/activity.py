"""Bot activity log: an injected publish/subscribe sink for operator-facing entries."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable

import orjson
import structlog

from sniper.models import format_timestamp, utc_now


class ActivityLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ActivityCategory(str, Enum):
    SYSTEM = "system"
    WALLET = "wallet"
    EVALUATE = "evaluate"
    TRADE = "trade"
    EXIT = "exit"


@dataclass(frozen=True)
class ActivityEntry:
    level: ActivityLevel
    category: ActivityCategory
    message: str
    details: dict[str, Any] | None = None
    token_symbol: str | None = None
    token_address: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
            "token_symbol": self.token_symbol,
            "token_address": self.token_address,
            "timestamp": format_timestamp(self.timestamp),
        }


ActivityHandler = Callable[[ActivityEntry], None]


class ActivityLog:
    """Fan entries out to subscribers and keep a bounded tail in memory.

    A failing subscriber is logged and skipped; publishing never raises.
    """

    def __init__(self, max_entries: int = 500) -> None:
        self._entries: deque[ActivityEntry] = deque(maxlen=max_entries)
        self._handlers: list[ActivityHandler] = []
        self._log = structlog.get_logger(__name__)

    def subscribe(self, handler: ActivityHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(
        self,
        level: ActivityLevel,
        category: ActivityCategory,
        message: str,
        details: dict[str, Any] | None = None,
        token_symbol: str | None = None,
        token_address: str | None = None,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            level=level,
            category=category,
            message=message,
            details=details,
            token_symbol=token_symbol,
            token_address=token_address,
        )
        self._entries.append(entry)
        for handler in list(self._handlers):
            try:
                handler(entry)
            except Exception:
                self._log.exception(
                    "activity_handler_failed",
                    handler=getattr(handler, "__name__", repr(handler)),
                    category=category.value,
                )
        return entry

    def info(self, category: ActivityCategory, message: str, **kwargs: Any) -> ActivityEntry:
        return self.publish(ActivityLevel.INFO, category, message, **kwargs)

    def success(self, category: ActivityCategory, message: str, **kwargs: Any) -> ActivityEntry:
        return self.publish(ActivityLevel.SUCCESS, category, message, **kwargs)

    def warning(self, category: ActivityCategory, message: str, **kwargs: Any) -> ActivityEntry:
        return self.publish(ActivityLevel.WARNING, category, message, **kwargs)

    def error(self, category: ActivityCategory, message: str, **kwargs: Any) -> ActivityEntry:
        return self.publish(ActivityLevel.ERROR, category, message, **kwargs)

    def tail(self, count: int | None = None) -> list[ActivityEntry]:
        entries = list(self._entries)
        if count is None or count >= len(entries):
            return entries
        return entries[-count:]


class JsonlActivitySink:
    """Append entries to ``activity.jsonl``."""

    def __init__(self, logs_path: str | Path) -> None:
        path = Path(logs_path)
        path.mkdir(parents=True, exist_ok=True)
        self.file = path / "activity.jsonl"

    def __call__(self, entry: ActivityEntry) -> None:
        with open(self.file, "ab") as handle:
            handle.write(orjson.dumps(entry.to_dict()))
            handle.write(b"\n")

    def iter_entries(self) -> Iterable[dict[str, Any]]:
        if not self.file.exists():
            return
        with open(self.file, "rb") as handle:
            for line in handle:
                line = line.strip()
                if line:
                    yield orjson.loads(line)


class StructlogActivitySink:
    """Mirror entries to stdout via structlog."""

    def __init__(self, include: Iterable[ActivityCategory] | None = None) -> None:
        self.include = set(include or ActivityCategory)
        self.log = structlog.get_logger("bot_activity")

    def __call__(self, entry: ActivityEntry) -> None:
        if entry.category not in self.include:
            return
        method = self.log.warning if entry.level in (ActivityLevel.WARNING, ActivityLevel.ERROR) else self.log.info
        method(
            "bot_activity",
            activity_level=entry.level.value,
            category=entry.category.value,
            message=entry.message,
            token=entry.token_symbol,
            address=entry.token_address,
            details=entry.details,
        )
