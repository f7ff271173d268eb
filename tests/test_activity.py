from __future__ import annotations

import logging

from sniper.config.settings import MonitoringConfig
from sniper.monitoring.activity import (
    ActivityCategory,
    ActivityEntry,
    ActivityLevel,
    ActivityLog,
    JsonlActivitySink,
)
from sniper.monitoring.logging import NOISY_LOGGERS, configure_logging, redact_transactions


def test_subscribers_receive_entries_until_unsubscribed() -> None:
    activity = ActivityLog()
    seen: list[ActivityEntry] = []
    unsubscribe = activity.subscribe(seen.append)

    activity.info(ActivityCategory.TRADE, "Queued 1 token(s) for execution")
    unsubscribe()
    activity.warning(ActivityCategory.WALLET, "Wallet not connected")

    assert [entry.message for entry in seen] == ["Queued 1 token(s) for execution"]
    assert len(activity.tail()) == 2


def test_failing_handler_does_not_break_publish() -> None:
    activity = ActivityLog()
    seen: list[ActivityEntry] = []

    def broken(entry: ActivityEntry) -> None:
        raise RuntimeError("sink down")

    activity.subscribe(broken)
    activity.subscribe(seen.append)
    entry = activity.error(ActivityCategory.EXIT, "Sell failed", token_symbol="MCAT")

    assert entry.level == ActivityLevel.ERROR
    assert seen == [entry]


def test_tail_is_bounded() -> None:
    activity = ActivityLog(max_entries=3)
    for index in range(5):
        activity.info(ActivityCategory.SYSTEM, f"entry {index}")
    assert [entry.message for entry in activity.tail()] == ["entry 2", "entry 3", "entry 4"]
    assert [entry.message for entry in activity.tail(2)] == ["entry 3", "entry 4"]


def test_jsonl_sink_appends(workspace_tmp_path) -> None:
    sink = JsonlActivitySink(workspace_tmp_path)
    activity = ActivityLog()
    activity.subscribe(sink)
    activity.success(
        ActivityCategory.TRADE,
        "Bought 1000.0000 MCAT",
        details={"tx_hash": "sig"},
        token_address="TokenMint" + "1" * 34,
    )
    activity.info(ActivityCategory.SYSTEM, "Runtime ready (dry_run)")

    rows = list(sink.iter_entries())
    assert [row["level"] for row in rows] == ["success", "info"]
    assert rows[0]["details"] == {"tx_hash": "sig"}
    assert rows[0]["category"] == "trade"


def test_transactions_are_redacted() -> None:
    event = redact_transactions(None, "info", {"event": "swap_built", "swap_transaction": "AQAB", "mint": "abc"})
    assert event["swap_transaction"] == "<redacted>"
    assert event["mint"] == "abc"


def test_http_loggers_follow_monitoring_flag() -> None:
    configure_logging("INFO", monitoring=MonitoringConfig(log_http=False))
    assert all(logging.getLogger(name).level == logging.WARNING for name in NOISY_LOGGERS)
    configure_logging("INFO", monitoring=MonitoringConfig(log_http=True))
    assert all(logging.getLogger(name).level == logging.DEBUG for name in NOISY_LOGGERS)
