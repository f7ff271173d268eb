"""Prometheus metrics definitions."""

from __future__ import annotations

import time

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class Metrics:
    """Expose core metrics for monitoring."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        r = self.registry
        self.loop_last_tick_age_sec = Gauge(
            "loop_last_tick_age_sec",
            "Seconds since the loop last ticked",
            ["loop"],
            registry=r,
        )

        self.pipeline_verdicts_total = Counter(
            "pipeline_verdicts_total",
            "Tradability verdicts by status and stage",
            ["status", "stage"],
            registry=r,
        )
        self.pipeline_latency_sec = Histogram(
            "pipeline_latency_sec",
            "Tradability check latency (s)",
            registry=r,
        )
        self.risk_rejections_total = Counter(
            "risk_rejections_total", "Candidates rejected by the risk assessor", registry=r
        )

        self.queue_length = Gauge("trade_queue_length", "Tokens waiting for execution", registry=r)
        self.trades_total = Counter(
            "trades_total",
            "Buy attempts by outcome",
            ["outcome"],
            registry=r,
        )
        self.dedup_drops_total = Counter(
            "dedup_drops_total",
            "Candidates dropped by a dedup layer",
            ["layer"],
            registry=r,
        )
        self.trade_latency_sec = Histogram("trade_latency_sec", "Buy execution latency (s)", registry=r)

        self.open_positions = Gauge("open_positions", "Number of open positions", registry=r)
        self.exits_total = Counter(
            "exits_total",
            "Closed positions by exit reason",
            ["reason"],
            registry=r,
        )
        self.exit_failures_total = Counter("exit_failures_total", "Failed sell attempts", registry=r)

        self._loop_ticks: dict[str, float] = {}

    def start_server(self, port: int) -> None:
        start_http_server(port, registry=self.registry)

    def record_loop_tick(self, loop: str) -> None:
        self._loop_ticks[loop] = time.time()
        self.loop_last_tick_age_sec.labels(loop=loop).set(0)

    def refresh_loop_ages(self) -> None:
        now = time.time()
        for loop, last in self._loop_ticks.items():
            self.loop_last_tick_age_sec.labels(loop=loop).set(now - last)
