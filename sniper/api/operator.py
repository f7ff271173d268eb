"""Operator API for inspecting the sniper and taking safe actions."""

from __future__ import annotations

import time
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from sniper.execution.orchestrator import describe_state
from sniper.models import CandidateToken, PositionStatus
from sniper.pipeline.screener import is_plausible_mint
from sniper.runtime import SniperRuntime


class QueueRequest(BaseModel):
    tokens: list[dict[str, Any]] = Field(min_length=1, max_length=100)
    skip_approval: bool = False


def create_app(runtime: SniperRuntime) -> FastAPI:
    """Create the FastAPI application bound to one runtime."""
    app = FastAPI(
        title="Launch Sniper Operator API",
        description="Inspect state and take safe actions on the sniper",
        version="0.1.0",
    )
    settings = runtime.settings

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Get process health and trading gate status."""
        allowed, reasons = settings.trading_gate()
        wallet = runtime.wallet.state()
        runtime.metrics.refresh_loop_ages()
        return {
            "status": "healthy",
            "uptime_sec": time.time() - runtime.started_at,
            "mode": settings.run.mode,
            "trading_enabled": allowed,
            "trading_blocked_by": reasons,
            "wallet_connected": wallet.is_connected,
            "api_port": settings.monitoring.api_port,
            "metrics_port": settings.monitoring.metrics_port,
        }

    @app.get("/status")
    async def status() -> dict[str, Any]:
        """Orchestrator, wallet and position summary."""
        wallet = runtime.wallet.state()
        open_positions = await runtime.positions.fetch_positions(PositionStatus.OPEN)
        return {
            "orchestrator": runtime.orchestrator.status(),
            "wallet": {
                "connected": wallet.is_connected,
                "network": wallet.network,
                "address": wallet.address,
                "balance": wallet.balance,
            },
            "open_positions": len(open_positions),
            "deferred_candidates": runtime.approval.deferred_count,
        }

    @app.get("/positions")
    async def positions(
        status: PositionStatus | None = Query(default=None, description="Filter by position status"),
    ) -> dict[str, Any]:
        rows = await runtime.positions.fetch_positions(status)
        return {"count": len(rows), "positions": [position.to_dict() for position in rows]}

    @app.get("/activity")
    async def activity(
        tail: int = Query(default=100, ge=1, le=1000, description="Number of recent entries"),
    ) -> dict[str, Any]:
        entries = runtime.activity.tail(tail)
        return {"count": len(entries), "entries": [entry.to_dict() for entry in entries]}

    @app.get("/trade-state/{mint}")
    async def trade_state(mint: str) -> dict[str, Any]:
        if not is_plausible_mint(mint):
            raise HTTPException(status_code=422, detail=f"Invalid mint address: {mint}")
        return describe_state(runtime.trade_states, mint)

    @app.post("/queue")
    async def queue(request: QueueRequest) -> dict[str, Any]:
        """Submit candidates; they pass the approval gate unless told otherwise."""
        try:
            candidates = [CandidateToken.from_dict(entry) for entry in request.tokens]
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        queued = await runtime.submit(candidates, skip_approval=request.skip_approval)
        return {
            "success": True,
            "submitted": len(candidates),
            "queued": queued,
            "queue_length": runtime.orchestrator.queue_length,
        }

    @app.post("/actions/clear-queue")
    async def clear_queue() -> dict[str, Any]:
        cleared = runtime.orchestrator.clear_queue()
        return {"success": True, "cleared": cleared}

    @app.post("/actions/reset-executed")
    async def reset_executed() -> dict[str, Any]:
        """Forget the in-session executed set. Durable trade state is kept."""
        count = runtime.orchestrator.reset_executed_tokens()
        return {"success": True, "reset": count}

    @app.post("/actions/check-exits")
    async def check_exits() -> dict[str, Any]:
        """Run one exit-monitor tick now."""
        summary = await runtime.exit_monitor.check_positions()
        return {
            "success": True,
            "summary": summary.to_dict(),
            "decisions": [
                {
                    "position_id": decision.position_id,
                    "mint": decision.mint,
                    "action": decision.action,
                    "pnl_percent": decision.pnl_percent,
                    "executed": decision.executed,
                    "tx_hash": decision.tx_hash,
                }
                for decision in summary.decisions
            ],
        }

    @app.get("/")
    async def root() -> dict[str, Any]:
        """Root endpoint with API info."""
        return {
            "name": "Launch Sniper Operator API",
            "version": "0.1.0",
            "endpoints": {
                "health": "GET /health",
                "status": "GET /status",
                "positions": "GET /positions?status=open|closed",
                "activity": "GET /activity?tail=N",
                "trade_state": "GET /trade-state/{mint}",
                "queue": "POST /queue",
                "clear_queue": "POST /actions/clear-queue",
                "reset_executed": "POST /actions/reset-executed",
                "check_exits": "POST /actions/check-exits",
            },
        }

    return app
