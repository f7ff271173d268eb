"""Main runtime loop for the sniper."""

from __future__ import annotations

import asyncio
import atexit
import sys

import structlog
import uvicorn

from sniper.api.operator import create_app
from sniper.config.settings import load_settings
from sniper.monitoring.activity import ActivityCategory
from sniper.monitoring.logging import configure_logging
from sniper.runtime import SniperRuntime, build_runtime, read_inbox
from sniper.utils.process_lock import AlreadyRunningError, ProcessLock

log = structlog.get_logger(__name__)

INBOX_POLL_SEC = 2.0
WATCHDOG_INTERVAL_SEC = 15.0


async def intake_loop(runtime: SniperRuntime) -> None:
    """Feed discovery output through approval into the orchestrator."""
    inbox_path = runtime.settings.storage.inbox_path
    while True:
        try:
            candidates = read_inbox(inbox_path)
            if candidates:
                queued = await runtime.submit(candidates)
                log.info("inbox_processed", candidates=len(candidates), queued=queued)
            requeued = await runtime.recheck_deferred()
            if requeued:
                log.info("deferred_candidates_queued", queued=requeued)
            runtime.metrics.record_loop_tick("intake")
        except Exception as exc:
            log.warning("intake_cycle_failed", error=str(exc))
        await asyncio.sleep(INBOX_POLL_SEC)


async def watchdog_loop(runtime: SniperRuntime) -> None:
    while True:
        try:
            runtime.metrics.refresh_loop_ages()
            if not runtime.wallet.state().is_connected:
                await runtime.wallet.connect()
            else:
                await runtime.wallet.refresh_balance()
            # Wallet state may have unblocked a queue that stopped on prerequisites.
            runtime.orchestrator.resume()
            runtime.metrics.record_loop_tick("watchdog")
        except Exception as exc:
            log.warning("watchdog_cycle_failed", error=str(exc))
        await asyncio.sleep(WATCHDOG_INTERVAL_SEC)


async def api_server(runtime: SniperRuntime) -> None:
    """Run the operator API server."""
    try:
        config = uvicorn.Config(
            create_app(runtime),
            host="127.0.0.1",
            port=runtime.settings.monitoring.api_port,
            log_level="info",
        )
        await uvicorn.Server(config).serve()
    except Exception as exc:
        log.warning("api_server_failed", error=str(exc))


async def main_async() -> None:
    settings = load_settings()
    configure_logging(settings.monitoring.log_level, settings.storage.logs_path, settings.monitoring)
    if sys.version_info < (3, 10):
        log.warning("python_version_unsupported", version=sys.version.split()[0])

    instance_lock = ProcessLock(settings.storage.state_path, mode=settings.run.mode)
    try:
        instance_lock.acquire()
    except AlreadyRunningError as exc:
        owner = exc.owner
        log.error(
            "another_instance_running",
            lock_path=str(exc.lock_path),
            pid=exc.pid,
            owner_mode=owner.mode if owner else None,
            owner_started_at=owner.started_at.isoformat() if owner and owner.started_at else None,
        )
        return
    atexit.register(instance_lock.release)

    runtime = build_runtime(settings)
    runtime.metrics.start_server(settings.monitoring.metrics_port)

    allowed, reasons = settings.trading_gate()
    log.info("sniper_starting", mode=settings.run.mode, trading_allowed=allowed, blocked_by=reasons)
    if await runtime.wallet.connect():
        runtime.activity.success(ActivityCategory.WALLET, f"Wallet connected ({runtime.wallet.state().balance:.4f})")
    else:
        runtime.activity.warning(ActivityCategory.WALLET, "Wallet not connected; buys are blocked until it is")
    synced = await runtime.orchestrator.sync_active_positions()
    log.info("active_positions_synced", count=synced, trade_states=runtime.trade_states.counts())

    loops = [intake_loop(runtime), watchdog_loop(runtime)]
    if settings.exit_monitor.enabled:
        loops.append(runtime.exit_monitor.run())
    if settings.monitoring.api_enabled:
        loops.append(api_server(runtime))
    try:
        await asyncio.gather(*loops, return_exceptions=True)
    finally:
        await runtime.close()


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
