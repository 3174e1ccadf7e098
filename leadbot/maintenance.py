"""Periodic housekeeping: cache and marker pruning, claim expiry, daily lead backup."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from leadbot.config import local_now, settings
from leadbot.processor import Dispatcher
from leadbot.runtime import get_logger

logger = get_logger("maintenance")


def run_maintenance(dispatcher: Dispatcher, state: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """One sweep. Reads lead records for the backup, never mutates them or the index."""
    state = state if state is not None else {}
    summary: Dict[str, Any] = {}

    if dispatcher.classifier is not None:
        summary["cachePruned"] = dispatcher.classifier.prune_cache()
    summary["markersPruned"] = dispatcher.idempotency.prune()
    summary["claimsExpired"] = dispatcher.tracker.expire_claims()

    today = local_now().date().isoformat()
    if state.get("lastBackup") != today:
        if dispatcher.lead_store.backup(today):
            state["lastBackup"] = today
            summary["backup"] = today

    logger.info("🧽 Maintenance sweep: %s", summary)
    return summary


async def run_maintenance_loop(dispatcher: Dispatcher, interval: Optional[float] = None) -> None:
    """Sweep every MAINTENANCE_INTERVAL_SEC until cancelled. Sweep errors are logged."""
    interval = interval if interval is not None else settings().MAINTENANCE_INTERVAL_SEC
    state: Dict[str, Any] = {}
    logger.info("🛠️ Maintenance loop started (every %ss)", interval)
    try:
        while True:
            try:
                run_maintenance(dispatcher, state)
            except Exception:
                logger.exception("❌ Maintenance sweep failed")
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("🛑 Maintenance loop stopped")
        raise


__all__ = ["run_maintenance", "run_maintenance_loop"]
