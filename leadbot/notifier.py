"""Best-effort lead side effects: lead log file, Telegram message, Termux vibration/beep."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import time
from typing import Optional

import requests

from leadbot.config import local_now, settings
from leadbot.models import LeadRecord
from leadbot.runtime import get_logger

logger = get_logger("notifier")

TELEGRAM_API = "https://api.telegram.org/bot{token}/sendMessage"

# (on_ms, off_ms, ...) patterns
VIBRATION_PATTERNS = {
    "new": [500, 200, 500],
    "urgent": [300, 100, 300, 100, 300],
}


def append_lead_log(record: LeadRecord, path: Optional[str] = None) -> bool:
    path = path or settings().LEAD_LOG_PATH
    entry = (
        "\n========================================\n"
        f"📅 Date: {local_now().strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"📱 Source: {record.source_description}\n"
        f"💬 Message: {record.raw_message}\n"
        f"📊 Lead Details: {json.dumps({'id': record.id, 'priority': record.priority_category.value, **record.fields}, indent=2, ensure_ascii=False)}\n"
        "========================================\n"
    )
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(entry)
    except OSError as exc:
        logger.error("❌ Could not append lead log %s: %s", path, exc)
        return False
    logger.info("✅ Lead %s logged to %s", record.id, path)
    return True


def send_telegram(text: str) -> bool:
    cfg = settings()
    if not (cfg.TELEGRAM_BOT_TOKEN and cfg.TELEGRAM_CHAT_ID):
        return False
    try:
        resp = requests.post(
            TELEGRAM_API.format(token=cfg.TELEGRAM_BOT_TOKEN),
            json={"chat_id": cfg.TELEGRAM_CHAT_ID, "text": text},
            timeout=10,
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("⚠️ Telegram notification failed: %s", exc)
        return False
    return True


def _run(cmd: list[str]) -> bool:
    try:
        subprocess.run(cmd, check=True, timeout=10, capture_output=True)
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("%s failed: %s", cmd[0], exc)
        return False
    return True


def vibrate(urgent: bool = False) -> bool:
    if not settings().VIBRATE_ON_NEW_LEADS or shutil.which("termux-vibrate") is None:
        return False
    pattern = VIBRATION_PATTERNS["urgent" if urgent else "new"]
    ok = True
    for i, ms in enumerate(pattern):
        if i % 2 == 0:
            ok = _run(["termux-vibrate", "-d", str(ms)]) and ok
        time.sleep(ms / 1000)
    if shutil.which("termux-beep"):
        _run(["termux-beep"])
    return ok


def notify_new_lead(record: LeadRecord, alert_text: str) -> None:
    """Fire every configured notification; failures are logged, never raised."""
    append_lead_log(record)
    send_telegram(alert_text)
    vibrate(urgent=record.is_urgent)


__all__ = ["append_lead_log", "send_telegram", "vibrate", "notify_new_lead", "VIBRATION_PATTERNS"]
