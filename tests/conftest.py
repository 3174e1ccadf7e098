import os
import sys

# Ensure project root is in sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from leadbot.config import refresh_settings
from leadbot.datastore import reset_state


@pytest.fixture(autouse=True)
def _reset_datastore(monkeypatch, tmp_path):
    for key in [
        "REDIS_URL",
        "OPENAI_API_KEY",
        "GATEWAY_URL",
        "GATEWAY_TOKEN",
        "WEBHOOK_TOKEN",
        "MONITORED_GROUPS",
        "AIRTABLE_API_KEY",
        "AIRTABLE_BASE_ID",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_CHAT_ID",
        "ADMIN_CONVERSATION_ID",
        "LEAD_ALERTS_ENABLED",
        "VIBRATE_ON_NEW_LEADS",
    ]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LEADBOT_FORCE_IN_MEMORY", "1")
    monkeypatch.setenv("LEAD_LOG_PATH", str(tmp_path / "logs" / "leads_log.txt"))
    refresh_settings()
    reset_state()
    yield
    refresh_settings()
    reset_state()
