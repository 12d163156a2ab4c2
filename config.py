"""
Configuration constants for the WhatsApp Order Notifier.

Every constant can be overridden from the environment (or a .env file).
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: list) -> list:
    value = os.getenv(name)
    if value in (None, ""):
        return list(default)
    return [part.strip() for part in value.split(",") if part.strip()]


# ── Rate Limit / Cooldown ──────────────────────────────────────────────
MAX_MESSAGES_PER_WINDOW = _env_int("MAX_MESSAGES_PER_WINDOW", 5)
COOLDOWN_MINUTES = _env_float("COOLDOWN_MINUTES", 5)
LOOKBACK_HOURS = _env_float("LOOKBACK_HOURS", 24)
DEVELOPER_BYPASS = _env_list("DEVELOPER_BYPASS", [])

# ── Safety Gates ───────────────────────────────────────────────────────
# Emergency stop: env flag, or a file whose content is "active"
KILL_SWITCH_ACTIVE = _env_bool("WHATSAPP_KILL_SWITCH", False)
KILL_SWITCH_FILE = os.getenv("KILL_SWITCH_FILE", os.path.join("data", "kill-switch.txt"))
STARTUP_GRACE_SECONDS = _env_float("STARTUP_GRACE_SECONDS", 240)
# Local-time hours [start, end) in which customer messages may go out
SEND_WINDOW_START_HOUR = _env_int("SEND_WINDOW_START_HOUR", 9)
SEND_WINDOW_END_HOUR = _env_int("SEND_WINDOW_END_HOUR", 20)
SHOP_TIMEZONE = os.getenv("SHOP_TIMEZONE", "Asia/Kolkata")

# ── Circuit Breaker (consecutive failures per customer) ────────────────
MAX_CONSECUTIVE_FAILURES = _env_int("MAX_CONSECUTIVE_FAILURES", 3)
FAILURE_WINDOW_MINUTES = _env_float("FAILURE_WINDOW_MINUTES", 60)
SUSPENSION_MINUTES = _env_float("SUSPENSION_MINUTES", 30)

# ── Ledger ─────────────────────────────────────────────────────────────
LEDGER_DB_PATH = os.getenv("LEDGER_DB_PATH", os.path.join("data", "ledger.db"))
RETENTION_DAYS = _env_int("RETENTION_DAYS", 200)
PRUNE_INTERVAL_HOURS = _env_float("PRUNE_INTERVAL_HOURS", 6)

# ── Polling / Outbound Throttle ────────────────────────────────────────
POLL_INTERVAL_SECONDS = _env_int("POLL_INTERVAL_SECONDS", 180)
SEND_INTERVAL_SECONDS = _env_float("SEND_INTERVAL_SECONDS", 2.0)
SEND_TIMEOUT_SECONDS = _env_float("SEND_TIMEOUT_SECONDS", 15)

# ── Fallback Messages ──────────────────────────────────────────────────
FALLBACK_ENABLED = _env_bool("FALLBACK_ENABLED", False)
FALLBACK_REASONS = _env_list("FALLBACK_REASONS", ["RATE_LIMIT_EXCEEDED"])

# ── Reminder Schedules (days after the reference date) ────────────────
PICKUP_REMINDER_DAYS = [int(d) for d in _env_list("PICKUP_REMINDER_DAYS", [3, 10, 25, 55, 100, 190])]
PAYMENT_REMINDER_DAYS = [int(d) for d in _env_list("PAYMENT_REMINDER_DAYS", [3, 10, 25, 55])]

# ── Phone Numbers ──────────────────────────────────────────────────────
DEFAULT_COUNTRY_CODE = os.getenv("DEFAULT_COUNTRY_CODE", "91")

# ── Shop Details (template fields) ─────────────────────────────────────
SHOP_NAME = os.getenv("SHOP_NAME", "RS Tailor & Fabric")
SHOP_PHONE = os.getenv("SHOP_PHONE", "8824781960")
BUSINESS_HOURS = os.getenv("BUSINESS_HOURS", "10:00 AM - 7:00 PM")

# ── WhatsApp Gateway (Evolution API) ──────────────────────────────────
EVOLUTION_BASE_URL = os.getenv("EVOLUTION_BASE_URL", "")
EVOLUTION_INSTANCE = os.getenv("EVOLUTION_INSTANCE", "")
EVOLUTION_API_KEY = os.getenv("EVOLUTION_API_KEY", "")

# ── Google Sheets ──────────────────────────────────────────────────────
GOOGLE_SERVICE_ACCOUNT_FILE = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE", "service-account.json")
# Comma-separated "sheet_type=spreadsheet_id!Range" entries
SHEET_SOURCES = os.getenv("SHEET_SOURCES", "")

# ── Logging ────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
METRICS_MAX_ENTRIES = _env_int("METRICS_MAX_ENTRIES", 1000)


@dataclass(frozen=True)
class PolicyConfig:
    """Process-wide policy thresholds. Built once at startup."""

    max_messages_per_window: int = 5
    cooldown: timedelta = timedelta(minutes=5)
    lookback: timedelta = timedelta(hours=24)
    developer_bypass: frozenset = field(default_factory=frozenset)
    max_consecutive_failures: int = 3
    failure_window: timedelta = timedelta(hours=1)
    suspension: timedelta = timedelta(minutes=30)
    kill_switch: bool = False
    kill_switch_file: str | None = None
    startup_grace: timedelta = timedelta(0)
    # None disables the window
    send_window: tuple[int, int] | None = None
    timezone: str = "UTC"


def load_policy_config() -> PolicyConfig:
    """Build the PolicyConfig from the module constants."""
    return PolicyConfig(
        max_messages_per_window=MAX_MESSAGES_PER_WINDOW,
        cooldown=timedelta(minutes=COOLDOWN_MINUTES),
        lookback=timedelta(hours=LOOKBACK_HOURS),
        developer_bypass=frozenset(DEVELOPER_BYPASS),
        max_consecutive_failures=MAX_CONSECUTIVE_FAILURES,
        failure_window=timedelta(minutes=FAILURE_WINDOW_MINUTES),
        suspension=timedelta(minutes=SUSPENSION_MINUTES),
        kill_switch=KILL_SWITCH_ACTIVE,
        kill_switch_file=KILL_SWITCH_FILE,
        startup_grace=timedelta(seconds=STARTUP_GRACE_SECONDS),
        send_window=(SEND_WINDOW_START_HOUR, SEND_WINDOW_END_HOUR),
        timezone=SHOP_TIMEZONE,
    )


def load_sheet_sources(raw: str = None) -> list[dict]:
    """
    Parse SHEET_SOURCES into a list of
    { "sheet_type", "sheet_id", "range" } dicts.

    Example: "tailor=1AbC!Orders!A1:Z,fabric=9XyZ!Fabric!A1:Z"
    """
    raw = SHEET_SOURCES if raw is None else raw
    sources = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        sheet_type, _, target = entry.partition("=")
        sheet_id, _, cell_range = target.partition("!")
        if not sheet_id or not cell_range:
            raise ValueError(f"Invalid SHEET_SOURCES entry: {entry!r}")
        sources.append({
            "sheet_type": sheet_type.strip(),
            "sheet_id": sheet_id.strip(),
            "range": cell_range.strip(),
        })
    return sources
