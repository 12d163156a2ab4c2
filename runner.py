"""
Runner — CLI for the WhatsApp Order Notifier.

    python runner.py            live mode: poll the sheets every POLL_INTERVAL_SECONDS
    python runner.py --once     run a single poll cycle and exit
    python runner.py --test     demo rows through a dry-run transport and a temporary ledger
    python runner.py --prune    delete ledger events older than RETENTION_DAYS and exit
"""

import json
import logging
import os
import signal
import sys
import tempfile
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from config import (
    LEDGER_DB_PATH, POLL_INTERVAL_SECONDS, RETENTION_DAYS,
    load_policy_config, load_sheet_sources,
)
from dispatcher import NotificationDispatcher
from ledger import NotificationLedger
from logger import DispatchMetrics, configure_logging
from poller import OrderPoller
from scheduler import PollScheduler
from sheets_client import GoogleSheetsClient, InMemorySheetsClient
from transport import DryRunTransport, EvolutionTransport

logger = logging.getLogger("runner")

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEMO_PATH = os.path.join(BASE_DIR, "demo_sheets.json")


def load_json(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def build_poller(ledger, transport, sheets, sources, stop_event=None,
                 policy_config=None, **dispatcher_options) -> OrderPoller:
    """Wire ledger, transport and sheets into a ready poller."""
    dispatcher = NotificationDispatcher(
        ledger, transport, policy_config or load_policy_config(),
        metrics=DispatchMetrics(), **dispatcher_options
    )
    return OrderPoller(sources, sheets, dispatcher, ledger, stop_event=stop_event)


def _print_summary(label: str, summary: dict):
    print(f"\n{'━' * 80}")
    print(f"  ▶  {label}")
    print(f"{'━' * 80}")
    if summary.get("skipped"):
        print(f"  ⏭  cycle skipped: {summary['skipped']}")
        return
    print(f"  rows={summary['rows']}  skipped_rows={summary['skipped_rows']}  "
          f"candidates={summary['candidates']}")
    print(f"  🟢 sent={summary['sent']}  🟡 blocked={summary['blocked']}  🔴 failed={summary['failed']}")
    for reason, count in sorted(summary["blocked_by_reason"].items()):
        print(f"      ↳ {reason}: {count}")
    if summary["storage_errors"] or summary["marker_errors"] or summary["sheet_errors"]:
        print(f"  ⚠️  storage_errors={summary['storage_errors']}  marker_errors={summary['marker_errors']}  "
              f"sheet_errors={summary['sheet_errors']}")


# ── Test mode ──────────────────────────────────────────────────────────

def run_test():
    """Replay the demo sheets through a dry-run transport."""
    demo = load_json(DEMO_PATH)
    # demo replays against the wall clock, so the time-based gates stay open
    policy = replace(load_policy_config(), kill_switch=False, kill_switch_file=None,
                     startup_grace=timedelta(0), send_window=None)

    print("\n" + "=" * 80)
    print("  📲  WHATSAPP ORDER NOTIFIER — TEST MODE (dry run)")
    print("=" * 80)

    with tempfile.TemporaryDirectory() as tmp:
        # ── Scenario 1 and 2: first cycle, then an immediate second cycle ──
        ledger = NotificationLedger(os.path.join(tmp, "ledger.db"))
        transport = DryRunTransport()
        sheets = InMemorySheetsClient(demo["sheets"])
        poller = build_poller(ledger, transport, sheets, demo["sources"], policy_config=policy, send_interval=0)

        _print_summary("SCENARIO 1: First poll cycle", poller.poll_once())
        _print_summary("SCENARIO 2: Second cycle right away (markers mirrored, cooldown active)",
                       poller.poll_once())
        poller.dispatcher.metrics.print_table()
        delivered = len(transport.sent)
        ledger.close()

        # ── Scenario 3: gateway keeps failing until the circuit opens ──
        ledger = NotificationLedger(os.path.join(tmp, "failing.db"))
        transport = DryRunTransport(simulate_failure=True)
        sheets = InMemorySheetsClient(demo["sheets"])
        poller = build_poller(ledger, transport, sheets, demo["sources"], policy_config=policy, send_interval=0)

        config = poller.dispatcher.config
        for cycle in range(1, config.max_consecutive_failures + 2):
            _print_summary(f"SCENARIO 3: Failing gateway, cycle {cycle}", poller.poll_once())
        poller.dispatcher.metrics.print_table()
        for alert in poller.dispatcher.metrics.alerts:
            print(f"  🚨 {alert['message']}")
        ledger.close()

    print(f"\n✅ Dry run complete. {delivered} message(s) delivered to the dry-run transport.\n")


# ── Live mode ──────────────────────────────────────────────────────────

def _live_poller(stop_event: threading.Event = None) -> tuple[OrderPoller, NotificationLedger]:
    sources = load_sheet_sources()
    if not sources:
        raise SystemExit("❌ SHEET_SOURCES is empty; nothing to poll.")
    ledger = NotificationLedger(LEDGER_DB_PATH)
    poller = build_poller(ledger, EvolutionTransport(), GoogleSheetsClient(), sources, stop_event=stop_event)
    return poller, ledger


def run_once():
    poller, ledger = _live_poller()
    try:
        _print_summary("Single poll cycle", poller.poll_once())
    finally:
        ledger.close()


def run_live(poll_interval: int = POLL_INTERVAL_SECONDS):
    stop_event = threading.Event()
    poller, ledger = _live_poller(stop_event)

    def _stop(signum, frame):
        logger.info("Received signal %d; finishing current message and stopping", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    print("\n" + "=" * 80)
    print("  📲  WHATSAPP ORDER NOTIFIER — LIVE MODE")
    print(f"  Polling {len(poller.sources)} sheet(s) every {poll_interval}s  •  Press Ctrl+C to stop")
    print("=" * 80)

    try:
        PollScheduler(poll_interval, poller.poll_once, stop_event=stop_event).run()
    finally:
        ledger.close()
        print("👋 Notifier stopped.\n")


def run_prune(retention_days: int = RETENTION_DAYS):
    ledger = NotificationLedger(LEDGER_DB_PATH)
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        removed = ledger.prune(cutoff)
        print(f"🧹 Removed {removed} event(s) older than {retention_days} days.")
    finally:
        ledger.close()


def main():
    configure_logging()
    if "--test" in sys.argv:
        run_test()
    elif "--prune" in sys.argv:
        run_prune()
    elif "--once" in sys.argv:
        run_once()
    else:
        run_live()


if __name__ == "__main__":
    main()
