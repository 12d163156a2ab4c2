"""
Flask Web Application — operator endpoints for the WhatsApp Order Notifier.

Run directly to serve the endpoints with the poll scheduler in a
background thread.
"""

import logging
import threading
from datetime import timedelta

from flask import Flask, request, jsonify

from config import LEDGER_DB_PATH, POLL_INTERVAL_SECONDS, RETENTION_DAYS, load_sheet_sources
from ledger import NotificationLedger, StorageError
from logger import configure_logging, mask_phone
from row_mapper import ValidationError, normalize_phone
from runner import build_poller
from scheduler import PollScheduler
from sheets_client import GoogleSheetsClient
from transport import EvolutionTransport

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Global poller instance, built on first use
poller = None


def get_poller():
    global poller
    if poller is None:
        ledger = NotificationLedger(LEDGER_DB_PATH)
        poller = build_poller(ledger, EvolutionTransport(), GoogleSheetsClient(), load_sheet_sources())
    return poller


@app.errorhandler(StorageError)
def storage_error(e):
    logger.error("Ledger unavailable: %s", e)
    return jsonify({"error": "ledger unavailable", "detail": str(e)}), 503


@app.route("/api/poll-now", methods=["POST"])
def poll_now():
    """Run one poll cycle immediately."""
    summary = get_poller().poll_once()
    if summary.get("skipped") == "cycle_in_progress":
        return jsonify(summary), 409
    return jsonify(summary)


@app.route("/api/send-test", methods=["POST"])
def send_test():
    """Send a manual message, bypassing duplicate and rate checks."""
    data = request.get_json(silent=True) or {}
    body = str(data.get("body", "")).strip()
    if not data.get("customer_id") or not body:
        return jsonify({"error": "customer_id and body are required"}), 400

    try:
        customer_id = normalize_phone(data["customer_id"])
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    dispatcher = get_poller().dispatcher
    if not dispatcher.transport.get_connection_state().get("connected"):
        return jsonify({"error": "WhatsApp not connected"}), 503

    result = dispatcher.send_test_message(customer_id, body)
    logger.info("Operator test message to %s: %s", mask_phone(customer_id), result.status)
    if result.status == "blocked":
        return jsonify(result.to_dict()), 423
    return jsonify(result.to_dict()), 200 if result.status == "sent" else 502


@app.route("/api/stats", methods=["GET"])
def stats():
    current = get_poller()
    return jsonify({
        "ledger": current.ledger.stats(),
        "metrics": current.dispatcher.metrics.snapshot(),
        "last_cycle": current.last_summary,
    })


@app.route("/api/ledger/<customer_id>", methods=["GET"])
def customer_ledger(customer_id):
    """Recorded events for one customer within the retention period."""
    try:
        customer_id = normalize_phone(customer_id)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    current = get_poller()
    since = current.dispatcher.now() - timedelta(days=RETENTION_DAYS)
    events = current.ledger.find_recent_by_customer(customer_id, since)
    return jsonify({
        "customer": mask_phone(customer_id),
        "events": [event.to_dict() for event in events],
    })


@app.route("/api/health", methods=["GET"])
def health():
    state = get_poller().dispatcher.transport.get_connection_state()
    return jsonify({"status": "ok", "whatsapp": state, "service": "WhatsApp Order Notifier"})


def start_background_polling(interval_seconds: float = POLL_INTERVAL_SECONDS):
    """Start the poll scheduler thread. Shares the poller's stop event."""
    current = get_poller()
    scheduler = PollScheduler(interval_seconds, current.poll_once, stop_event=current.stop_event)
    worker = threading.Thread(target=scheduler.run, name="poll-scheduler", daemon=True)
    worker.start()
    return scheduler, worker


def stop_background_polling(scheduler, worker, timeout: float = None):
    """Stop scheduling and wait for the in-flight dispatch to finish."""
    scheduler.stop()
    worker.join(timeout)


if __name__ == "__main__":
    configure_logging()
    scheduler, worker = start_background_polling()

    print("\n🚀 WhatsApp Order Notifier — Operator API")
    print("   http://localhost:5000\n")
    try:
        app.run(port=5000, host="0.0.0.0")
    finally:
        stop_background_polling(scheduler, worker)
        get_poller().ledger.close()
