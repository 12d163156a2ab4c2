"""
Transport — WhatsApp delivery through an Evolution API gateway, which
holds the multi-device session. Also a dry-run transport for test mode.
"""

import logging
import uuid

import requests

from config import (
    EVOLUTION_BASE_URL, EVOLUTION_INSTANCE, EVOLUTION_API_KEY, SEND_TIMEOUT_SECONDS,
)
from logger import mask_phone

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Base class for send failures. Always recorded as `failed`."""
    pass


class NotConnectedError(TransportError):
    pass


class SendTimeoutError(TransportError):
    pass


class RecipientInvalidError(TransportError):
    pass


class EvolutionTransport:
    """Sends text messages via the Evolution API HTTP gateway."""

    def __init__(self, base_url: str = EVOLUTION_BASE_URL, instance: str = EVOLUTION_INSTANCE,
                 api_key: str = EVOLUTION_API_KEY, timeout: float = SEND_TIMEOUT_SECONDS,
                 session: requests.Session = None):
        if not base_url or not instance or not api_key:
            raise ValueError(
                "Missing Evolution config: EVOLUTION_BASE_URL, EVOLUTION_INSTANCE, EVOLUTION_API_KEY"
            )
        self.base_url = base_url.rstrip("/")
        self.instance = instance
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"apikey": api_key, "Content-Type": "application/json"})

    def get_connection_state(self) -> dict:
        """Returns {"connected": bool, "state": str}."""
        url = f"{self.base_url}/instance/connectionState/{self.instance}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
            resp.raise_for_status()
            state = resp.json().get("instance", {}).get("state", "unknown")
        except (requests.RequestException, ValueError) as e:
            logger.warning("Connection state check failed: %s", e)
            return {"connected": False, "state": "unreachable"}
        return {"connected": state == "open", "state": state}

    def send(self, customer_id: str, body: str) -> dict:
        """
        Send a text message. Returns {"external_message_id": str}.
        Raises NotConnectedError, SendTimeoutError, RecipientInvalidError
        or TransportError.
        """
        url = f"{self.base_url}/message/sendText/{self.instance}"
        try:
            resp = self.session.post(
                url, json={"number": customer_id, "text": body}, timeout=self.timeout
            )
        except requests.Timeout as e:
            raise SendTimeoutError(f"Send to {mask_phone(customer_id)} timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise NotConnectedError(f"WhatsApp gateway unreachable: {e}") from e
        except requests.RequestException as e:
            raise TransportError(str(e)) from e

        if resp.status_code in (400, 404):
            raise RecipientInvalidError(
                f"Recipient {mask_phone(customer_id)} rejected (HTTP {resp.status_code})"
            )
        if resp.status_code in (401, 403, 503):
            raise NotConnectedError(f"Gateway refused send (HTTP {resp.status_code})")
        if resp.status_code >= 300:
            raise TransportError(f"Gateway error HTTP {resp.status_code}")

        try:
            message_id = resp.json().get("key", {}).get("id")
        except ValueError:
            message_id = None
        return {"external_message_id": message_id or ""}


class DryRunTransport:
    """In-memory transport that records messages instead of sending them."""

    def __init__(self, connected: bool = True, simulate_failure: bool = False):
        self.connected = connected
        self.simulate_failure = simulate_failure
        self.sent: list[dict] = []

    def get_connection_state(self) -> dict:
        return {"connected": self.connected, "state": "open" if self.connected else "close"}

    def send(self, customer_id: str, body: str) -> dict:
        if not self.connected:
            raise NotConnectedError("Dry-run transport is disconnected")
        if self.simulate_failure:
            raise SendTimeoutError("Simulated send timeout")
        message_id = f"dry-{uuid.uuid4().hex[:12]}"
        self.sent.append({"customer_id": customer_id, "body": body, "external_message_id": message_id})
        logger.info("[dry-run] message %s to %s (%d chars)", message_id, mask_phone(customer_id), len(body))
        return {"external_message_id": message_id}

    def set_failure_mode(self, enabled: bool):
        """Toggle send failure simulation."""
        self.simulate_failure = enabled
