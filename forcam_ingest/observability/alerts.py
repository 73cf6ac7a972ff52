"""
Alert hooks.

An alert callback receives the name of a failure counter, its current value
and a short message. The run context calls it when the counter crosses the
configured threshold.
"""
from collections.abc import Callable

import requests

from forcam_ingest.observability.logger import get_logger

logger = get_logger(__name__)

AlertCallback = Callable[[str, int, str], None]


def log_alert(counter: str, value: int, message: str) -> None:
    """Default hook: emit an error-level log event."""
    logger.error(
        "Alert raised",
        extra={"event": "alert", "counter": counter, "value": value, "alert_message": message},
    )


def webhook_alert(url: str, timeout: float = 10.0) -> AlertCallback:
    """
    Build a hook that POSTs the alert as JSON.

    Delivery failures are logged; an alert must never break ingestion.

    Args:
        url: Webhook URL
        timeout: Request timeout in seconds

    Returns:
        Alert callback
    """

    def _send(counter: str, value: int, message: str) -> None:
        log_alert(counter, value, message)
        payload = {"counter": counter, "value": value, "message": message, "service": "forcam-ingest"}
        try:
            response = requests.post(url, json=payload, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(
                "Alert webhook delivery failed",
                extra={"url": url, "error": str(e)},
            )

    return _send
