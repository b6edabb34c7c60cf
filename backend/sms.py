"""
SMS relay client.

Forwards messages to the SMS proxy so the upstream provider credentials never
leave the server. The proxy is reached at ``SMS_PROXY_BASE/send-sms`` and
authenticated with the ``x-proxy-key`` header.
"""

import logging
import time
from typing import Any, Dict, Optional

import requests

from .config import settings

logger = logging.getLogger(__name__)


class SmsRelayError(Exception):
    """Raised when every attempt to reach the proxy failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def relay_configured() -> bool:
    return bool(settings.sms_proxy_url and settings.proxy_key)


def _decode(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def send_via_proxy(payload: Dict[str, str]) -> Any:
    """POST *payload* ({from, to, text}) to the proxy.

    Connection errors and timeouts are retried with a linear back-off; an HTTP
    error from the proxy fails immediately.
    """
    url = settings.sms_proxy_url
    headers = {"Content-Type": "application/json", "x-proxy-key": settings.proxy_key}
    attempts = max(1, settings.sms_max_retries)
    last_error: Optional[SmsRelayError] = None

    for attempt in range(1, attempts + 1):
        try:
            response = requests.post(
                url,
                json=payload,
                headers=headers,
                timeout=settings.sms_timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.warning("SMS proxy attempt %d/%d failed: %s", attempt, attempts, exc)
            last_error = SmsRelayError(str(exc))
        else:
            body = _decode(response)
            if not response.ok:
                # the proxy answered; only transport failures are retried
                logger.error("SMS proxy returned HTTP %d", response.status_code)
                raise SmsRelayError(
                    f"Proxy returned HTTP {response.status_code}",
                    status_code=response.status_code,
                    body=body,
                )
            logger.info("SMS relayed to %s", payload.get("to"))
            return body

        if attempt < attempts:
            time.sleep(0.5 * attempt)

    raise last_error or SmsRelayError("SMS proxy unreachable")
