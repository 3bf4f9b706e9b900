"""
Webhook Value Objects
======================

Stateless helpers for webhook delivery: payload construction and
serialization, HMAC signing, and the retry backoff policy.
"""

import hashlib
import hmac
import json
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Union

import httpx

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_256_HEADER = "X-Webhook-Signature-256"
SIGNATURE_PREFIX = "sha256="


@dataclass(frozen=True)
class TransportResponse:
    """HTTP response as seen by the delivery worker."""

    status_code: int
    reason: str
    text: str

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


def format_timestamp(at: datetime) -> str:
    """ISO-8601 with millisecond precision and a Z suffix."""
    return at.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_event_payload(
    event_type: str,
    timestamp: datetime,
    tenant_id: str,
    tenant_name: str,
    data: Dict[str, Any],
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build the subscription-independent part of a webhook body.

    The ``webhook`` identity block is added per subscription by
    ``with_webhook_identity``.
    """
    return {
        "event": event_type,
        "timestamp": format_timestamp(timestamp),
        "tenant": {"id": tenant_id, "name": tenant_name},
        "data": data,
        "metadata": {**(metadata or {}), "source": (metadata or {}).get("source", "system")},
    }


def with_webhook_identity(payload: Dict[str, Any], webhook_id: str, webhook_name: str) -> Dict[str, Any]:
    return {
        "event": payload["event"],
        "timestamp": payload["timestamp"],
        "webhook": {"id": webhook_id, "name": webhook_name},
        "tenant": payload["tenant"],
        "data": payload["data"],
        "metadata": payload["metadata"],
    }


def serialize_payload(payload: Dict[str, Any]) -> bytes:
    """Compact JSON bytes. These exact bytes are signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def truncate(text: Optional[str], max_chars: int) -> str:
    return (text or "")[:max_chars]


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)


class SignatureSigner:
    """
    HMAC-SHA256 signing of outbound webhook bodies.

    Without a secret, deliveries are sent unsigned.
    """

    @staticmethod
    def sign(payload: Union[bytes, str], secret: str) -> str:
        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def signature_headers(self, payload: bytes, secret: Optional[str]) -> Dict[str, str]:
        """Both header variants, or nothing when no secret is configured."""
        if not secret:
            return {}
        signature = self.sign(payload, secret)
        return {
            SIGNATURE_HEADER: signature,
            SIGNATURE_256_HEADER: f"{SIGNATURE_PREFIX}{signature}",
        }

    def verify(self, payload: Union[bytes, str], secret: str, signature: str) -> bool:
        """Constant-time check of either header variant."""
        if signature.startswith(SIGNATURE_PREFIX):
            signature = signature[len(SIGNATURE_PREFIX):]
        return hmac.compare_digest(self.sign(payload, secret), signature)


class RetryPolicy:
    """
    Exponential backoff with jitter.

    delay(attempt_index) = min(2^attempt_index * base + U(0, jitter), cap)
    where attempt_index is the 0-based index of the attempt that failed.
    """

    def __init__(
        self,
        base_delay_ms: int = 1000,
        max_jitter_ms: int = 1000,
        max_delay_ms: int = 300_000,
        rng: Callable[[], float] = random.random,
    ):
        self.base_delay_ms = base_delay_ms
        self.max_jitter_ms = max_jitter_ms
        self.max_delay_ms = max_delay_ms
        self._rng = rng

    def delay_ms(self, attempt_index: int) -> float:
        delay = (2 ** attempt_index) * self.base_delay_ms + self._rng() * self.max_jitter_ms
        return min(delay, self.max_delay_ms)

    def next_retry_at(self, now: datetime, attempt_index: int) -> datetime:
        return now + timedelta(milliseconds=self.delay_ms(attempt_index))
