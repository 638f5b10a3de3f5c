"""
Signature & freshness verification for inbound gateway webhooks.

Header format: ``t=<unix_ts>,v1=<hex>[,v1=<hex>...]``. The signed message is
``f"{t}." + body`` under HMAC-SHA256 with the shared endpoint secret. Up to two
secrets are accepted at once so the secret can be rotated without downtime.
"""
from __future__ import annotations

import hashlib
import hmac
import time
from typing import Callable, Iterable, Optional

from domain.common.exceptions import SignatureError, StaleEventError

SIGNATURE_SCHEME = "v1"


def _parse_header(header: str) -> tuple[Optional[int], list[str]]:
    timestamp: Optional[int] = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    return timestamp, signatures


class WebhookSignatureVerifier:
    """Pure validation: touches no state and runs before anything else."""

    def __init__(
        self,
        secrets: Iterable[str],
        tolerance_seconds: int = 300,
        max_future_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self._secrets = [s for s in secrets if s][:2]
        self._tolerance = tolerance_seconds
        self._max_future = max_future_seconds
        self._clock = clock

    @staticmethod
    def sign(body: bytes, timestamp: int, secret: str) -> str:
        message = f"{timestamp}.".encode() + body
        return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()

    @classmethod
    def build_header(cls, body: bytes, timestamp: int, secret: str) -> str:
        return f"t={timestamp},{SIGNATURE_SCHEME}={cls.sign(body, timestamp, secret)}"

    def verify(self, body: bytes, header: Optional[str]) -> int:
        """Return the signed timestamp, or raise SignatureError / StaleEventError."""
        if not self._secrets:
            raise SignatureError("Webhook signing secret is not configured")
        if not header:
            raise SignatureError("Missing signature header")

        timestamp, signatures = _parse_header(header)
        if timestamp is None or not signatures:
            raise SignatureError("Unable to parse signature header")

        expected = [self.sign(body, timestamp, secret) for secret in self._secrets]
        matched = any(
            hmac.compare_digest(candidate, digest)
            for digest in expected
            for candidate in signatures
        )
        if not matched:
            raise SignatureError("No signature matches the expected digest")

        now = int(self._clock())
        age = now - timestamp
        if age > self._tolerance:
            raise StaleEventError(age_seconds=age, tolerance_seconds=self._tolerance)
        if -age > self._max_future:
            raise StaleEventError(age_seconds=age, tolerance_seconds=self._tolerance)
        return timestamp
