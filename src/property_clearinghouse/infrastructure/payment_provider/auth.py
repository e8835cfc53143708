"""HMAC request signing for the payment/custody provider."""

from __future__ import annotations

import hashlib
import hmac
import time


class ProviderAuth:
    """Builds the provider's HMAC authorization headers.

    The signature is computed as:
        contentHash = hex(MD5(body))            body is "{}" when empty
        signature   = hex(HMAC-SHA256(secret, timestamp + METHOD + endpoint + contentHash))
        header      = "HMAC <timestamp>:<signature>"

    ``endpoint`` is the path relative to the API base (e.g. ``/trade/rates``).
    """

    EMPTY_BODY = b"{}"

    def __init__(self, api_key: str, api_secret: str) -> None:
        self.api_key = api_key
        self.api_secret = api_secret

    def get_timestamp(self) -> int:
        """Current time in milliseconds."""
        return int(time.time() * 1000)

    def compute_signature(
        self,
        method: str,
        endpoint: str,
        timestamp: int,
        body: bytes | None = None,
    ) -> str:
        content_hash = hashlib.md5(body or self.EMPTY_BODY).hexdigest()  # noqa: S324
        mac = hmac.new(self.api_secret.encode("utf-8"), digestmod=hashlib.sha256)
        mac.update(str(timestamp).encode("utf-8"))
        mac.update(method.upper().encode("utf-8"))
        mac.update(endpoint.encode("utf-8"))
        mac.update(content_hash.encode("utf-8"))
        return mac.hexdigest()

    def get_headers(
        self,
        method: str,
        endpoint: str,
        body: bytes | None = None,
        timestamp: int | None = None,
    ) -> dict[str, str]:
        if timestamp is None:
            timestamp = self.get_timestamp()
        signature = self.compute_signature(method, endpoint, timestamp, body)
        return {
            "authorization": f"HMAC {timestamp}:{signature}",
            "api-key": self.api_key,
            "Content-Type": "application/json",
        }
