"""
GDSN data pool HTTP client
==========================
Talks to a GS1-style REST data pool:

    GET {base_url}/products/{gtin}   -> 200 trade item JSON | 404

Failures map onto the GdsnError hierarchy. Retryable failures (network,
429, 5xx) are attempted up to `max_retries` times with exponential backoff,
honouring Retry-After on 429.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from authority.enrichment.client import (
    GdsnAuthenticationError,
    GdsnClient,
    GdsnError,
    GdsnNetworkError,
    GdsnProviderError,
    GdsnRateLimitError,
    GdsnValidationError,
    ManufacturerRecord,
    record_from_trade_item,
)

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 0.5
BACKOFF_MAX_SECONDS = 10.0


class HttpGdsnClient(GdsnClient):
    """Bearer-authenticated data pool client built on httpx"""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        provider_id: str = "gdsn",
        subscriber_gln: Optional[str] = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        transport: Optional[httpx.BaseTransport] = None,
        sleep=time.sleep
    ):
        if not base_url:
            raise ValueError("GDSN base_url is required for the http provider")
        self.provider_id = provider_id
        self.max_retries = max(1, max_retries)
        self._sleep = sleep

        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        if subscriber_gln:
            headers["X-Subscriber-GLN"] = subscriber_gln

        self.client = httpx.Client(
            base_url=base_url.rstrip('/'),
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    def fetch_product_by_gtin(self, gtin: str) -> Optional[ManufacturerRecord]:
        payload = self._get_with_retry(f"/products/{gtin}")
        if payload is None:
            return None
        return record_from_trade_item(payload, self.provider_id)

    def is_connected(self) -> bool:
        try:
            response = self.client.get("/health")
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.warning(f"GDSN provider {self.provider_id} unreachable: {e}")
            return False

    def close(self) -> None:
        self.client.close()

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------

    def _get_with_retry(self, path: str) -> Optional[Dict[str, Any]]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._get(path)
            except GdsnError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                delay = self._backoff(attempt, e)
                logger.warning(
                    f"GDSN {self.provider_id} {e.code} on {path} "
                    f"(attempt {attempt}/{self.max_retries}), retrying in {delay:.1f}s"
                )
                self._sleep(delay)

    @staticmethod
    def _backoff(attempt: int, error: GdsnError) -> float:
        if isinstance(error, GdsnRateLimitError) and error.retry_after_s:
            return min(error.retry_after_s, BACKOFF_MAX_SECONDS)
        return min(BACKOFF_BASE_SECONDS * (2 ** (attempt - 1)), BACKOFF_MAX_SECONDS)

    def _get(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.get(path)
        except httpx.TimeoutException as e:
            raise GdsnNetworkError(f"Request timed out: {e}", self.provider_id, {"path": path}) from e
        except httpx.HTTPError as e:
            raise GdsnNetworkError(f"Request failed: {e}", self.provider_id, {"path": path}) from e

        status = response.status_code
        if status == 404:
            return None
        if status in (401, 403):
            raise GdsnAuthenticationError(
                f"Authentication failed ({status})", self.provider_id, {"path": path}
            )
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise GdsnRateLimitError(
                "Rate limit exceeded",
                retry_after_s=float(retry_after) if retry_after and retry_after.isdigit() else None,
                provider_id=self.provider_id,
                details={"path": path},
            )
        if status in (400, 422):
            raise GdsnValidationError(
                f"Request rejected ({status}): {response.text[:200]}", self.provider_id, {"path": path}
            )
        if status >= 500:
            raise GdsnProviderError(f"Provider error ({status})", self.provider_id, {"path": path})
        if status >= 300:
            raise GdsnError(f"Unexpected status {status}", self.provider_id, {"path": path})

        try:
            return response.json()
        except ValueError as e:
            raise GdsnValidationError("Response is not valid JSON", self.provider_id, {"path": path}) from e
