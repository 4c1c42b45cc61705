"""Remote ingestion sink for telemetry batches, using raw HTTP via httpx.

Posts ``{"events": [...]}`` to the batch endpoint. Any non-2xx status is
raised so the pipeline can re-queue the batch; the response body is not
consumed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import httpx

from pagelab.telemetry.events import TelemetryEvent

logger = logging.getLogger(__name__)


class HttpEventSink:
    """Async sink for the analytics batch endpoint.

    Args:
        base_url: Ingestion server root, e.g. ``http://localhost:8080``.
        path: Batch endpoint path.
        timeout: Per-request timeout in seconds.
        http_client: Injected client (tests, shared connection pools).
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        path: str = "/api/analytics/batch",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._path = path
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout),
        )
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def send_batch(self, events: Sequence[TelemetryEvent]) -> None:
        """POST one batch.

        Raises:
            httpx.HTTPError: On transport failure or non-2xx response.
        """
        payload = {"events": [event.to_wire() for event in events]}
        response = await self._client.post(self._path, json=payload)
        response.raise_for_status()
        logger.debug("Telemetry batch accepted: events=%d status=%d", len(events), response.status_code)
