"""Active experiment catalog fetched from the remote store.

The catalog is read-only from the client's perspective. Results are cached
for ``CATALOG_CACHE_TTL_SECONDS`` (5 minutes by default) so repeated page
loads in one process do not refetch.

Cache access is protected by ``asyncio.Lock`` so concurrent callers that
all miss the cache issue a single request. Any fetch or parse failure
degrades to "no active experiments" and is not cached, so the next call
retries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from cachetools import TTLCache
from pydantic import ValidationError

from pagelab.experiments.models import Experiment

logger = logging.getLogger(__name__)

_CACHE_KEY = "active"


class ExperimentCatalog:
    """Fetches and caches ``GET {EXPERIMENTS_PATH}``.

    Args:
        http_client: Client with ``base_url`` pointing at the catalog server.
        path: Endpoint path returning ``{"success": true, "data": [...]}``.
        ttl: Cache lifetime in seconds.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        path: str = "/api/experiments/active",
        ttl: int = 300,
    ) -> None:
        self._client = http_client
        self._path = path
        self._cache: TTLCache = TTLCache(maxsize=1, ttl=ttl)
        self._lock = asyncio.Lock()

    def clear(self) -> None:
        self._cache.clear()

    async def fetch_active(self) -> list[Experiment]:
        """Return the active experiments, or ``[]`` when the fetch fails.

        Never raises. Entries that fail validation are skipped individually.
        """
        cached = self._cache.get(_CACHE_KEY)
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._cache.get(_CACHE_KEY)
            if cached is not None:
                return cached

            try:
                response = await self._client.get(self._path)
                response.raise_for_status()
                payload = response.json()
            except Exception:
                logger.warning(
                    "Experiment catalog fetch failed; continuing with no experiments",
                    exc_info=True,
                )
                return []

            experiments = self._parse(payload)
            self._cache[_CACHE_KEY] = experiments
            logger.info("Loaded %d experiment definitions", len(experiments))
            return experiments

    @staticmethod
    def _parse(payload: Any) -> list[Experiment]:
        records = payload.get("data", []) if isinstance(payload, dict) else payload
        if not isinstance(records, list):
            logger.warning("Experiment catalog payload has no list of records")
            return []

        experiments: list[Experiment] = []
        for record in records:
            try:
                experiments.append(Experiment.model_validate(record))
            except ValidationError:
                logger.warning(
                    "Skipping malformed experiment record id=%s",
                    record.get("id", "?") if isinstance(record, dict) else "?",
                )
        return experiments
