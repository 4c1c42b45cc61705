"""Durable per-visitor assignment map: ``experiment_id -> variant_id``.

Stored as one JSON object per visitor under ``"{prefix}:{visitor_id}"``.
Keys are stringified experiment ids. Backend errors propagate so the
engine can decide how to degrade; corrupt JSON reads as an empty map.
"""

import json
import logging

from pagelab.state_backend import StateBackend

logger = logging.getLogger(__name__)


class AssignmentStore:
    def __init__(self, backend: StateBackend, key_prefix: str) -> None:
        self._backend = backend
        self._key_prefix = key_prefix

    def _key(self, visitor_id: str) -> str:
        return f"{self._key_prefix}:{visitor_id}"

    def load(self, visitor_id: str) -> dict[str, str]:
        raw = self._backend.get(self._key(visitor_id))
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding unparseable assignment map for visitor=%s", visitor_id[:8])
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def save(self, visitor_id: str, experiment_id: int | str, variant_id: str) -> None:
        """Read-modify-write one entry. Last write wins across tabs/workers."""
        assignments = self.load(visitor_id)
        assignments[str(experiment_id)] = variant_id
        self._backend.set(self._key(visitor_id), json.dumps(assignments))

    def clear(self, visitor_id: str) -> None:
        self._backend.delete(self._key(visitor_id))
