"""In-process record store for analytics events and experiments.

Stands in for the relational store behind the API. Methods are async so a
database-backed implementation can replace it without touching the routes.
Ids are sequential integers; timestamps are UTC.
"""

from __future__ import annotations

import itertools
import logging
from collections import Counter
from datetime import datetime, timezone

from pagelab.api.models import (
    AnalyticsEventIn,
    EventCount,
    ExperimentCreate,
    ExperimentRecord,
    ExperimentUpdate,
    StoredEvent,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore:
    def __init__(self) -> None:
        self._events: list[StoredEvent] = []
        self._experiments: dict[int, ExperimentRecord] = {}
        self._event_ids = itertools.count(1)
        self._experiment_ids = itertools.count(1)

    # -- Analytics events ---------------------------------------------------

    async def create_event(self, event: AnalyticsEventIn) -> StoredEvent:
        stored = StoredEvent(
            **event.model_dump(),
            id=next(self._event_ids),
            created_at=_utcnow(),
        )
        self._events.append(stored)
        return stored

    async def get_events(
        self, *, event_type: str | None = None, limit: int = 100,
    ) -> list[StoredEvent]:
        """Newest first, optionally filtered by type."""
        matching = [
            e for e in reversed(self._events)
            if event_type is None or e.event_type == event_type
        ]
        return matching[:limit]

    async def get_event_counts(self, event_type: str | None = None) -> list[EventCount]:
        counts = Counter(
            e.event_type for e in self._events
            if event_type is None or e.event_type == event_type
        )
        return [EventCount(event_type=name, count=n) for name, n in sorted(counts.items())]

    async def count_events(self) -> int:
        return len(self._events)

    # -- Experiments --------------------------------------------------------

    async def create_experiment(self, data: ExperimentCreate) -> ExperimentRecord:
        now = _utcnow()
        record = ExperimentRecord(
            **data.model_dump(),
            id=next(self._experiment_ids),
            created_at=now,
            updated_at=now,
        )
        self._experiments[record.id] = record
        logger.info("Experiment created: id=%s name=%s", record.id, record.name)
        return record

    async def get_experiment(self, experiment_id: int) -> ExperimentRecord | None:
        return self._experiments.get(experiment_id)

    async def list_experiments(self) -> list[ExperimentRecord]:
        """All experiments, newest first."""
        return sorted(self._experiments.values(), key=lambda r: r.created_at, reverse=True)

    async def get_active_experiments(self) -> list[ExperimentRecord]:
        return [r for r in await self.list_experiments() if r.is_active]

    async def update_experiment(
        self, experiment_id: int, data: ExperimentUpdate,
    ) -> ExperimentRecord | None:
        current = await self.get_experiment(experiment_id)
        if current is None:
            return None
        changes = data.model_dump(exclude_unset=True)
        merged = {**current.model_dump(), **changes, "updated_at": _utcnow()}
        self._experiments[experiment_id] = ExperimentRecord.model_validate(merged)
        logger.info("Experiment updated: id=%s fields=%s", experiment_id, sorted(changes))
        return self._experiments[experiment_id]
