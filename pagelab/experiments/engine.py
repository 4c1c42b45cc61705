"""Variant assignment engine.

Maps each (visitor, active experiment) pair to exactly one variant and
keeps the mapping durable:

1. A stored assignment wins whenever its variant still exists, even if the
   hash would now pick another bucket (e.g. after variants were reordered).
2. Otherwise the variant is bucketed, persisted, and an ``experiment_view``
   event is emitted. Views are emitted only for new assignments, so each
   visitor is counted once per experiment.

Failures never reach the caller: an unreadable store resolves as if empty,
an unwritable store leaves the assignment in memory for this page only,
and experiments that cannot be assigned are skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from pagelab.experiments.bucketing import select_variant
from pagelab.experiments.models import AssignedVariant, Experiment
from pagelab.experiments.store import AssignmentStore
from pagelab.telemetry.events import EventType
from pagelab.telemetry.trackers import Analytics

logger = logging.getLogger(__name__)


class AssignmentEngine:
    """Resolves and serves experiment content for one page life.

    Args:
        store: Durable assignment map.
        analytics: Emitter for view and conversion events.
    """

    def __init__(self, store: AssignmentStore, analytics: Analytics) -> None:
        self._store = store
        self._analytics = analytics
        self._assigned: list[AssignedVariant] = []

    @property
    def assigned_variants(self) -> list[AssignedVariant]:
        return list(self._assigned)

    def resolve_assignments(
        self,
        visitor_id: str,
        experiments: Iterable[Experiment],
        *,
        now: datetime | None = None,
    ) -> list[AssignedVariant]:
        """Assign *visitor_id* to one variant per assignable experiment.

        Returns:
            One AssignedVariant per assignable experiment, in catalog order.
        """
        try:
            stored = self._store.load(visitor_id)
        except Exception:
            logger.warning("Assignment store read failed; resolving without history", exc_info=True)
            stored = {}

        assigned: list[AssignedVariant] = []
        for experiment in experiments:
            if not experiment.is_assignable(now):
                if experiment.is_active and experiment.total_weight <= 0:
                    logger.warning(
                        "Skipping experiment %s (%s): no positively weighted variants",
                        experiment.id,
                        experiment.name,
                    )
                continue

            variant = None
            stored_variant_id = stored.get(str(experiment.id))
            if stored_variant_id:
                variant = experiment.find_variant(stored_variant_id)

            if variant is None:
                variant = select_variant(experiment.variants, visitor_id, experiment.id)
                self._persist(visitor_id, experiment, variant.id)
                self._analytics.track_event(
                    EventType.EXPERIMENT_VIEW,
                    {"experimentId": experiment.id, "variantId": variant.id},
                )

            assigned.append(
                AssignedVariant(
                    experiment_id=experiment.id,
                    experiment_name=experiment.name,
                    variant_id=variant.id,
                    variant_name=variant.name,
                    content=dict(variant.content),
                )
            )

        self._assigned = assigned
        return list(assigned)

    def _persist(self, visitor_id: str, experiment: Experiment, variant_id: str) -> None:
        try:
            self._store.save(visitor_id, experiment.id, variant_id)
        except Exception:
            # Content still renders; the next page load may re-bucket.
            logger.warning(
                "Could not persist assignment experiment=%s variant=%s",
                experiment.id,
                variant_id,
                exc_info=True,
            )

    def get_variant(self, experiment_name: str) -> AssignedVariant | None:
        for assignment in self._assigned:
            if assignment.experiment_name == experiment_name:
                return assignment
        return None

    def get_content(self, experiment_name: str, content_key: str, default_value: str) -> str:
        """Variant copy for *content_key*, or *default_value* when unavailable.

        Missing experiment, missing assignment, and missing or empty content
        all return the default.
        """
        assignment = self.get_variant(experiment_name)
        if assignment is None:
            return default_value
        return assignment.content.get(content_key) or default_value

    def track_conversion(self, experiment_name: str, conversion_type: str) -> bool:
        """Emit ``experiment_conversion`` for the visitor's variant.

        Returns:
            False (and emits nothing) when the experiment has no assignment.
        """
        assignment = self.get_variant(experiment_name)
        if assignment is None:
            logger.debug("Conversion %r ignored: no assignment for %s", conversion_type, experiment_name)
            return False
        self._analytics.track_event(
            EventType.EXPERIMENT_CONVERSION,
            {
                "experimentId": assignment.experiment_id,
                "variantId": assignment.variant_id,
                "conversionType": conversion_type,
            },
        )
        return True
