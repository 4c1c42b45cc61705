"""Deterministic weighted variant selection.

Bucketing hashes ``"{visitor_id}-{experiment_id}"`` with the 31-multiplier
polynomial string hash, wrapped to signed 32 bits and made non-negative,
then walks the variants in declared order until the cumulative weight
exceeds ``hash % total_weight``. The recurrence runs over UTF-16 code
units so ids hash to the same bucket as the browser client that wrote
existing assignments.

This guarantees:
- Consistency: same visitor, experiment and variant list always give the same variant
- Reproducibility: assignments can be recomputed anywhere from the inputs
- Variant order matters: reordering variants moves visitors between buckets
"""

import logging
from collections.abc import Sequence

from pagelab.experiments.models import Variant

logger = logging.getLogger(__name__)

_UINT32 = 0xFFFFFFFF


def hash_code(value: str) -> int:
    """Return ``abs(h)`` where ``h = h * 31 + unit`` wraps at signed 32 bits."""
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & _UINT32
    if h & 0x80000000:
        h -= 1 << 32
    return abs(h)


def bucket_seed(visitor_id: str, experiment_id: int | str) -> int:
    """Hash seed for a (visitor, experiment) pair."""
    return hash_code(f"{visitor_id}-{experiment_id}")


def select_variant(
    variants: Sequence[Variant],
    visitor_id: str,
    experiment_id: int | str,
) -> Variant:
    """Pick a variant for *visitor_id* by weighted hash bucketing.

    Args:
        variants: Non-empty, ordered variant list.
        visitor_id: Opaque visitor token.
        experiment_id: The experiment's stable id.

    Returns:
        The selected Variant. Falls back to the first variant when the
        total weight is not positive.

    Raises:
        ValueError: If *variants* is empty.
    """
    if not variants:
        raise ValueError("Cannot select from an empty variant list")

    total_weight = sum(v.weight for v in variants)
    if total_weight <= 0:
        logger.warning(
            "Experiment %s has non-positive total weight %s; using first variant",
            experiment_id,
            total_weight,
        )
        return variants[0]

    seed = bucket_seed(visitor_id, experiment_id)
    selection = seed % total_weight

    cumulative = 0.0
    for variant in variants:
        cumulative += variant.weight
        if selection < cumulative:
            logger.debug(
                "AB assignment: experiment=%s visitor=%s selection=%s variant=%s",
                experiment_id,
                visitor_id[:8],
                selection,
                variant.id,
            )
            return variant

    # Unreachable while total_weight > 0: indicates a weight computation bug.
    logger.error(
        "Bucketing walk found no variant: experiment=%s selection=%s total=%s",
        experiment_id,
        selection,
        total_weight,
    )
    return variants[0]
