"""Experiment definitions, deterministic bucketing, and variant assignment.

Public API:

    from pagelab.experiments import (
        AssignedVariant,
        AssignmentEngine,
        AssignmentStore,
        Experiment,
        ExperimentCatalog,
        Variant,
        hash_code,
        select_variant,
    )
"""

from pagelab.experiments.bucketing import hash_code, select_variant
from pagelab.experiments.catalog import ExperimentCatalog
from pagelab.experiments.engine import AssignmentEngine
from pagelab.experiments.models import AssignedVariant, Experiment, Variant
from pagelab.experiments.store import AssignmentStore

__all__ = [
    "AssignedVariant",
    "AssignmentEngine",
    "AssignmentStore",
    "Experiment",
    "ExperimentCatalog",
    "Variant",
    "hash_code",
    "select_variant",
]
