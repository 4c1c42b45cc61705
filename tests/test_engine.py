"""Tests for the assignment engine and its durable store."""

import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from pagelab.experiments.engine import AssignmentEngine
from pagelab.experiments.models import Experiment, Variant
from pagelab.experiments.store import AssignmentStore
from pagelab.telemetry.pipeline import TelemetryPipeline
from pagelab.telemetry.trackers import Analytics

KEY = "pagelab_ab_variants"


@pytest.fixture
def pipeline(sink):
    return TelemetryPipeline(sink, flush_delay=60)


@pytest.fixture
def analytics(pipeline):
    return Analytics(pipeline, visitor_id="v1", session_id="s1", page_url="https://example.com/")


@pytest.fixture
def store(backend):
    return AssignmentStore(backend, KEY)


@pytest.fixture
def engine(store, analytics):
    return AssignmentEngine(store, analytics)


def _queued(pipeline):
    return list(pipeline._queue)


class TestAssignmentStore:
    def test_load_missing_is_empty(self, store):
        assert store.load("v1") == {}

    def test_save_merges_entries(self, store, backend):
        store.save("v1", 10, "A")
        store.save("v1", 11, "B")
        assert store.load("v1") == {"10": "A", "11": "B"}
        assert json.loads(backend.get(f"{KEY}:v1")) == {"10": "A", "11": "B"}

    def test_visitors_are_isolated(self, store):
        store.save("v1", 10, "A")
        assert store.load("v2") == {}

    def test_corrupt_json_reads_empty(self, store, backend):
        backend.set(f"{KEY}:v1", "{not json")
        assert store.load("v1") == {}

    def test_non_object_json_reads_empty(self, store, backend):
        backend.set(f"{KEY}:v1", "[1, 2]")
        assert store.load("v1") == {}

    def test_clear(self, store):
        store.save("v1", 10, "A")
        store.clear("v1")
        assert store.load("v1") == {}


class TestResolveAssignments:
    def test_new_assignment_persists_and_emits_view(self, engine, store, pipeline, hero_experiment):
        assigned = engine.resolve_assignments("v1", [hero_experiment])

        assert [a.variant_id for a in assigned] == ["A"]
        assert assigned[0].content == {"headline": "Old"}
        assert store.load("v1") == {"10": "A"}

        events = _queued(pipeline)
        assert len(events) == 1
        assert events[0].event_type == "experiment_view"
        assert events[0].event_data == {"experimentId": 10, "variantId": "A"}
        assert events[0].visitor_id == "v1"

    def test_idempotent_without_second_view(self, engine, pipeline, hero_experiment):
        first = engine.resolve_assignments("v1", [hero_experiment])
        second = engine.resolve_assignments("v1", [hero_experiment])

        assert first == second
        views = [e for e in _queued(pipeline) if e.event_type == "experiment_view"]
        assert len(views) == 1

    def test_stored_assignment_wins_over_hash(self, engine, store, pipeline, hero_experiment):
        store.save("v1", 10, "B")
        assigned = engine.resolve_assignments("v1", [hero_experiment])
        assert assigned[0].variant_id == "B"
        assert _queued(pipeline) == []

    def test_stored_assignment_survives_reordering(self, engine, hero_experiment):
        engine.resolve_assignments("v1", [hero_experiment])
        reordered = hero_experiment.model_copy(
            update={"variants": list(reversed(hero_experiment.variants))}
        )
        assigned = engine.resolve_assignments("v1", [reordered])
        assert assigned[0].variant_id == "A"
        assert engine.get_content("hero_copy", "headline", "Default") == "Old"

    def test_stale_stored_variant_is_rebucketed(self, engine, store, pipeline, hero_experiment):
        store.save("v1", 10, "Z")
        assigned = engine.resolve_assignments("v1", [hero_experiment])
        assert assigned[0].variant_id == "A"
        assert store.load("v1") == {"10": "A"}
        assert len(_queued(pipeline)) == 1

    def test_one_assignment_per_experiment_in_order(self, engine, hero_experiment):
        other = Experiment(
            id=1,
            name="pricing",
            variants=[Variant(id="A", name="a", weight=50), Variant(id="B", name="b", weight=50)],
        )
        assigned = engine.resolve_assignments("v1", [hero_experiment, other])
        assert [(a.experiment_name, a.variant_id) for a in assigned] == [
            ("hero_copy", "A"),
            ("pricing", "B"),
        ]

    def test_inactive_experiment_skipped(self, engine, hero_experiment):
        inactive = hero_experiment.model_copy(update={"is_active": False})
        assert engine.resolve_assignments("v1", [inactive]) == []

    def test_unassignable_experiments_skipped(self, engine, pipeline, caplog):
        no_variants = Experiment(id=2, name="empty", variants=[])
        zero_weight = Experiment(id=3, name="zero", variants=[Variant(id="A", name="a", weight=0)])
        with caplog.at_level(logging.WARNING, logger="pagelab.experiments.engine"):
            assert engine.resolve_assignments("v1", [no_variants, zero_weight]) == []
        assert "no positively weighted variants" in caplog.text
        assert _queued(pipeline) == []

    def test_scheduling_window(self, engine, hero_experiment):
        now = datetime(2025, 6, 1, tzinfo=timezone.utc)
        future = hero_experiment.model_copy(update={"start_date": now + timedelta(days=1)})
        ended = hero_experiment.model_copy(update={"end_date": now - timedelta(days=1)})
        running = hero_experiment.model_copy(
            update={"start_date": now - timedelta(days=1), "end_date": now + timedelta(days=1)}
        )
        assert engine.resolve_assignments("v1", [future], now=now) == []
        assert engine.resolve_assignments("v1", [ended], now=now) == []
        assert len(engine.resolve_assignments("v1", [running], now=now)) == 1

    def test_replaces_previous_assignment_list(self, engine, hero_experiment):
        engine.resolve_assignments("v1", [hero_experiment])
        engine.resolve_assignments("v1", [])
        assert engine.assigned_variants == []


class TestStorageFailures:
    def _failing_store(self, *, read=None, write=None):
        store = MagicMock(spec=AssignmentStore)
        store.load.side_effect = read
        store.load.return_value = {}
        store.save.side_effect = write
        return store

    def test_unreadable_store_resolves_fresh(self, analytics, hero_experiment):
        engine = AssignmentEngine(self._failing_store(read=OSError("quota")), analytics)
        assigned = engine.resolve_assignments("v1", [hero_experiment])
        assert assigned[0].variant_id == "A"

    def test_unwritable_store_still_assigns(self, analytics, pipeline, hero_experiment, caplog):
        engine = AssignmentEngine(self._failing_store(write=OSError("quota")), analytics)
        with caplog.at_level(logging.WARNING, logger="pagelab.experiments.engine"):
            assigned = engine.resolve_assignments("v1", [hero_experiment])
        assert assigned[0].variant_id == "A"
        assert engine.get_content("hero_copy", "headline", "Default") == "Old"
        assert "Could not persist assignment" in caplog.text
        assert len(_queued(pipeline)) == 1

    def test_unwritable_store_rebuckets_to_same_variant(self, analytics, hero_experiment):
        engine = AssignmentEngine(self._failing_store(write=OSError("quota")), analytics)
        first = engine.resolve_assignments("v1", [hero_experiment])
        second = engine.resolve_assignments("v1", [hero_experiment])
        assert first[0].variant_id == second[0].variant_id


class TestContentAndConversion:
    def test_get_variant(self, engine, hero_experiment):
        engine.resolve_assignments("v1", [hero_experiment])
        assert engine.get_variant("hero_copy").variant_name == "Control"
        assert engine.get_variant("missing") is None

    def test_get_content_defaults(self, engine, hero_experiment):
        assert engine.get_content("hero_copy", "headline", "Default") == "Default"
        engine.resolve_assignments("v1", [hero_experiment])
        assert engine.get_content("hero_copy", "subheadline", "Sub") == "Sub"
        assert engine.get_content("unknown", "headline", "Default") == "Default"

    def test_empty_content_falls_back(self, engine):
        experiment = Experiment(
            id=5, name="blank", variants=[Variant(id="A", name="a", weight=1, content={"headline": ""})]
        )
        engine.resolve_assignments("v1", [experiment])
        assert engine.get_content("blank", "headline", "Default") == "Default"

    def test_track_conversion_emits_event(self, engine, pipeline, hero_experiment):
        engine.resolve_assignments("v1", [hero_experiment])
        assert engine.track_conversion("hero_copy", "cta_click") is True

        conversion = _queued(pipeline)[-1]
        assert conversion.event_type == "experiment_conversion"
        assert conversion.event_data == {
            "experimentId": 10,
            "variantId": "A",
            "conversionType": "cta_click",
        }

    def test_track_conversion_without_assignment_is_noop(self, engine, pipeline):
        assert engine.track_conversion("hero_copy", "cta_click") is False
        assert _queued(pipeline) == []
