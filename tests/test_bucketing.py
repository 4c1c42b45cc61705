"""Tests for deterministic weighted bucketing."""

import logging
import random

import pytest

from pagelab.experiments.bucketing import bucket_seed, hash_code, select_variant
from pagelab.experiments.models import Variant


def _variants(*weights):
    return [Variant(id=chr(ord("A") + i), name=f"v{i}", weight=w) for i, w in enumerate(weights)]


class TestHashCode:
    def test_empty_string_is_zero(self):
        assert hash_code("") == 0

    def test_matches_known_values(self):
        assert hash_code("a") == 97
        assert hash_code("hello") == 99162322

    def test_negative_wrap_is_made_positive(self):
        # Signed 32-bit result is -862545276.
        assert hash_code("Hello World") == 862545276

    def test_hashes_utf16_code_units(self):
        assert hash_code("é") == 233
        # Astral characters contribute their surrogate pair.
        assert hash_code("\U0001F600") == 0xD83D * 31 + 0xDE00

    def test_bucket_seed_joins_with_dash(self):
        assert bucket_seed("v1", 10) == hash_code("v1-10") == 110480049
        assert bucket_seed("v1", "10") == bucket_seed("v1", 10)


class TestSelectVariant:
    def test_deterministic_across_calls(self):
        variants = _variants(50, 50)
        first = select_variant(variants, "v_1700000000000_abc123xyz", 7)
        for _ in range(1000):
            assert select_variant(variants, "v_1700000000000_abc123xyz", 7) is first

    def test_known_assignments(self):
        variants = _variants(50, 50)
        # 110480049 % 100 = 49 -> first bucket
        assert select_variant(variants, "v1", 10).id == "A"
        # hash("v1-1") = 3563871, % 100 = 71 -> second bucket
        assert select_variant(variants, "v1", 1).id == "B"

    def test_selection_depends_on_variant_order(self):
        variants = _variants(50, 50)
        assert select_variant(list(reversed(variants)), "v1", 10).id == "B"

    def test_single_variant_always_selected(self):
        only = _variants(1)
        assert all(select_variant(only, f"visitor-{i}", 3) is only[0] for i in range(50))

    def test_zero_weight_variant_never_selected(self):
        variants = _variants(0, 100)
        assert all(select_variant(variants, f"visitor-{i}", 3).id == "B" for i in range(200))

    def test_fractional_weights(self):
        variants = _variants(0.5, 0.5)
        picked = {select_variant(variants, f"visitor-{i}", 4).id for i in range(200)}
        assert picked <= {"A", "B"}

    def test_empty_list_raises(self):
        with pytest.raises(ValueError, match="empty"):
            select_variant([], "v1", 1)

    def test_non_positive_total_falls_back_to_first(self, caplog):
        variants = _variants(0, 0)
        with caplog.at_level(logging.WARNING, logger="pagelab.experiments.bucketing"):
            assert select_variant(variants, "v1", 1).id == "A"
        assert "non-positive total weight" in caplog.text


class TestDistribution:
    def test_weighted_split_converges(self):
        """70/30 weights land within three points of target over 100k visitors."""
        rng = random.Random(20240501)
        alphabet = "0123456789abcdefghijklmnopqrstuvwxyz"
        variants = _variants(70, 30)
        n = 100_000
        hits = 0
        for _ in range(n):
            visitor = "v_%d_%s" % (
                rng.randrange(1_600_000_000_000, 1_800_000_000_000),
                "".join(rng.choice(alphabet) for _ in range(9)),
            )
            if select_variant(variants, visitor, 42).id == "A":
                hits += 1
        share = hits / n * 100
        assert 67 <= share <= 73
