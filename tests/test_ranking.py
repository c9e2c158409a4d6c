"""
Tests for ranking and the classical baseline lookup.
"""

import math

import pytest

from subsidymatch.retry import CircuitBreaker
from pipelines.matching.aggregation import CandidateStatistics
from pipelines.matching.ranking import (
    BaselineLookup,
    Ranker,
    ScoredResult,
    advantage_multiplier,
    baseline_key,
    order_results,
)
from storage.repositories.baselines import InMemoryBaselineCache


class BrokenCache:
    """Cache whose every round trip fails."""

    def __init__(self):
        self.calls = 0

    def get(self, key):
        self.calls += 1
        raise ConnectionError("cache unreachable")

    def set(self, key, value, ttl):
        self.calls += 1
        raise ConnectionError("cache unreachable")


def _stats(probability, outcome=0):
    return CandidateStatistics(
        probability=probability,
        phase=0.0,
        dispersion=0.1,
        collapse_state=format(outcome, "08b"),
    )


def _result(candidate_id, probability):
    return ScoredResult(candidate_id, probability, 0.0, 0.0, "00000000", 0.0, 0.5)


class TestOrdering:
    """Test result ordering and truncation."""

    def test_sorted_by_probability_descending(self):
        results = [_result("a", 0.1), _result("b", 0.9), _result("c", 0.5)]
        assert [r.candidate_id for r in order_results(results, 10)] == ["b", "c", "a"]

    def test_ties_break_on_id(self):
        results = [_result("z", 0.5), _result("a", 0.5), _result("m", 0.5)]
        assert [r.candidate_id for r in order_results(results, 10)] == ["a", "m", "z"]

    def test_limit(self):
        results = [_result(str(i), i / 10) for i in range(6)]
        assert len(order_results(results, 3)) == 3

    def test_advantage_multiplier(self):
        assert advantage_multiplier(1024) == pytest.approx(102.4)

    def test_baseline_key(self):
        assert baseline_key("state_abc") == "classical:state_abc"

    def test_to_dict(self):
        data = _result("a", 0.5).to_dict()
        assert data["candidate_id"] == "a"
        assert set(data) == {
            "candidate_id", "probability", "phase", "dispersion",
            "collapse_state", "advantage", "classical_score",
        }


class TestBaselineLookup:
    """Test best-effort baseline cache access."""

    def test_fresh_score_in_range_and_stable(self):
        lookup = BaselineLookup(None, seed=3)
        score = lookup.fresh_score("classical:x")
        assert 0.2 <= score <= 0.9
        assert lookup.fresh_score("classical:x") == score

    @pytest.mark.asyncio
    async def test_miss_populates_cache(self):
        cache = InMemoryBaselineCache()
        lookup = BaselineLookup(cache, seed=1)

        score = await lookup.score_for("classical:a")

        assert cache.get("classical:a") == score

    @pytest.mark.asyncio
    async def test_hit_returns_cached_value(self):
        cache = InMemoryBaselineCache()
        cache.set("classical:a", 0.42, ttl=60)
        lookup = BaselineLookup(cache)

        assert await lookup.score_for("classical:a") == 0.42

    @pytest.mark.asyncio
    async def test_malformed_entry_is_a_miss(self):
        class OddCache(InMemoryBaselineCache):
            def get(self, key):
                return "not-a-number"

        lookup = BaselineLookup(OddCache())
        score = await lookup.score_for("classical:a")
        assert 0.2 <= score <= 0.9

    @pytest.mark.asyncio
    async def test_broken_cache_falls_back(self):
        lookup = BaselineLookup(BrokenCache())
        score = await lookup.score_for("classical:a")
        assert 0.2 <= score <= 0.9

    @pytest.mark.asyncio
    async def test_open_circuit_skips_cache(self):
        cache = BrokenCache()
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        lookup = BaselineLookup(cache, breaker=breaker)

        for i in range(5):
            await lookup.score_for(f"classical:{i}")

        assert breaker.state == CircuitBreaker.OPEN
        assert cache.calls == 2


class TestRanker:
    """Test ranking with baseline attachment."""

    @pytest.mark.asyncio
    async def test_rank_orders_and_attaches_baselines(self):
        ranker = Ranker(dimension=32, limit=10)
        lookup = BaselineLookup(InMemoryBaselineCache(), seed=0)
        candidates = [("a", _stats(0.2)), ("b", _stats(0.7)), ("c", _stats(0.4))]

        results = await ranker.rank(candidates, lookup)

        assert [r.candidate_id for r in results] == ["b", "c", "a"]
        for result in results:
            assert 0.2 <= result.classical_score <= 0.9
            assert result.advantage == pytest.approx(32 / math.log2(32) * result.probability)

    @pytest.mark.asyncio
    async def test_rank_respects_limit(self):
        ranker = Ranker(dimension=32, limit=2)
        lookup = BaselineLookup(None)
        candidates = [(str(i), _stats(i / 10)) for i in range(5)]

        results = await ranker.rank(candidates, lookup)

        assert [r.candidate_id for r in results] == ["4", "3"]

    @pytest.mark.asyncio
    async def test_rank_survives_cache_outage(self):
        ranker = Ranker(dimension=32)
        lookup = BaselineLookup(BrokenCache())
        candidates = [("a", _stats(0.3)), ("b", _stats(0.6))]

        results = await ranker.rank(candidates, lookup)

        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_state_ids_key_the_cache(self):
        cache = InMemoryBaselineCache()
        lookup = BaselineLookup(cache)

        await Ranker(dimension=32).rank([("a", _stats(0.3))], lookup, state_ids={"a": "state_1"})

        assert cache.get("classical:state_1") is not None
        assert cache.get("classical:a") is None

    @pytest.mark.asyncio
    async def test_empty_input(self):
        assert await Ranker(dimension=32).rank([], BaselineLookup(None)) == []
