"""
Ranking.

Responsibilities:
- Attach a classical baseline score to every surviving candidate, reading
  and lazily populating the shared baseline cache.
- Order candidates by probability and cut to the top K.

Non-Responsibilities:
- No scoring or sampling.
- No candidate selection.

Invariant:
Output is sorted by probability descending with candidate id ascending on
ties, and never exceeds the requested limit. A cache outage never aborts
ranking.
"""

import asyncio
import math
from dataclasses import asdict, dataclass
from typing import Mapping, Optional, Protocol, Sequence, Tuple

from subsidymatch.logger import get_logger
from subsidymatch.retry import CircuitBreaker, CircuitOpenError

from .aggregation import CandidateStatistics
from .cancellation import CancelToken
from .seeding import derive_rng

logger = get_logger()


class BaselineCache(Protocol):
    def get(self, key: str) -> Optional[float]: ...

    def set(self, key: str, value: float, ttl: int) -> None: ...


@dataclass(frozen=True)
class ScoredResult:
    candidate_id: str
    probability: float
    phase: float
    dispersion: float
    collapse_state: str
    advantage: float
    classical_score: float

    def to_dict(self) -> dict:
        return asdict(self)


def advantage_multiplier(dimension: int) -> float:
    """D / log2(D). Identical for every candidate of a configuration; reporting only."""
    return dimension / math.log2(dimension)


def baseline_key(state_id: str) -> str:
    return f"classical:{state_id}"


def order_results(results: Sequence[ScoredResult], limit: int) -> list:
    return sorted(results, key=lambda r: (-r.probability, r.candidate_id))[:limit]


class BaselineLookup:
    """
    Best-effort access to the classical baseline cache.

    Round trips run in worker threads, at most ``pool_size`` at a time. Any
    cache failure is logged and answered with a freshly generated baseline.
    """

    def __init__(
        self,
        cache: Optional[BaselineCache],
        ttl: int = 3600,
        score_range: Tuple[float, float] = (0.2, 0.9),
        seed: int = 0,
        pool_size: int = 8,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.cache = cache
        self.ttl = ttl
        self.score_range = score_range
        self.seed = seed
        self.breaker = breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=30.0)
        self._semaphore = asyncio.Semaphore(pool_size)

    def fresh_score(self, key: str) -> float:
        low, high = self.score_range
        return float(derive_rng(self.seed, "baseline", key).uniform(low, high))

    async def score_for(self, key: str) -> float:
        cached = await self._get(key)
        if cached is not None:
            logger.record_cache_hit()
            return cached

        logger.record_cache_miss()
        score = self.fresh_score(key)
        await self._set(key, score)
        return score

    async def _get(self, key: str) -> Optional[float]:
        if self.cache is None:
            return None
        try:
            async with self._semaphore:
                value = await asyncio.to_thread(self.breaker.call, self.cache.get, key)
        except CircuitOpenError:
            return None
        except Exception as e:
            logger.record_cache_error(type(e).__name__)
            logger.warning("Baseline cache read failed", key=key, error=str(e))
            return None

        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed baseline cache entry", key=key, value=repr(value))
            return None

    async def _set(self, key: str, score: float) -> None:
        if self.cache is None:
            return
        try:
            async with self._semaphore:
                await asyncio.to_thread(self.breaker.call, self.cache.set, key, score, self.ttl)
        except CircuitOpenError:
            return
        except Exception as e:
            logger.record_cache_error(type(e).__name__)
            logger.warning("Baseline cache write failed", key=key, error=str(e))


class Ranker:
    def __init__(self, dimension: int, limit: int = 10):
        self.dimension = dimension
        self.limit = limit
        self.multiplier = advantage_multiplier(dimension)

    def build_result(
        self, candidate_id: str, stats: CandidateStatistics, classical_score: float
    ) -> ScoredResult:
        return ScoredResult(
            candidate_id=candidate_id,
            probability=stats.probability,
            phase=stats.phase,
            dispersion=stats.dispersion,
            collapse_state=stats.collapse_state,
            advantage=self.multiplier * stats.probability,
            classical_score=classical_score,
        )

    async def rank(
        self,
        candidates: Sequence[Tuple[str, CandidateStatistics]],
        lookup: BaselineLookup,
        limit: Optional[int] = None,
        state_ids: Optional[Mapping[str, str]] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> list:
        limit = self.limit if limit is None else limit
        state_ids = state_ids or {}

        async def score(candidate_id: str, stats: CandidateStatistics) -> ScoredResult:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            key = baseline_key(state_ids.get(candidate_id, candidate_id))
            classical = await lookup.score_for(key)
            return self.build_result(candidate_id, stats, classical)

        results = await asyncio.gather(*(score(cid, stats) for cid, stats in candidates))
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return order_results(results, limit)
