"""
Matching Orchestrator.

Responsibilities:
- Validate the invocation, prepare the query state and fan candidates out
  to worker threads.
- Isolate per-candidate numerical failures.
- Join all candidates, attach baselines and return the ranked top K.
- Re-rank externally supplied similarity results for pre-embedded queries.

Non-Responsibilities:
- No persistence beyond the injected baseline cache.
- No HTTP surface.

Invariant:
An invocation either returns a ranked list (possibly shorter than requested
when candidates failed) or raises a single MatchError. Identical inputs,
seeds and a populated baseline cache yield identical results.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Union

import numpy as np

from subsidymatch.config import MatchConfig
from subsidymatch.errors import (
    CancellationError,
    ComputeError,
    InputError,
    MatchError,
    UpstreamError,
)
from subsidymatch.logger import get_logger
from subsidymatch.normalize import compute_state_id
from subsidymatch.retry import CircuitBreaker
from subsidymatch.schema import (
    query_warnings,
    validate_candidate,
    validate_options,
    validate_query,
    validate_query_vector,
)

from .aggregation import CandidateStatistics, StatisticalAggregator
from .cancellation import CancelToken
from .candidate_selector import CandidateFilters, CandidateSource
from .coupling import CouplingModel, make_particle
from .ensemble import EnsembleScorer
from .features import FeatureEncoder
from .ranking import BaselineCache, BaselineLookup, Ranker, ScoredResult
from .seeding import derive_rng
from .similarity import SimilaritySource
from .state import EntityState, StatePreparer

logger = get_logger()

VECTOR_SEARCH_THRESHOLD = 0.5
COUPLING_BONUS = 0.2

# Per-candidate numerical failures; anything else is a bug and propagates
CANDIDATE_FAILURES = (ComputeError, np.linalg.LinAlgError, FloatingPointError)


def _finite_similarity(value: Any) -> Optional[float]:
    # json accepts NaN and Infinity literals
    if isinstance(value, bool):
        return None
    try:
        similarity = float(value)
    except (TypeError, ValueError):
        return None
    return similarity if math.isfinite(similarity) else None


@dataclass(frozen=True)
class MatchOptions:
    shots: int = 1000
    parallelism: int = 10
    mitigate_errors: bool = True
    seed: Optional[int] = None
    timeout: Optional[float] = None
    limit: int = 10

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "MatchOptions":
        """Accepts snake_case keys and the camelCase names used by API clients."""
        data = data or {}
        defaults = cls()
        return cls(
            shots=data.get("shots", data.get("measurementShots", defaults.shots)),
            parallelism=data.get("parallelism", data.get("parallelUniverses", defaults.parallelism)),
            mitigate_errors=data.get("mitigate_errors", data.get("errorMitigation", defaults.mitigate_errors)),
            seed=data.get("seed", defaults.seed),
            timeout=data.get("timeout", defaults.timeout),
            limit=data.get("limit", defaults.limit),
        )


@dataclass(frozen=True)
class VectorMatch:
    candidate_id: str
    score: float

    def to_dict(self) -> dict:
        return {"id": self.candidate_id, "score": self.score}


@dataclass(frozen=True)
class _ScoredCandidate:
    candidate_id: str
    stats: CandidateStatistics
    state_id: str


class MatchingEngine:
    """
    Entry point for matching and vector search.

    Collaborators are injected; the engine keeps no per-invocation state
    between calls. The circuit breaker guarding the baseline cache is the
    only thing shared across invocations.
    """

    def __init__(
        self,
        config: Optional[MatchConfig] = None,
        cache: Optional[BaselineCache] = None,
        candidate_source: Optional[CandidateSource] = None,
        similarity_source: Optional[SimilaritySource] = None,
    ):
        self.config = config or MatchConfig()
        self.cache = cache
        self.candidate_source = candidate_source
        self.similarity_source = similarity_source

        self.encoder = FeatureEncoder()
        self.preparer = StatePreparer(self.config.dimension)
        self.coupler = CouplingModel()
        self.breaker = CircuitBreaker(
            failure_threshold=self.config.breaker_threshold,
            recovery_timeout=self.config.breaker_recovery,
        )

    def default_options(self) -> MatchOptions:
        return MatchOptions(
            shots=self.config.shots,
            parallelism=self.config.ensemble_size,
            limit=self.config.top_k,
        )

    # Matching

    async def match(
        self,
        query: Any,
        candidates: Optional[Iterable[Mapping[str, Any]]],
        options: Optional[MatchOptions] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> List[ScoredResult]:
        options = options or self.default_options()
        self._check_query(query)
        self._check_options(options)

        token = CancelToken(options.timeout, parent=cancel_token)
        seed = self.config.seed if options.seed is None else options.seed
        started = time.monotonic()
        logger.record_invocation()

        candidates = list(candidates or [])
        if not candidates:
            logger.info("No candidates to match", query_id=query.get("id"))
            return []

        token.raise_if_cancelled()
        query_state = await asyncio.to_thread(self._prepare_query, query, seed)
        logger.debug(
            "Prepared query state",
            query_id=query.get("id"),
            dimension=query_state.dimension,
            coherence=round(query_state.coherence, 6),
        )

        scorer = EnsembleScorer(self.config.dimension, self.config.hidden_layers, seed)
        aggregator = StatisticalAggregator(
            mitigate_errors=options.mitigate_errors,
            flip_rate=self.config.bit_flip_rate,
        )
        workers = asyncio.Semaphore(self.config.max_workers)

        async def run(record):
            async with workers:
                token.raise_if_cancelled()
                return await asyncio.to_thread(
                    self._score_candidate, record, query_state, scorer, aggregator, options, seed, token
                )

        outcomes = await self._join([run(record) for record in candidates], token)
        scored = [outcome for outcome in outcomes if outcome is not None]

        lookup = BaselineLookup(
            self.cache,
            ttl=self.config.baseline_ttl,
            score_range=self.config.baseline_range,
            seed=seed,
            pool_size=self.config.cache_pool_size,
            breaker=self.breaker,
        )
        ranker = Ranker(self.config.dimension, limit=options.limit)
        results = await self._within_deadline(
            ranker.rank(
                [(s.candidate_id, s.stats) for s in scored],
                lookup,
                state_ids={s.candidate_id: s.state_id for s in scored},
                cancel_token=token,
            ),
            token,
        )

        logger.info(
            "Matching complete",
            query_id=query.get("id"),
            candidates=len(candidates),
            scored=len(scored),
            dropped=len(candidates) - len(scored),
            returned=len(results),
            elapsed_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return results

    async def match_from_source(
        self,
        query: Any,
        filters: Union[CandidateFilters, Mapping[str, Any], None] = None,
        options: Optional[MatchOptions] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> List[ScoredResult]:
        """Fetch candidates from the injected source, then match."""
        self._check_query(query)
        if self.candidate_source is None:
            raise UpstreamError("No candidate source configured")
        if not isinstance(filters, CandidateFilters):
            filters = CandidateFilters.from_dict(filters)

        try:
            candidates = await asyncio.to_thread(self.candidate_source.fetch, filters)
        except MatchError:
            raise
        except Exception as e:
            logger.error("Candidate source failed", error=str(e), error_type=type(e).__name__)
            raise UpstreamError(f"Candidate source failed: {e}") from e

        logger.debug("Fetched candidates", count=len(candidates))
        return await self.match(query, candidates, options, cancel_token)

    def _prepare_query(self, query: Mapping[str, Any], seed: int) -> EntityState:
        for warning in query_warnings(query):
            logger.warning(warning, query_id=query.get("id"))
        return self.preparer.prepare(self.encoder.encode(query), seed)

    def _score_candidate(
        self,
        record: Mapping[str, Any],
        query_state: EntityState,
        scorer: EnsembleScorer,
        aggregator: StatisticalAggregator,
        options: MatchOptions,
        seed: int,
        token: CancelToken,
    ) -> Optional[_ScoredCandidate]:
        errors = validate_candidate(record)
        if errors:
            logger.record_candidate_failure("InvalidCandidate")
            logger.warning("Skipping invalid candidate", errors=errors)
            return None

        candidate_id = str(record["id"])
        try:
            token.raise_if_cancelled()
            particle = make_particle(candidate_id, self.encoder.encode(record))
            coupling = self.coupler.couple(query_state, particle)
            samples = scorer.score_ensemble(
                coupling, options.parallelism, options.shots, token,
                max_workers=self.config.member_workers,
            )
            stats = aggregator.aggregate(samples, rng=derive_rng(seed, "flip", candidate_id))
        except CANDIDATE_FAILURES as e:
            logger.record_candidate_failure(type(e).__name__)
            logger.warning("Candidate dropped", candidate_id=candidate_id, error=str(e))
            return None

        logger.record_candidate_scored()
        logger.debug(
            "Scored candidate",
            candidate_id=candidate_id,
            coupling=round(coupling.strength, 6),
            probability=stats.probability,
        )
        return _ScoredCandidate(candidate_id, stats, compute_state_id(candidate_id, particle.state))

    @staticmethod
    async def _within_deadline(awaitable, token: CancelToken):
        try:
            return await asyncio.wait_for(awaitable, timeout=token.remaining())
        except asyncio.TimeoutError as e:
            token.cancel()
            raise CancellationError("Invocation exceeded its deadline") from e

    async def _join(self, coroutines, token: CancelToken) -> list:
        """
        Barrier over per-candidate work; any terminal error abandons the rest.

        ``token`` must be owned by the invocation: it is cancelled to stop
        worker threads that are still running.
        """
        tasks = [asyncio.ensure_future(c) for c in coroutines]
        try:
            return await self._within_deadline(asyncio.gather(*tasks), token)
        finally:
            if not all(task.done() for task in tasks):
                token.cancel()
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

    # Vector search

    async def vector_search(
        self,
        query_vector,
        k: int = 10,
        cancel_token: Optional[CancelToken] = None,
    ) -> List[VectorMatch]:
        """
        Re-rank similarity results for a pre-embedded query.

        Asks the similarity source for 2k results, then scores each as
        ``similarity * (1 + coupling_strength * 0.2)``.
        """
        errors = validate_query_vector(query_vector)
        if not isinstance(k, int) or isinstance(k, bool) or k < 1:
            errors.append("k must be a positive integer")
        if errors:
            raise InputError("; ".join(errors))
        if self.similarity_source is None:
            raise UpstreamError("No similarity source configured")

        token = CancelToken(parent=cancel_token)
        query = np.asarray(query_vector, dtype=np.float64).reshape(-1)
        query.setflags(write=False)

        try:
            rows = await asyncio.to_thread(
                self.similarity_source.search, query, k * 2, VECTOR_SEARCH_THRESHOLD
            )
        except MatchError:
            raise
        except Exception as e:
            logger.error("Similarity source failed", error=str(e), error_type=type(e).__name__)
            raise UpstreamError(f"Similarity source failed: {e}") from e

        workers = asyncio.Semaphore(self.config.max_workers)

        async def run(row):
            async with workers:
                token.raise_if_cancelled()
                return await asyncio.to_thread(self._rerank_row, query, row)

        rescored = await self._join([run(row) for row in rows or []], token)
        matches = sorted(
            (m for m in rescored if m is not None),
            key=lambda m: (-m.score, m.candidate_id),
        )
        logger.debug("Vector search complete", requested=k, received=len(rows or []), returned=min(k, len(matches)))
        return matches[:k]

    def _rerank_row(self, query: np.ndarray, row: Mapping[str, Any]) -> Optional[VectorMatch]:
        if validate_candidate(row):
            logger.warning("Skipping similarity row without id")
            return None
        candidate_id = str(row["id"])
        similarity = _finite_similarity(row.get("similarity"))
        if similarity is None:
            logger.warning(
                "Skipping similarity row with bad score",
                candidate_id=candidate_id,
                similarity=repr(row.get("similarity")),
            )
            return None

        try:
            particle = make_particle(candidate_id, self.encoder.encode(row))
            strength = self.coupler.couple(query, particle).strength
        except CANDIDATE_FAILURES as e:
            logger.record_candidate_failure(type(e).__name__)
            logger.warning("Similarity row dropped", candidate_id=candidate_id, error=str(e))
            return None

        return VectorMatch(candidate_id=candidate_id, score=similarity * (1.0 + strength * COUPLING_BONUS))

    # Validation

    @staticmethod
    def _check_query(query: Any) -> None:
        errors = validate_query(query)
        if errors:
            raise InputError("; ".join(errors))

    @staticmethod
    def _check_options(options: MatchOptions) -> None:
        errors = validate_options(options.shots, options.parallelism, options.limit, options.timeout)
        if options.seed is not None and (not isinstance(options.seed, int) or options.seed < 0):
            errors.append("Option 'seed' must be a non-negative integer")
        if errors:
            raise InputError("; ".join(errors))
