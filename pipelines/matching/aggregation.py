"""
Statistical Aggregation.

Responsibilities:
- Condense a candidate's pooled shot outcomes into probability, phase,
  dispersion and a collapse-state label.
- Optionally apply the historical single-bit flip step.

Non-Responsibilities:
- No sampling.
- No ranking.

Invariant:
probability is in [0, 1] and is 1.0 when every shot agrees; dispersion is
never negative.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Union

import numpy as np

from subsidymatch.errors import ComputeError

from .ensemble import EnsembleSample

COLLAPSE_BITS = 8


@dataclass(frozen=True)
class CandidateStatistics:
    probability: float
    phase: float
    dispersion: float
    collapse_state: str


def pool_outcomes(samples: Iterable[Union[EnsembleSample, int]]) -> np.ndarray:
    """Flatten ensemble samples (or bare outcome indices) into one outcome array."""
    chunks = []
    loose = []
    for sample in samples:
        if isinstance(sample, EnsembleSample):
            chunks.append(np.asarray(sample.outcomes, dtype=np.int64))
        else:
            loose.append(int(sample))
    if loose:
        chunks.append(np.asarray(loose, dtype=np.int64))
    if not chunks:
        return np.zeros(0, dtype=np.int64)
    return np.concatenate(chunks)


def flip_bits(outcomes: np.ndarray, rate: float, rng: np.random.Generator) -> np.ndarray:
    """
    Toggle the lowest bit of each outcome with probability ``rate``.

    Kept for parity with the historical "error mitigation" step. This adds
    noise; it does not remove any.
    """
    flips = rng.random(outcomes.shape[0]) < rate
    return np.where(flips, outcomes ^ 1, outcomes)


def collapse_label(outcome: int) -> str:
    return format(int(outcome) % (1 << COLLAPSE_BITS), f"0{COLLAPSE_BITS}b")


class StatisticalAggregator:
    def __init__(self, mitigate_errors: bool = False, flip_rate: float = 0.01):
        self.mitigate_errors = mitigate_errors
        self.flip_rate = flip_rate

    def aggregate(self, samples, rng: Optional[np.random.Generator] = None) -> CandidateStatistics:
        outcomes = pool_outcomes(samples)
        if outcomes.shape[0] == 0:
            raise ComputeError("Cannot aggregate an empty sample set")
        if np.any(outcomes < 0):
            raise ComputeError("Outcome indices must be non-negative")

        if self.mitigate_errors and self.flip_rate > 0:
            if rng is None:
                raise ValueError("Bit-flip step requires a seeded generator")
            outcomes = flip_bits(outcomes, self.flip_rate, rng)

        values, counts = np.unique(outcomes, return_counts=True)
        # np.unique sorts values, so argmax picks the smallest outcome on ties
        mode_index = int(np.argmax(counts))
        mode = int(values[mode_index])
        total = int(outcomes.shape[0])
        distinct = int(values.shape[0])

        # A single distinct outcome has no spread
        dispersion = 0.0 if distinct == 1 else math.sqrt(distinct) / math.sqrt(total)

        return CandidateStatistics(
            probability=float(counts[mode_index]) / total,
            phase=(mode % 360) * math.pi / 180.0,
            dispersion=dispersion,
            collapse_state=collapse_label(mode),
        )
