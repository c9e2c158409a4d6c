"""
Query/Candidate Coupling.

Responsibilities:
- Wrap each candidate's features as a normalized particle with observables.
- Join the query state with a candidate state and measure how strongly they
  couple (entropy over the joint density spectrum).

Non-Responsibilities:
- No ensemble scoring.
- No ranking.

Invariant:
Every (query, candidate) pair is coupled independently; strength >= 0 and a
zero joint vector couples with strength 0.
"""

import math
from dataclasses import dataclass
from typing import Union

import numpy as np

from subsidymatch.errors import ComputeError

from .state import EntityState

EIGEN_THRESHOLD = 1e-10


@dataclass(frozen=True)
class Observables:
    energy: float
    momentum: float
    spin: float


@dataclass(frozen=True)
class CandidateParticle:
    candidate_id: str
    state: np.ndarray
    observables: Observables


@dataclass(frozen=True)
class CouplingResult:
    candidate_id: str
    joint: np.ndarray
    strength: float


def make_particle(candidate_id: str, features) -> CandidateParticle:
    """Normalize a candidate's features into a particle. Zero vectors cannot be normalized."""
    raw = np.asarray(features, dtype=np.float64).reshape(-1)
    norm = np.linalg.norm(raw)
    if norm == 0 or not np.isfinite(norm):
        raise ComputeError(f"Candidate {candidate_id!r} has a degenerate feature vector")

    state = raw / norm
    state.setflags(write=False)

    # <s|H|s> with H = I
    energy = float(state @ np.eye(state.shape[0]) @ state)
    # d(sum s)/ds is all ones
    momentum = float(np.linalg.norm(np.ones_like(state)))
    spin = 0.5 if state[::2].sum() >= state[1::2].sum() else -0.5

    return CandidateParticle(
        candidate_id=str(candidate_id),
        state=state,
        observables=Observables(energy=energy, momentum=momentum, spin=spin),
    )


def coupling_strength(joint: np.ndarray) -> float:
    """-sum(p log2 p) over normalized eigenvalue magnitudes of joint joint^T."""
    joint = np.asarray(joint, dtype=np.float64).reshape(-1)
    if not np.any(joint):
        return 0.0
    if not np.all(np.isfinite(joint)):
        raise ComputeError("Joint representation contains non-finite values")

    density = np.outer(joint, joint)
    magnitudes = np.abs(np.linalg.eigvalsh(density))
    total = magnitudes.sum()
    if total <= 0:
        return 0.0

    p = magnitudes / total
    p = p[p > EIGEN_THRESHOLD]
    entropy = -float(np.sum(p * np.log2(p)))
    return max(0.0, entropy)


class CouplingModel:
    """Concatenation coupling between a query state and one candidate."""

    def couple(
        self,
        query_state: Union[EntityState, np.ndarray],
        particle: CandidateParticle,
    ) -> CouplingResult:
        if isinstance(query_state, EntityState):
            query = query_state.amplitude
        else:
            query = np.asarray(query_state, dtype=np.float64).reshape(-1)

        joint = np.concatenate([query, particle.state])
        joint.setflags(write=False)
        strength = coupling_strength(joint)
        if math.isnan(strength):
            raise ComputeError(f"Coupling strength undefined for {particle.candidate_id!r}")

        return CouplingResult(candidate_id=particle.candidate_id, joint=joint, strength=strength)
