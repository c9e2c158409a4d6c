"""
Ensemble Scoring.

Responsibilities:
- Project a coupled representation through N independently seeded
  transforms ("ensemble members").
- Draw M shots per member from the categorical distribution induced by the
  squared magnitudes of each projection.

Non-Responsibilities:
- No aggregation of shots into statistics.
- No ranking or baseline lookup.

Invariant:
Given the same coupling, member index and seed, a member yields the same
projection and the same outcome indices.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from subsidymatch.errors import ComputeError

from .cancellation import CancelToken
from .coupling import CouplingResult
from .seeding import derive_rng

WEIGHT_SCALE = 0.1


@dataclass(frozen=True)
class EnsembleSample:
    """One ensemble member's scored variant of a candidate."""

    member: int
    vector: np.ndarray
    outcomes: np.ndarray


def _activation(index: int, hidden: int):
    # tanh / relu alternate across hidden layers; output layer is linear
    if index >= hidden:
        return None
    return np.tanh if index % 2 == 0 else (lambda x: np.maximum(x, 0.0))


class MemberTransform:
    """Fixed-architecture dense network with per-member random weights."""

    def __init__(self, layers: Sequence[Tuple[np.ndarray, np.ndarray]]):
        self.layers = tuple(layers)

    @classmethod
    def build(
        cls,
        input_dim: int,
        hidden_layers: Sequence[int],
        output_dim: int,
        seed: int,
        member: int,
    ) -> "MemberTransform":
        rng = derive_rng(seed, "member", member)
        sizes = [input_dim, *hidden_layers, output_dim]
        layers = []
        for fan_in, fan_out in zip(sizes[:-1], sizes[1:]):
            weights = rng.normal(0.0, WEIGHT_SCALE, size=(fan_out, fan_in))
            bias = rng.normal(0.0, WEIGHT_SCALE, size=fan_out)
            weights.setflags(write=False)
            bias.setflags(write=False)
            layers.append((weights, bias))
        return cls(layers)

    @property
    def input_dim(self) -> int:
        return self.layers[0][0].shape[1]

    def __call__(self, x: np.ndarray) -> np.ndarray:
        hidden = len(self.layers) - 1
        for index, (weights, bias) in enumerate(self.layers):
            x = weights @ x + bias
            activation = _activation(index, hidden)
            if activation is not None:
                x = activation(x)
        return x


class EnsembleScorer:
    """
    Runs the ensemble for one invocation.

    Member transforms are built lazily, once per (member, input width), and
    then shared read-only by every candidate of the invocation.
    """

    def __init__(self, output_dim: int, hidden_layers: Sequence[int] = (256, 512, 256), seed: int = 0):
        self.output_dim = output_dim
        self.hidden_layers = tuple(hidden_layers)
        self.seed = seed
        self._transforms: Dict[Tuple[int, int], MemberTransform] = {}
        self._lock = threading.Lock()

    def transform_for(self, member: int, input_dim: int) -> MemberTransform:
        key = (member, input_dim)
        with self._lock:
            transform = self._transforms.get(key)
        if transform is None:
            # Built outside the lock; every build for a key is identical
            built = MemberTransform.build(
                input_dim, self.hidden_layers, self.output_dim, self.seed, member
            )
            with self._lock:
                transform = self._transforms.setdefault(key, built)
        return transform

    def project(self, coupling: CouplingResult, member: int) -> np.ndarray:
        """Member transform followed by L2 renormalization."""
        joint = np.asarray(coupling.joint, dtype=np.float64)
        evolved = self.transform_for(member, joint.shape[0])(joint)

        norm = np.linalg.norm(evolved)
        if norm == 0 or not np.isfinite(norm):
            raise ComputeError(
                f"Member {member} produced a degenerate projection for {coupling.candidate_id!r}"
            )
        vector = evolved / norm
        vector.setflags(write=False)
        return vector

    def sample(self, vector: np.ndarray, shots: int, member: int) -> np.ndarray:
        """Measure in the computational basis: P(i) proportional to |v_i|^2."""
        probabilities = np.square(vector)
        total = probabilities.sum()
        if total <= 0 or not np.isfinite(total):
            raise ComputeError(f"Member {member} has no measurable probability mass")
        probabilities = probabilities / total

        rng = derive_rng(self.seed, "shots", member)
        outcomes = rng.choice(probabilities.shape[0], size=shots, p=probabilities)
        outcomes.setflags(write=False)
        return outcomes

    def score_member(
        self,
        coupling: CouplingResult,
        member: int,
        shots: int,
        cancel_token: Optional[CancelToken] = None,
    ) -> EnsembleSample:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        vector = self.project(coupling, member)
        outcomes = self.sample(vector, shots, member)
        return EnsembleSample(member=member, vector=vector, outcomes=outcomes)

    def score_ensemble(
        self,
        coupling: CouplingResult,
        ensemble_size: int,
        shots_per_member: int,
        cancel_token: Optional[CancelToken] = None,
        max_workers: int = 1,
    ) -> List[EnsembleSample]:
        """
        Score every member, fanning out over up to ``max_workers`` threads.

        Samples come back in member order and are identical for any worker
        count, since each member draws from its own generator.
        """
        members = range(ensemble_size)
        workers = min(max_workers, ensemble_size)
        if workers <= 1:
            return [self.score_member(coupling, m, shots_per_member, cancel_token) for m in members]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ensemble") as executor:
            return list(executor.map(
                lambda m: self.score_member(coupling, m, shots_per_member, cancel_token),
                members,
            ))
