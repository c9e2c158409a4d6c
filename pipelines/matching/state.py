"""
State Preparation.

Responsibilities:
- Expand a feature vector into a D-dimensional complex-like state.
- Report the state's coherence.

Non-Responsibilities:
- No feature extraction.
- No candidate coupling or scoring.

Invariant:
Given the same feature vector and seed, the prepared state is bit-identical.
Features are applied one rotation each, in input order.
"""

import math
from dataclasses import dataclass

import numpy as np

from .seeding import derive_rng


@dataclass(frozen=True)
class EntityState:
    amplitude: np.ndarray
    phase: np.ndarray
    coherence: float

    @property
    def dimension(self) -> int:
        return int(self.amplitude.shape[0])

    def as_complex(self) -> np.ndarray:
        return self.amplitude + 1j * self.phase


def hadamard_mix(state: np.ndarray) -> np.ndarray:
    """Orthogonal basis change mixing the upper and lower halves of the state."""
    half = state.shape[0] // 2
    upper, lower = state[:half], state[half:]
    return np.concatenate([upper + lower, upper - lower]) / math.sqrt(2.0)


def phase_rotation(state: np.ndarray, angle: float) -> np.ndarray:
    """Rotation around the phase axis: e^{-iθ/2} on the upper half, e^{iθ/2} on the lower."""
    half = state.shape[0] // 2
    rotated = state.copy()
    rotated[:half] *= np.exp(-0.5j * angle)
    rotated[half:] *= np.exp(0.5j * angle)
    return rotated


def coherence(state: np.ndarray) -> float:
    """
    purity / trace of the density matrix of the unit-normalized state.

    With rho = psi psi^H, trace(rho @ rho) equals sum(rho * rho.T), which
    avoids the D x D x D product.
    """
    norm = np.linalg.norm(state)
    if norm == 0 or not np.isfinite(norm):
        return 0.0
    psi = state / norm
    rho = np.outer(psi, psi.conj())
    trace = np.trace(rho).real
    purity = np.sum(rho * rho.T).real
    if trace <= 0:
        return 0.0
    return float(np.clip(purity / trace, 0.0, 1.0))


class StatePreparer:
    """Seeded superposition, basis change, then per-feature phase rotations."""

    def __init__(self, dimension: int = 1024):
        if dimension < 2 or dimension % 2:
            raise ValueError("dimension must be an even integer >= 2")
        self.dimension = dimension

    def prepare(self, vector, seed: int = 0) -> EntityState:
        features = np.asarray(vector, dtype=np.float64).reshape(-1)

        rng = derive_rng(seed, "state")
        real = rng.standard_normal(self.dimension)
        imag = rng.standard_normal(self.dimension)
        state = real + 1j * imag

        state = hadamard_mix(state)
        for value in features:
            state = phase_rotation(state, float(value) * math.pi)

        amplitude = np.ascontiguousarray(state.real)
        phase = np.ascontiguousarray(state.imag)
        amplitude.setflags(write=False)
        phase.setflags(write=False)
        return EntityState(amplitude=amplitude, phase=phase, coherence=coherence(state))
