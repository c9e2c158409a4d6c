"""
Feature Extraction for Subsidy Matching.

Responsibilities:
- Turn a heterogeneous entity record (industry, scale, need tags) into a
  fixed-length numeric feature vector.
- Normalize category and tag labels before lookup.

Non-Responsibilities:
- No randomness.
- No state preparation or scoring.
- No persistence.

Invariant:
Output always has exactly FEATURE_LENGTH entries in [0, 1], and missing or
unknown data degrades to a neutral encoding instead of failing.
"""

import math
from numbers import Real
from typing import Any, Mapping

import numpy as np

from subsidymatch.config import FEATURE_LENGTH
from subsidymatch.normalize import normalize_industry, normalize_need

INDUSTRY_WIDTH = 8
NEEDS_WIDTH = 16

INDUSTRY_SLOT = slice(0, INDUSTRY_WIDTH)
SCALE_SLOT = INDUSTRY_WIDTH
NEEDS_SLOT = slice(INDUSTRY_WIDTH + 1, INDUSTRY_WIDTH + 1 + NEEDS_WIDTH)

INDUSTRY_TABLE = {
    "it": (1.0, 0.0, 0.0, 0.0, 0.9, 0.8, 0.7, 0.9),
    "manufacturing": (0.0, 1.0, 0.0, 0.0, 0.7, 0.9, 0.8, 0.6),
    "services": (0.0, 0.0, 1.0, 0.0, 0.8, 0.7, 0.9, 0.7),
    "retail": (0.0, 0.0, 0.0, 1.0, 0.6, 0.6, 0.8, 0.8),
}
NEUTRAL_INDUSTRY = (0.5,) * INDUSTRY_WIDTH

# Table order defines neighbor smoothing
NEEDS_TABLE = (
    "dx",
    "efficiency",
    "ai",
    "iot",
    "cloud",
    "security",
    "global_expansion",
    "cost_reduction",
    "workforce",
    "succession",
    "energy_saving",
    "sales_channels",
    "rnd",
    "equipment",
    "telework",
    "startup",
)
NEED_INDEX = {name: i for i, name in enumerate(NEEDS_TABLE)}


def encode_industry(industry: Any) -> np.ndarray:
    key = normalize_industry(industry)
    return np.array(INDUSTRY_TABLE.get(key, NEUTRAL_INDUSTRY), dtype=np.float64)


def encode_scale(scale: Any) -> float:
    """log10(scale + 1) / 10, clipped into [0, 1]; unusable values encode as 0."""
    if not isinstance(scale, Real) or isinstance(scale, bool):
        return 0.0
    scale = float(scale)
    if not math.isfinite(scale) or scale < 0:
        return 0.0
    return min(1.0, math.log10(scale + 1.0) / 10.0)


def encode_needs(needs: Any) -> np.ndarray:
    """
    16-slot indicator with neighbor smoothing, then L2-normalized.

    A present tag sets its slot to 1 and adds 0.5 to each neighbor in table
    order. Unknown tags are ignored; no known tags yields all zeros.
    """
    vector = np.zeros(NEEDS_WIDTH, dtype=np.float64)
    if not isinstance(needs, (list, tuple)):
        return vector

    for need in needs:
        index = NEED_INDEX.get(normalize_need(need))
        if index is None:
            continue
        vector[index] = 1.0
        if index > 0:
            vector[index - 1] += 0.5
        if index < NEEDS_WIDTH - 1:
            vector[index + 1] += 0.5

    norm = np.linalg.norm(vector)
    if norm > 0:
        vector /= norm
    return vector


class FeatureEncoder:
    """Deterministic entity -> FeatureVector mapping."""

    length = FEATURE_LENGTH

    def encode(self, entity: Any) -> np.ndarray:
        if not isinstance(entity, Mapping):
            entity = {}

        features = np.zeros(self.length, dtype=np.float64)
        head = np.concatenate([
            encode_industry(entity.get("industry")),
            [encode_scale(entity.get("scale"))],
            encode_needs(entity.get("needs")),
        ])
        width = min(len(head), self.length)
        features[:width] = head[:width]

        features = np.clip(features, 0.0, 1.0)
        features.setflags(write=False)
        return features
