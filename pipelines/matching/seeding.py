"""
Deterministic random generators for the ensemble pipeline.

Every random draw in an invocation comes from a generator derived from the
invocation seed plus stage labels, so results do not depend on which worker
thread ran first.
"""

import zlib

import numpy as np


def derive_rng(seed: int, *labels) -> np.random.Generator:
    """Generator for ``seed`` scoped by ``labels`` (ints or strings)."""
    entropy = [int(seed)]
    for label in labels:
        if isinstance(label, (int, np.integer)) and label >= 0:
            entropy.append(int(label))
        else:
            entropy.append(zlib.crc32(str(label).encode("utf-8")))
    return np.random.default_rng(entropy)
