"""RNG provisioning for row workers.

Every worker gets its own Generator so no generator is ever shared across
threads. Without a seed the entropy is fresh on every call; with a seed the
same (seed, count) always yields the same streams.
"""

import numpy as np


def make_rng(seed: int | None = None) -> np.random.Generator:
    """Create an RNG, seeded when a seed is given."""
    return np.random.default_rng(seed)


def spawn_rngs(count: int, seed: int | None = None) -> list[np.random.Generator]:
    """Create ``count`` independent generators from one SeedSequence."""
    if count < 0:
        raise ValueError(f"count must be non-negative, got {count}")
    children = np.random.SeedSequence(seed).spawn(count)
    return [np.random.default_rng(child) for child in children]
