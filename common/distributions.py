"""
Utility distributions shared by task generation and the threshold solver.

A distribution describes the instantaneous sprint utility u over a bounded domain
[u_min, u_max]. The solver evaluates its density on a grid; workload generation
draws samples from it. Densities are evaluated on the bounded domain as-is and are
not renormalised after truncation.
"""

import numpy as np


def _gauss(u, mu, sigma):
    z = (u - mu) / sigma
    return np.exp(-0.5 * z * z) / (sigma * np.sqrt(2.0 * np.pi))


class UtilityDistribution:
    """Base class for utility distributions over [u_min, u_max]"""

    def __init__(self, u_min=0.0, u_max=1.0):
        if u_max <= u_min:
            raise ValueError(f"Utility domain is empty: [{u_min}, {u_max}]")
        self.u_min = u_min
        self.u_max = u_max

    def density(self, u):
        """Unbounded density, vectorised over numpy arrays"""
        raise NotImplementedError

    def draw(self, rng, size):
        """Unclamped samples"""
        raise NotImplementedError

    def pdf(self, u):
        u = np.asarray(u, dtype=float)
        inside = (u >= self.u_min) & (u <= self.u_max)
        return np.where(inside, self.density(u), 0.0)

    def sample(self, rng=None, size=1):
        """Samples clamped to the utility domain."""
        if rng is None:
            rng = np.random.default_rng()
        return np.clip(self.draw(rng, size), self.u_min, self.u_max)


class NarrowGaussian(UtilityDistribution):
    """Single narrow normal profile, typical of regression-style workloads"""

    def __init__(self, mu, sigma, u_min=0.0, u_max=1.0):
        super().__init__(u_min, u_max)
        if sigma <= 0:
            raise ValueError(f"sigma must be > 0, got {sigma}")
        self.mu = mu
        self.sigma = sigma

    def density(self, u):
        return _gauss(u, self.mu, self.sigma)

    def draw(self, rng, size):
        return rng.normal(self.mu, self.sigma, size)


class BimodalGaussian(UtilityDistribution):
    """
    Two-component normal mixture, typical of graph workloads where most phases gain
    little from sprinting and a minority gain a lot.
    """

    def __init__(self, mu1, sigma1, w1, mu2, sigma2, w2, u_min=0.0, u_max=1.0):
        super().__init__(u_min, u_max)
        if sigma1 <= 0 or sigma2 <= 0:
            raise ValueError("Mixture components need positive sigma")
        if w1 < 0 or w2 < 0 or w1 + w2 <= 0:
            raise ValueError("Mixture weights must be non-negative and not both zero")
        self.mu1, self.sigma1, self.w1 = mu1, sigma1, w1
        self.mu2, self.sigma2, self.w2 = mu2, sigma2, w2

    def density(self, u):
        mixed = self.w1 * _gauss(u, self.mu1, self.sigma1) + self.w2 * _gauss(u, self.mu2, self.sigma2)
        return np.maximum(0.0, mixed)

    def draw(self, rng, size):
        first = rng.random(size) < self.w1 / (self.w1 + self.w2)
        return np.where(
            first,
            rng.normal(self.mu1, self.sigma1, size),
            rng.normal(self.mu2, self.sigma2, size),
        )


class FixedUtility(UtilityDistribution):
    """Degenerate profile that always yields the same utility. Used for deterministic runs."""

    def __init__(self, value, u_min=0.0, u_max=1.0):
        super().__init__(u_min, u_max)
        self.value = value

    def density(self, u):
        return np.where(np.isclose(u, self.value), 1.0, 0.0)

    def draw(self, rng, size):
        return np.full(size, float(self.value))


# 70% low-benefit tasks, 30% high-benefit tasks
DEFAULT_TASK_PROFILE = BimodalGaussian(0.2, 0.08, 0.70, 0.8, 0.08, 0.30)


def build_distribution(profile, u_min=0.0, u_max=1.0):
    """Resolve a named utility profile on the unit domain"""
    profile = profile.strip().lower()
    if profile in ("linear", "lr", "narrow"):
        return NarrowGaussian(0.5, 0.06, u_min, u_max)
    elif profile in ("pagerank", "bimodal"):
        return BimodalGaussian(0.2, 0.08, 0.70, 0.8, 0.08, 0.30, u_min, u_max)
    else:
        raise ValueError(f"Unknown utility profile: {profile}")
