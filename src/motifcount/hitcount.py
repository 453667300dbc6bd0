"""
Hit Count Module
================

Distribution of the number of motif hits in sequences of given lengths.

Two models are registered in :data:`registry`:

``compound_poisson``
    Clumps of mutually overlapping hits start as a Poisson process; the
    number of hits per clump follows the strand chain defined by the overlap
    probabilities.  Assumes rare hits and overestimates the spread for relaxed
    alpha.
``combinatorial``
    Exact-position dynamic program over one region length at a time (longer
    regions are combined by convolution).  Does not assume rare hits; needs
    both strands.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd
from scipy import fft

from motifcount.config import CounterConfig, resolve_config
from motifcount.exceptions import NumericToleranceError, ValidationError
from motifcount.functions import check_distribution, combinatorial_counts
from motifcount.overlap import OverlapProbabilitySet

MAX_DOUBLINGS = 24

Lengths = Union[int, Iterable[int]]


@dataclass(frozen=True, eq=False)
class HitCountDistribution:
    """Probabilities of observing 0..max_hits hits.

    Attributes
    ----------
    probabilities : np.ndarray
        ``probabilities[n]`` = P(X = n).
    method : str
        Model that produced the distribution.
    lengths : tuple
        Sequence lengths the distribution refers to.
    """

    probabilities: np.ndarray = dc_field(repr=False)
    method: str
    lengths: Tuple[int, ...] = dc_field(repr=False)

    @property
    def counts(self) -> np.ndarray:
        return np.arange(self.probabilities.size)

    @property
    def max_hits(self) -> int:
        return self.probabilities.size - 1

    @property
    def mean(self) -> float:
        return float(np.dot(self.counts, self.probabilities))

    @property
    def variance(self) -> float:
        return float(np.dot((self.counts - self.mean) ** 2, self.probabilities))

    def tail(self, n: int) -> float:
        """P(X >= n); zero beyond the support."""
        if n <= 0:
            return float(self.probabilities.sum())
        return float(self.probabilities[n:].sum())

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"count": self.counts, "probability": self.probabilities})


class CountModelRegistry:
    """Registry for hit count models using decorator pattern."""

    def __init__(self):
        self._models: Dict[str, type] = {}

    def register(self, key: str):
        """Decorator to register a hit count model class."""

        def decorator(model_cls):
            self._models[key] = model_cls
            logging.getLogger(__name__).debug(f"Registered hit count model: {key} -> {model_cls.__name__}")
            return model_cls

        return decorator

    def get(self, key: str) -> type:
        """Get model class by key."""
        if key not in self._models:
            available = list(self._models.keys())
            raise ValidationError(f"Hit count model '{key}' not found. Available: {available}")
        return self._models[key]

    def keys(self):
        return list(self._models.keys())


registry = CountModelRegistry()


def normalize_lengths(lengths: Lengths) -> np.ndarray:
    arr = np.atleast_1d(np.asarray(lengths, dtype=np.int64)).reshape(-1)
    if arr.size == 0:
        raise ValidationError("At least one sequence length is required")
    if np.any(arr < 0):
        raise ValidationError("Sequence lengths must be non-negative")
    return arr


def _exit_probabilities(transfer: np.ndarray) -> np.ndarray:
    """Probability that a clump ends after a hit of each strand.

    A single row may be zero (a palindrome's forward hit always continues on
    the reverse strand), but the chain as a whole must terminate.
    """
    if np.max(np.abs(np.linalg.eigvals(transfer))) >= 1.0 - 1e-12:
        raise ValidationError(
            "Overlap probabilities leave no chance for a clump to end; alpha is too relaxed for hit counting"
        )
    return np.clip(1.0 - transfer.sum(axis=1), 0.0, 1.0)


def _clump_size_moments(start: np.ndarray, transfer: np.ndarray) -> Tuple[float, float]:
    """E[S] and E[S**2] of the clump size."""
    fundamental = np.linalg.inv(np.eye(transfer.shape[0]) - transfer)
    ones = np.ones(transfer.shape[0])
    first = float(start @ fundamental @ ones)
    second = float(2.0 * start @ fundamental @ fundamental @ ones - first)
    return first, second


def _default_max_hits(mean: float, variance: float) -> int:
    return int(math.ceil(mean + 12.0 * math.sqrt(max(variance, 0.0)) + 20.0))


def clump_size_distribution(start: np.ndarray, transfer: np.ndarray, exit_probs: np.ndarray, size: int) -> np.ndarray:
    """P(clump has n hits) for n = 0..size-1 (n = 0 has probability zero)."""
    f = np.zeros(size)
    v = np.array(start, dtype=np.float64)
    for n in range(1, size):
        f[n] = v @ exit_probs
        v = v @ transfer
    return f


def clump_rates(overlap: OverlapProbabilitySet, lengths: np.ndarray) -> np.ndarray:
    """Expected number of clumps starting with a forward (and reverse) hit.

    A hit starts a clump unless it is preceded by a clump-joined hit; near the
    sequence start fewer predecessors fit, which is accounted for per position.
    """
    length = overlap.length
    offsets = np.arange(1, length)
    alpha_f, alpha_r = overlap.alpha, overlap.alpha_reverse
    rates = np.zeros(1 if overlap.singlestranded else 2)
    for n in lengths:
        n_windows = int(n) - length + 1
        if n_windows <= 0:
            continue
        weights = np.maximum(n_windows - offsets, 0)
        if overlap.singlestranded:
            rates[0] += alpha_f * (n_windows - np.sum(overlap.beta[1:] * weights))
            continue
        rates[0] += alpha_f * n_windows - np.sum((alpha_f * overlap.beta[1:] + alpha_r * overlap.beta5p[1:]) * weights)
        rates[1] += (alpha_r - alpha_f * overlap.beta3p[0]) * n_windows - np.sum(
            (alpha_r * overlap.beta_reverse[1:] + alpha_f * overlap.beta3p[1:]) * weights
        )
    return np.clip(rates, 0.0, None)


def _compound_poisson_pmf(rate: float, start, transfer, exit_probs, max_hits: int) -> np.ndarray:
    size = 1 << int(math.ceil(math.log2(2 * (max_hits + 1))))
    f = clump_size_distribution(start, transfer, exit_probs, size)
    pmf = np.real(fft.ifft(np.exp(rate * (fft.fft(f) - 1.0))))[: max_hits + 1]
    return np.clip(pmf, 0.0, None)


@registry.register("compound_poisson")
class CompoundPoissonModel:
    """Compound Poisson approximation of the hit count."""

    @staticmethod
    def distribution(
        overlap: OverlapProbabilitySet,
        lengths: np.ndarray,
        config: CounterConfig,
        max_hits: Optional[int] = None,
    ) -> HitCountDistribution:
        logger = logging.getLogger(__name__)
        rates = clump_rates(overlap, lengths)
        total_rate = float(rates.sum())
        if total_rate <= 0.0:
            return HitCountDistribution(np.ones(1), "compound_poisson", tuple(int(n) for n in lengths))

        transfer = overlap.transfer()
        exit_probs = _exit_probabilities(transfer)
        start = rates / total_rate
        size_mean, size_second = _clump_size_moments(start, transfer)
        if max_hits is None:
            max_hits = _default_max_hits(total_rate * size_mean, total_rate * size_second)
        max_hits = max(int(max_hits), 1)

        for _ in range(MAX_DOUBLINGS):
            pmf = _compound_poisson_pmf(total_rate, start, transfer, exit_probs, max_hits)
            if pmf.sum() >= 1.0 - config.tolerance:
                break
            logger.debug(f"Compound Poisson mass {pmf.sum():.8f} below tolerance, extending support beyond {max_hits}")
            max_hits *= 2
        check_distribution(pmf, config.tolerance, "Compound Poisson hit count distribution")
        logger.info(
            f"Compound Poisson model: clump rate {total_rate:.4g}, mean clump size {size_mean:.4g}, "
            f"support 0..{max_hits}"
        )
        return HitCountDistribution(pmf, "compound_poisson", tuple(int(n) for n in lengths))


def _single_length_combinatorial(overlap: OverlapProbabilitySet, length: int, config: CounterConfig, max_hits) -> np.ndarray:
    n_windows = length - overlap.length + 1
    if n_windows <= 0:
        return np.ones(1)

    transfer = overlap.transfer()
    exit_probs = _exit_probabilities(transfer)
    hit_probs = overlap.hit_probabilities
    hit_rate = float(hit_probs.sum())
    # per-position clump starts of each strand: hits not reached from an earlier hit
    start = np.clip(hit_probs - hit_probs @ transfer, 1e-12, None)
    start = start / start.sum()

    fundamental = np.linalg.inv(np.eye(2) - transfer)
    spans = np.einsum("stk,k->s", overlap.continuation(), np.arange(overlap.length))
    hits_per_clump = float(start @ fundamental @ np.ones(2))
    span_per_clump = float(start @ fundamental @ spans)

    # free positions between clumps chosen so that the stationary hit rate is alpha + alpha_reverse
    gap = hits_per_clump / hit_rate - span_per_clump - overlap.length
    if gap <= 0.0:
        logging.getLogger(__name__).warning(
            f"Combinatorial calibration gives no free positions between clumps (gap {gap:.3g}); starting clumps everywhere"
        )
        start_total = 1.0
    else:
        start_total = 1.0 / (1.0 + gap)
    start_probs = start_total * start

    cap = 2 * n_windows
    if max_hits is None:
        size_mean, size_second = _clump_size_moments(start, transfer)
        clumps = hit_rate * n_windows / size_mean
        max_hits = _default_max_hits(clumps * size_mean, clumps * size_second)
    max_hits = min(max(int(max_hits), 1), cap)

    for _ in range(MAX_DOUBLINGS):
        pmf, overflow = combinatorial_counts(
            n_windows, overlap.length, start_probs, overlap.continuation(), exit_probs, max_hits
        )
        if overflow <= config.tolerance or max_hits >= cap:
            break
        max_hits = min(2 * max_hits, cap)
    return pmf


def _convolve_lengths(pmfs: Dict[int, np.ndarray], lengths: np.ndarray, tolerance: float) -> np.ndarray:
    """Distribution of the sum of independent per-sequence counts."""
    unique, multiplicity = np.unique(lengths, return_counts=True)
    trimmed = {}
    for n in unique:
        pmf = pmfs[int(n)]
        cumulative = np.cumsum(pmf)
        last = int(np.searchsorted(cumulative, 1.0 - tolerance * 1e-6))
        trimmed[int(n)] = pmf[: min(last + 1, pmf.size)]
    support = int(sum((trimmed[int(n)].size - 1) * m for n, m in zip(unique, multiplicity, strict=True)))
    size = 1 << int(math.ceil(math.log2(support + 1))) if support > 0 else 1
    spectrum = np.ones(size, dtype=np.complex128)
    for n, m in zip(unique, multiplicity, strict=True):
        spectrum *= fft.fft(trimmed[int(n)], size) ** int(m)
    total = np.real(fft.ifft(spectrum))[: support + 1]
    return np.clip(total, 0.0, None)


@registry.register("combinatorial")
class CombinatorialModel:
    """Position-by-position dynamic program of the hit count."""

    @staticmethod
    def distribution(
        overlap: OverlapProbabilitySet,
        lengths: np.ndarray,
        config: CounterConfig,
        max_hits: Optional[int] = None,
    ) -> HitCountDistribution:
        if overlap.singlestranded:
            raise ValidationError("The combinatorial model requires overlap probabilities for both strands")
        unique = np.unique(lengths)
        pmfs = {int(n): _single_length_combinatorial(overlap, int(n), config, max_hits) for n in unique}
        if lengths.size == 1:
            pmf = pmfs[int(lengths[0])]
        else:
            pmf = _convolve_lengths(pmfs, lengths, config.tolerance)
        if max_hits is not None and pmf.size < max_hits + 1:
            pmf = np.concatenate([pmf, np.zeros(max_hits + 1 - pmf.size)])
        check_distribution(pmf, config.tolerance, "Combinatorial hit count distribution")
        logging.getLogger(__name__).info(
            f"Combinatorial model: {unique.size} distinct lengths, support 0..{pmf.size - 1}"
        )
        return HitCountDistribution(pmf, "combinatorial", tuple(int(n) for n in lengths))


def hit_count_distribution(
    overlap: OverlapProbabilitySet,
    lengths: Lengths,
    method: str = "compound_poisson",
    config: Optional[CounterConfig] = None,
    max_hits: Optional[int] = None,
) -> HitCountDistribution:
    """Distribution of the total number of hits in sequences of the given lengths.

    ``max_hits`` is the smallest support requested; it is extended when the
    truncated mass would exceed the tolerance.
    """
    cfg = resolve_config(config)
    model_cls = registry.get(method)
    try:
        return model_cls.distribution(overlap, normalize_lengths(lengths), cfg, max_hits)
    except NumericToleranceError:
        logging.getLogger(__name__).error(f"Hit count model '{method}' did not produce a normalized distribution")
        raise


def compound_poisson_dist(
    overlap: OverlapProbabilitySet,
    lengths: Lengths,
    config: Optional[CounterConfig] = None,
    max_hits: Optional[int] = None,
) -> HitCountDistribution:
    return hit_count_distribution(overlap, lengths, "compound_poisson", config, max_hits)


def combinatorial_dist(
    overlap: OverlapProbabilitySet,
    lengths: Lengths,
    config: Optional[CounterConfig] = None,
    max_hits: Optional[int] = None,
) -> HitCountDistribution:
    return hit_count_distribution(overlap, lengths, "combinatorial", config, max_hits)
