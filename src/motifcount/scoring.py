"""
Scoring Module
==============

Discretized log-likelihood-ratio scores of motif occurrences, their exact
distribution under the background and threshold calibration.

All scores live on an integer grid: a score index ``i`` stands for the value
``i * granularity``.  Every column contribution is rounded to the grid
separately, so a window score deviates from the exact log-likelihood ratio by
at most ``length * granularity / 2``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from motifcount.background import BackgroundModel
from motifcount.config import CounterConfig, resolve_config
from motifcount.exceptions import ThresholdUnattainableError, ValidationError
from motifcount.functions import check_distribution, enumerate_words, score_distribution_dp, score_window
from motifcount.motif import Motif
from motifcount.sequences import SequenceLike, encode_sequence

BRUTE_FORCE_MAX_LENGTH = 10


def _grid(value: np.ndarray, granularity: float) -> np.ndarray:
    return np.rint(value / granularity).astype(np.int64)


@dataclass(frozen=True, eq=False)
class ScoreFunction:
    """Integer score tables of one motif strand under one background.

    Attributes
    ----------
    seeds : np.ndarray
        Score of the first ``order`` columns for every leading context, shape (4**d,).
    columns : np.ndarray
        Score of column ``c`` for context ``u`` and symbol ``x``, shape (L, 4**d, 4).
        Rows ``c < order`` are unused.
    order : int
        Background order.
    granularity : float
        Pitch of the score grid.
    """

    seeds: np.ndarray = dc_field(repr=False)
    columns: np.ndarray = dc_field(repr=False)
    order: int
    granularity: float

    @classmethod
    def build(cls, motif: Motif, background: BackgroundModel, granularity: float) -> ScoreFunction:
        """Discretize the per-column log-likelihood ratios of ``motif`` against ``background``."""
        background.check_compatible(motif)
        d = background.order
        n_ctx = background.n_contexts
        log_motif = np.log(motif.matrix)

        columns = np.zeros((motif.length, n_ctx, 4), dtype=np.int64)
        log_transition = np.log(background.transition)
        for c in range(d, motif.length):
            columns[c] = _grid(log_motif[:, c][None, :] - log_transition, granularity)

        # leading columns use P(x_c | x_0 .. x_{c-1}) from the stationary prefix marginals
        seeds = np.zeros(n_ctx, dtype=np.int64)
        log_parent = np.zeros(1)
        for c, marginal in enumerate(background.prefix_marginals()):
            log_marginal = np.log(marginal)
            prefixes = np.arange(marginal.size)
            contribution = _grid(log_motif[prefixes % 4, c] - (log_marginal - np.repeat(log_parent, 4)), granularity)
            seeds += contribution[np.arange(n_ctx) // 4 ** (d - 1 - c)]
            log_parent = log_marginal

        seeds.setflags(write=False)
        columns.setflags(write=False)
        return cls(seeds, columns, d, float(granularity))

    @property
    def length(self) -> int:
        return self.columns.shape[0]

    def bounds(self) -> Tuple[int, int]:
        """Grid range containing every partial and complete window score."""
        low = int(self.seeds.min())
        high = int(self.seeds.max())
        for c in range(self.order, self.length):
            low += min(int(self.columns[c].min()), 0)
            high += max(int(self.columns[c].max()), 0)
        return low, high

    def score_index(self, window: SequenceLike) -> int:
        """Integer grid score of a single window of motif length."""
        encoded = encode_sequence(window)
        if encoded.size != self.length:
            raise ValidationError(f"Window must have length {self.length}, got {encoded.size}")
        return int(score_window(encoded, 0, self.length, self.seeds, self.columns, self.order))


def strand_score_functions(
    motif: Motif, background: BackgroundModel, granularity: float
) -> Tuple[ScoreFunction, ScoreFunction]:
    """Score functions of the forward motif and of its reverse complement."""
    forward = ScoreFunction.build(motif, background, granularity)
    reverse = ScoreFunction.build(motif.reverse_complement(), background, granularity)
    return forward, reverse


@dataclass(frozen=True, eq=False)
class ScoreDistribution:
    """Distribution of the window score on the grid.

    ``probabilities[i]`` is the probability of the score ``(offset + i) * granularity``.
    Zero-mass bins at both ends are trimmed.
    """

    probabilities: np.ndarray = dc_field(repr=False)
    offset: int
    granularity: float
    length: int

    @property
    def indices(self) -> np.ndarray:
        """Integer grid scores of the bins."""
        return self.offset + np.arange(self.probabilities.size, dtype=np.int64)

    @property
    def scores(self) -> np.ndarray:
        """Score values of the bins."""
        return self.indices * self.granularity

    @property
    def max_discretization_error(self) -> float:
        """Upper bound on |grid score - exact log-likelihood ratio| of a window."""
        return self.length * self.granularity / 2.0

    @property
    def mean(self) -> float:
        return float(np.dot(self.scores, self.probabilities))

    def tail(self, score: float) -> float:
        """P(S >= score)."""
        index = int(np.ceil(round(score / self.granularity, 9)))
        return float(self.probabilities[max(index - self.offset, 0) :].sum())

    def tail_index(self, index: int) -> float:
        """P(S >= index) for an integer grid score."""
        return float(self.probabilities[max(int(index) - self.offset, 0) :].sum())

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"score": self.scores, "probability": self.probabilities})


def _make_distribution(
    probabilities: np.ndarray, base: int, config: CounterConfig, length: int, what: str
) -> ScoreDistribution:
    nonzero = np.flatnonzero(probabilities > 0.0)
    if nonzero.size == 0:
        check_distribution(probabilities, config.tolerance, what)
    trimmed = np.array(probabilities[nonzero[0] : nonzero[-1] + 1], dtype=np.float64)
    check_distribution(trimmed, config.tolerance, what)
    trimmed.setflags(write=False)
    return ScoreDistribution(trimmed, int(base + nonzero[0]), config.granularity, length)


def score_distribution(
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    granularity: Optional[float] = None,
) -> ScoreDistribution:
    """Exact distribution of the discretized window score under ``background``.

    Dynamic program over the Markov context with one partial-score vector per
    context; cost O(L * 4**(d+1) * number of bins).

    Raises
    ------
    ValidationError
        If the motif is not longer than the background order.
    NumericToleranceError
        If the distribution does not sum to one within ``config.tolerance``.
    """
    cfg = resolve_config(config, granularity=granularity)
    fn = ScoreFunction.build(motif, background, cfg.granularity)
    low, high = fn.bounds()
    logging.getLogger(__name__).debug(
        f"Score DP for {motif.name}: {high - low + 1} bins, {background.n_contexts} contexts"
    )
    probs = score_distribution_dp(
        background.stationary, background.transition, fn.seeds, fn.columns, fn.order, low, high - low + 1
    )
    return _make_distribution(probs, low, cfg, motif.length, "Score distribution")


def score_distribution_bf(
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    granularity: Optional[float] = None,
) -> ScoreDistribution:
    """Score distribution by enumerating all 4**L words.

    Only meant for cross-checking :func:`score_distribution` on short motifs.
    """
    cfg = resolve_config(config, granularity=granularity)
    if motif.length > BRUTE_FORCE_MAX_LENGTH:
        raise ValidationError(
            f"Brute force enumeration is limited to motifs of length {BRUTE_FORCE_MAX_LENGTH}, got {motif.length}"
        )
    fn = ScoreFunction.build(motif, background, cfg.granularity)
    length = motif.length
    codes = np.arange(4**length, dtype=np.int64)
    words = np.ascontiguousarray(((codes[:, None] // 4 ** np.arange(length - 1, -1, -1)) % 4).astype(np.int8))
    scores, probs = enumerate_words(words, background.stationary, background.transition, fn.seeds, fn.columns, fn.order)
    low = int(scores.min())
    dist = np.bincount(scores - low, weights=probs)
    return _make_distribution(dist, low, cfg, length, "Brute force score distribution")


@dataclass(frozen=True)
class Threshold:
    """Calibrated score cutoff.

    Attributes
    ----------
    value : float
        Score cutoff; a window is a hit if its score is >= value.
    alpha : float
        Achieved false positive probability P(S >= value).
    requested_alpha : float
        The alpha the threshold was calibrated for.
    index : int
        Cutoff on the integer grid.
    granularity : float
        Pitch of the grid.
    """

    value: float
    alpha: float
    requested_alpha: float
    index: int
    granularity: float


def calibrate_threshold(distribution: ScoreDistribution, alpha: float) -> Threshold:
    """Lowest grid score whose strict upper tail does not exceed ``alpha``.

    With ``tail(i) = sum_{j > i} p_j`` and ``i0`` the first bin satisfying
    ``tail(i0) <= alpha``, the cutoff is bin ``i0 + 1`` and the achieved alpha
    is ``tail(i0)``.

    Raises
    ------
    ThresholdUnattainableError
        If only the top bin satisfies the condition.
    """
    if not 0.0 < alpha < 1.0:
        raise ValidationError(f"alpha must lie in (0, 1), got {alpha!r}")
    probs = distribution.probabilities
    tail_above = np.zeros(probs.size)
    tail_above[:-1] = np.cumsum(probs[::-1])[::-1][1:]
    ind = np.flatnonzero(tail_above <= alpha)
    if ind.size <= 1:
        raise ThresholdUnattainableError(alpha, min_alpha=float(probs[-1]))
    index = distribution.offset + int(ind[0]) + 1
    return Threshold(
        value=index * distribution.granularity,
        alpha=float(tail_above[ind[0]]),
        requested_alpha=float(alpha),
        index=index,
        granularity=distribution.granularity,
    )


def score_threshold(
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    granularity: Optional[float] = None,
) -> Threshold:
    """Calibrate the hit threshold of ``motif`` for the configured alpha."""
    cfg = resolve_config(config, alpha=alpha, granularity=granularity)
    threshold = calibrate_threshold(score_distribution(motif, background, cfg), cfg.alpha)
    logging.getLogger(__name__).info(
        f"Threshold for {motif.name}: {threshold.value:.4f} (requested alpha {cfg.alpha:g}, achieved {threshold.alpha:.4g})"
    )
    return threshold
