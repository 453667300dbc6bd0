"""
Overlap Module
==============

Self-overlap probabilities of motif hits.

For a hit at position 0, ``gamma`` gives the probability of another hit at
offset ``k`` (with any hits in between), and ``beta`` the probability that the
*next* hit is the one at offset ``k``.  Three strand configurations exist:

* same strand (forward at 0, forward at k), offsets 1..L-1,
* ``3p``: forward at 0, reverse at k, offsets 0..L-1,
* ``5p``: reverse at 0, forward at k, offsets 1..L-1.

The reverse/reverse configuration equals the forward one under a
strand-symmetric background and is computed separately otherwise.
Entries that are not defined (offset 0 of the same-strand and 5p
configurations) are zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from motifcount.background import BackgroundModel
from motifcount.config import CounterConfig, resolve_config
from motifcount.exceptions import ValidationError
from motifcount.functions import joint_hit_probability
from motifcount.motif import Motif
from motifcount.scoring import ScoreFunction, Threshold, score_distribution, score_threshold, strand_score_functions

CONFIGURATIONS = ("same", "3p", "5p")


@dataclass(frozen=True, eq=False)
class OverlapProbabilitySet:
    """Overlap probabilities indexed by offset 0..L-1.

    Attributes
    ----------
    alpha : float
        Probability of a forward hit at a given position.
    beta, beta3p, beta5p : np.ndarray
        Probability that the next hit after a hit at 0 lies at offset k on the
        same strand, on the reverse strand (after a forward hit) and on the
        forward strand (after a reverse hit).
    gamma : np.ndarray
        Uncorrected joint hit probabilities divided by the single hit
        probability, shape (3, L); rows are same, 3p and 5p.
    length : int
        Motif length.
    singlestranded : bool
        True if only the same-strand configuration was computed.
    alpha_reverse : float, optional
        Probability of a reverse hit at a given position; defaults to ``alpha``.
    beta_reverse : np.ndarray, optional
        Next-hit probabilities from a reverse hit to a reverse hit; defaults
        to ``beta``.
    """

    alpha: float
    beta: np.ndarray = dc_field(repr=False)
    beta3p: np.ndarray = dc_field(repr=False)
    beta5p: np.ndarray = dc_field(repr=False)
    gamma: np.ndarray = dc_field(repr=False)
    length: int
    singlestranded: bool
    alpha_reverse: Optional[float] = None
    beta_reverse: Optional[np.ndarray] = dc_field(default=None, repr=False)

    def __post_init__(self):
        if self.alpha_reverse is None:
            object.__setattr__(self, "alpha_reverse", self.alpha)
        if self.beta_reverse is None:
            object.__setattr__(self, "beta_reverse", self.beta)

    @property
    def hit_probabilities(self) -> np.ndarray:
        """Per-position hit probability of each modelled strand (F, then R)."""
        if self.singlestranded:
            return np.array([self.alpha])
        return np.array([self.alpha, self.alpha_reverse])

    def continuation(self) -> np.ndarray:
        """Next-hit probabilities as an array (2, 2, L) indexed by strand (F=0, R=1)."""
        return np.array([[self.beta, self.beta3p], [self.beta5p, self.beta_reverse]])

    def transfer(self) -> np.ndarray:
        """Total probability that a hit of strand s is followed in its clump by one of strand t."""
        if self.singlestranded:
            return np.array([[self.beta.sum()]])
        return self.continuation().sum(axis=2)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "offset": np.arange(self.length),
                "beta": self.beta,
                "beta3p": self.beta3p,
                "beta5p": self.beta5p,
                "gamma": self.gamma[0],
                "gamma3p": self.gamma[1],
                "gamma5p": self.gamma[2],
                "beta_reverse": self.beta_reverse,
            }
        )


def _joint_probability(
    background: BackgroundModel, first: ScoreFunction, second: ScoreFunction, offset: int, threshold: int
) -> float:
    """P(first window at 0 and second window at ``offset`` both score >= threshold)."""
    return joint_hit_probability(
        background.stationary,
        background.transition,
        background.order,
        first.seeds,
        first.columns,
        second.seeds,
        second.columns,
        offset,
        threshold,
    )


def correct_overlaps(
    gamma: np.ndarray, singlestranded: bool = False, gamma_reverse: Optional[np.ndarray] = None
) -> np.ndarray:
    """Turn joint hit probabilities into next-hit probabilities.

    Hits are ordered by position, forward before reverse at equal positions.
    With ``G[s, t, k]`` the probability of a strand-t hit at offset k given a
    strand-s hit at 0, the next-hit probabilities ``B`` satisfy::

        G[s, t, k] = B[s, t, k] + sum_{(j, m) between (0, s) and (k, t)} B[s, m, j] * G[m, t, k - j]

    which is solved for increasing ``k``.  ``gamma_reverse`` holds the
    reverse/reverse row; without it that configuration mirrors the forward
    one.  Returns ``B`` with shape (2, 2, L), each entry clipped to [0, G].
    """
    length = gamma.shape[1]
    g = np.zeros((2, 2, length))
    g[0, 0] = gamma[0]
    g[1, 1] = gamma[0]
    pairs = [(0, 0)]
    mirrored = True
    if not singlestranded:
        g[0, 1] = gamma[1]
        g[1, 0] = gamma[2]
        pairs += [(0, 1), (1, 0)]
        if gamma_reverse is not None:
            g[1, 1] = gamma_reverse
            pairs.append((1, 1))
            mirrored = False

    b = np.zeros_like(g)
    for k in range(length):
        for s, t in pairs:
            acc = g[s, t, k]
            for j in range(k + 1):
                for m in range(2):
                    if j == 0 and m <= s:
                        continue
                    if j == k and m >= t:
                        continue
                    acc -= b[s, m, j] * g[m, t, k - j]
            b[s, t, k] = min(max(acc, 0.0), g[s, t, k])
        if mirrored:
            b[1, 1, k] = b[0, 0, k]
    return b


def motif_overlap(
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
    threshold: Optional[Threshold] = None,
) -> OverlapProbabilitySet:
    """Compute gamma and the corrected beta, beta3p and beta5p of ``motif``.

    Each (configuration, offset) pair is an independent 2-D dynamic program
    and is dispatched through joblib with ``config.n_jobs`` workers.  Under a
    background that is not strand-symmetric the reverse/reverse pairs are
    computed as well and the reverse hit probability comes from the
    reverse-complement score distribution.
    """
    cfg = resolve_config(config, alpha=alpha, singlestranded=singlestranded)
    if threshold is None:
        threshold = score_threshold(motif, background, cfg)
    elif abs(threshold.granularity - cfg.granularity) > 1e-12:
        raise ValidationError(
            f"Threshold granularity {threshold.granularity} does not match config granularity {cfg.granularity}"
        )
    forward, reverse = strand_score_functions(motif, background, cfg.granularity)
    length = motif.length
    cutoff = threshold.index

    pairs = {
        "same": (forward, forward),
        "3p": (forward, reverse),
        "5p": (reverse, forward),
        "reverse": (reverse, reverse),
    }
    tasks = [("same", k) for k in range(1, length)]
    marginals = {"same": threshold.alpha, "3p": threshold.alpha}
    symmetric = True
    if not cfg.singlestranded:
        tasks += [("3p", k) for k in range(length)] + [("5p", k) for k in range(1, length)]
        rc_distribution = score_distribution(motif.reverse_complement(), background, cfg)
        marginals["5p"] = marginals["reverse"] = rc_distribution.tail_index(cutoff)
        symmetric = background.is_strand_symmetric()
        if not symmetric:
            tasks += [("reverse", k) for k in range(1, length)]

    logger = logging.getLogger(__name__)
    logger.debug(f"Overlap DP for {motif.name}: {len(tasks)} configurations, n_jobs={cfg.n_jobs}")
    joint = Parallel(n_jobs=cfg.n_jobs, backend="loky")(
        delayed(_joint_probability)(background, *pairs[name], k, cutoff) for name, k in tasks
    )

    gamma = np.zeros((4, length))
    rows = CONFIGURATIONS + ("reverse",)
    for (name, k), value in zip(tasks, joint, strict=True):
        marginal = marginals[name]
        gamma[rows.index(name), k] = value / marginal if marginal > 0.0 else 0.0
    gamma = np.clip(gamma, 0.0, 1.0)
    gamma_reverse = None if symmetric else gamma[3]

    b = correct_overlaps(gamma[:3], cfg.singlestranded, gamma_reverse)
    result = OverlapProbabilitySet(
        alpha=threshold.alpha,
        beta=b[0, 0],
        beta3p=b[0, 1],
        beta5p=b[1, 0],
        gamma=gamma[:3].copy(),
        length=length,
        singlestranded=cfg.singlestranded,
        alpha_reverse=marginals.get("5p", threshold.alpha),
        beta_reverse=b[1, 1],
    )
    logger.info(
        f"Overlap probabilities for {motif.name}: sum(beta)={result.beta.sum():.4g}, "
        f"sum(beta3p)={result.beta3p.sum():.4g}, sum(beta5p)={result.beta5p.sum():.4g}, "
        f"reverse hit probability {result.alpha_reverse:.4g}"
    )
    return result
