"""Sampling sequences from the background and empirical hit count distributions."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from joblib import Parallel, delayed

from motifcount.background import BackgroundModel
from motifcount.config import CounterConfig, resolve_config
from motifcount.exceptions import ValidationError
from motifcount.functions import batch_scores, sample_markov
from motifcount.hitcount import HitCountDistribution, Lengths, normalize_lengths
from motifcount.motif import Motif
from motifcount.scanning import SequenceScanner
from motifcount.scoring import Threshold, score_threshold
from motifcount.sequences import RaggedData, ragged_from_list


def generate_sequence(background: BackgroundModel, length: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Draw one integer-encoded sequence from the stationary background chain."""
    if length < 0:
        raise ValidationError(f"length must be non-negative, got {length}")
    rng = rng if rng is not None else np.random.default_rng()
    cum_stationary = np.cumsum(background.stationary)
    cum_transition = np.ascontiguousarray(np.cumsum(background.transition, axis=1))
    return sample_markov(rng.random(int(length)), cum_stationary, cum_transition, background.order)


def generate_sequences(background: BackgroundModel, lengths: Lengths, seed: Optional[int] = None) -> RaggedData:
    """Draw independent sequences of the given lengths."""
    rng = np.random.default_rng(seed)
    return ragged_from_list([generate_sequence(background, int(n), rng) for n in normalize_lengths(lengths)], dtype=np.int8)


def _sample_hit_count(scanner: SequenceScanner, lengths: np.ndarray, seed: int) -> int:
    """Total hits in one sample of sequences."""
    sequences = generate_sequences(scanner.background, lengths, seed)
    cutoff = scanner.threshold.index
    fwd = batch_scores(sequences, scanner.forward.seeds, scanner.forward.columns, scanner.forward.order)
    total = int(np.count_nonzero(fwd.data >= cutoff))
    if not scanner.config.singlestranded:
        rev = batch_scores(sequences, scanner.reverse.seeds, scanner.reverse.columns, scanner.reverse.order)
        total += int(np.count_nonzero(rev.data >= cutoff))
    return total


def simulate_hit_counts(
    motif: Motif,
    background: BackgroundModel,
    lengths: Lengths,
    n_samples: int = 1000,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
    threshold: Optional[Threshold] = None,
    seed: Optional[int] = None,
) -> HitCountDistribution:
    """Empirical distribution of the hit count over ``n_samples`` sampled sequence sets.

    Samples are drawn in parallel with ``config.n_jobs`` workers; each sample
    gets its own seed derived from ``seed``.
    """
    cfg = resolve_config(config, alpha=alpha, singlestranded=singlestranded)
    if n_samples < 1:
        raise ValidationError(f"n_samples must be positive, got {n_samples}")
    lengths = normalize_lengths(lengths)
    if threshold is None:
        threshold = score_threshold(motif, background, cfg)
    scanner = SequenceScanner(motif, background, cfg, threshold=threshold)

    base_rng = np.random.default_rng(seed)
    seeds = base_rng.integers(0, 2**31, size=n_samples)
    logging.getLogger(__name__).debug(f"Simulating {n_samples} samples of {lengths.size} sequences")
    counts = Parallel(n_jobs=cfg.n_jobs, backend="loky")(
        delayed(_sample_hit_count)(scanner, lengths, int(seeds[i])) for i in range(n_samples)
    )
    probabilities = np.bincount(np.asarray(counts, dtype=np.int64)) / n_samples
    return HitCountDistribution(probabilities, "simulation", tuple(int(n) for n in lengths))
