"""Enrichment of observed motif hit counts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from motifcount.background import BackgroundModel
from motifcount.config import CounterConfig, resolve_config
from motifcount.exceptions import ValidationError
from motifcount.hitcount import HitCountDistribution, hit_count_distribution
from motifcount.motif import Motif
from motifcount.overlap import motif_overlap
from motifcount.scanning import SequenceCollection, SequenceScanner
from motifcount.scoring import score_threshold
from motifcount.sequences import encode_sequences


@dataclass(frozen=True)
class EnrichmentResult:
    """Outcome of an enrichment test.

    Attributes
    ----------
    pvalue : float
        P(X >= observed) under the hit count distribution.
    fold : float
        observed / expected (inf if nothing is expected).
    expected : float
        Mean of the hit count distribution.
    observed : int
        Observed number of hits.
    """

    pvalue: float
    fold: float
    expected: float
    observed: int


def enrichment_test(distribution: HitCountDistribution, observed: int) -> EnrichmentResult:
    """Test an observed hit count against ``distribution``."""
    if observed < 0:
        raise ValidationError(f"Observed hit count must be non-negative, got {observed}")
    observed = int(observed)
    pvalue = min(distribution.tail(observed), 1.0)
    expected = distribution.mean
    fold = observed / expected if expected > 0.0 else np.inf
    return EnrichmentResult(pvalue=pvalue, fold=float(fold), expected=expected, observed=observed)


def motif_enrichment(
    sequences: SequenceCollection,
    motif: Motif,
    background: BackgroundModel,
    method: str = "compound_poisson",
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
) -> EnrichmentResult:
    """Count hits of ``motif`` in ``sequences`` and test them for enrichment.

    Parameters
    ----------
    sequences : iterable of sequences or RaggedData
        Sequences to scan.
    motif : Motif
        Motif to count.
    background : BackgroundModel
        Background the hit counts are compared against.
    method : str
        Hit count model, ``"compound_poisson"`` or ``"combinatorial"``.
    config : CounterConfig, optional
        Options; ``alpha`` and ``singlestranded`` can be overridden per call.

    Returns
    -------
    EnrichmentResult
    """
    cfg = resolve_config(config, alpha=alpha, singlestranded=singlestranded)
    ragged = encode_sequences(sequences)
    threshold = score_threshold(motif, background, cfg)

    counts = SequenceScanner(motif, background, cfg, threshold=threshold).num_motif_hits(ragged)
    observed = int(counts["total"].sum())

    overlap = motif_overlap(motif, background, cfg, threshold=threshold)
    distribution = hit_count_distribution(overlap, ragged.lengths, method, cfg, max_hits=max(observed, 1))
    result = enrichment_test(distribution, observed)
    logging.getLogger(__name__).info(
        f"Enrichment of {motif.name} ({method}): observed {observed}, expected {result.expected:.3f}, "
        f"fold {result.fold:.3f}, p-value {result.pvalue:.4g}"
    )
    return result
