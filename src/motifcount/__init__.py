"""
motifcount
==========

Calibrated significance of motif hits in DNA sequences.

Given a motif (position frequency matrix) and an order-d Markov background,
the package computes the exact distribution of the discretized motif score,
calibrates a score threshold for a false positive level ``alpha``, derives
the self-overlap (clump) probabilities of motif hits and approximates the
distribution of the number of hits in sequences of given lengths.  Observed
hit counts are then tested for enrichment.

The modules expose the following key components:

``config``
    :class:`CounterConfig` options with process-wide defaults and per-call
    overrides.

``motif`` and ``background``
    Validated :class:`Motif` and :class:`BackgroundModel` value objects.

``scoring``
    Score tables, the score distribution dynamic program and threshold
    calibration.

``scanning``
    Per-position scores, hits, counts and profiles of concrete sequences.

``overlap``
    Two-dimensional dynamic program for overlapping hits and the
    next-hit correction.

``hitcount``
    Compound Poisson and combinatorial models of the number of hits.

``enrichment``
    Enrichment tests of observed hit counts.

``simulation``
    Sampling from the background to cross-check the analytical models.
"""

from motifcount.background import BackgroundModel
from motifcount.config import DEFAULT_CONFIG, CounterConfig, create_config, resolve_config
from motifcount.enrichment import EnrichmentResult, enrichment_test, motif_enrichment
from motifcount.exceptions import (
    ModelInvalidError,
    MotifCountError,
    NumericToleranceError,
    ThresholdUnattainableError,
    ValidationError,
)
from motifcount.hitcount import (
    HitCountDistribution,
    combinatorial_dist,
    compound_poisson_dist,
    hit_count_distribution,
)
from motifcount.motif import Motif
from motifcount.overlap import OverlapProbabilitySet, motif_overlap
from motifcount.scanning import (
    ScanResult,
    SequenceScanner,
    hit_profile,
    hit_table,
    motif_hits,
    num_motif_hits,
    scan_sequence,
    scan_sequences,
    score_histogram,
    score_profile,
    score_sequence,
    score_strand,
)
from motifcount.scoring import (
    ScoreDistribution,
    ScoreFunction,
    Threshold,
    calibrate_threshold,
    score_distribution,
    score_distribution_bf,
    score_threshold,
)
from motifcount.sequences import RaggedData, decode_sequence, encode_sequence, encode_sequences, reverse_complement
from motifcount.simulation import generate_sequence, generate_sequences, simulate_hit_counts

__version__ = "0.1.0"

__all__ = [
    "BackgroundModel",
    "CounterConfig",
    "DEFAULT_CONFIG",
    "EnrichmentResult",
    "HitCountDistribution",
    "ModelInvalidError",
    "Motif",
    "MotifCountError",
    "NumericToleranceError",
    "OverlapProbabilitySet",
    "RaggedData",
    "ScanResult",
    "ScoreDistribution",
    "ScoreFunction",
    "SequenceScanner",
    "Threshold",
    "ThresholdUnattainableError",
    "ValidationError",
    "calibrate_threshold",
    "combinatorial_dist",
    "compound_poisson_dist",
    "create_config",
    "decode_sequence",
    "encode_sequence",
    "encode_sequences",
    "enrichment_test",
    "generate_sequence",
    "generate_sequences",
    "hit_count_distribution",
    "hit_profile",
    "hit_table",
    "motif_enrichment",
    "motif_hits",
    "motif_overlap",
    "num_motif_hits",
    "resolve_config",
    "reverse_complement",
    "scan_sequence",
    "scan_sequences",
    "score_distribution",
    "score_distribution_bf",
    "score_histogram",
    "score_profile",
    "score_sequence",
    "score_strand",
    "score_threshold",
    "simulate_hit_counts",
]
