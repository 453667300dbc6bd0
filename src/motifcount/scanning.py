"""
Scanning Module
===============

Per-position motif scores and hits on concrete sequences.

The reverse strand is scored by applying the reverse-complement motif to the
forward sequence, so position ``i`` of both score vectors refers to the same
window ``seq[i:i + L]``.  Sequences shorter than the motif give empty vectors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import Iterable, List, Literal, Optional, Tuple, Union

import numpy as np
import pandas as pd

from motifcount.background import BackgroundModel
from motifcount.config import CounterConfig, resolve_config
from motifcount.exceptions import ValidationError
from motifcount.functions import batch_scores, score_positions
from motifcount.motif import Motif
from motifcount.scoring import ScoreFunction, Threshold, score_threshold, strand_score_functions
from motifcount.sequences import RaggedData, SequenceLike, decode_sequence, encode_sequence, encode_sequences

Strand = Literal["+", "-"]
SequenceCollection = Union[RaggedData, Iterable[SequenceLike]]


@dataclass(frozen=True, eq=False)
class ScanResult:
    """Scores and hit flags of one sequence, aligned to window start positions."""

    forward_scores: np.ndarray = dc_field(repr=False)
    reverse_scores: np.ndarray = dc_field(repr=False)
    forward_hits: np.ndarray = dc_field(repr=False)
    reverse_hits: np.ndarray = dc_field(repr=False)

    @property
    def n_forward(self) -> int:
        return int(self.forward_hits.sum())

    @property
    def n_reverse(self) -> int:
        return int(self.reverse_hits.sum())

    @property
    def n_hits(self) -> int:
        return self.n_forward + self.n_reverse

    def __len__(self) -> int:
        return self.forward_scores.size


class SequenceScanner:
    """Scores sequences with one motif against one background.

    Parameters
    ----------
    motif : Motif
        Motif to scan with.
    background : BackgroundModel
        Background the scores are relative to.
    config : CounterConfig, optional
        Options; ``alpha`` and ``granularity`` determine the threshold and
        ``singlestranded`` disables reverse strand hits.
    threshold : Threshold, optional
        Pre-computed threshold.  When omitted it is calibrated from ``config``
        the first time hits are requested.
    """

    def __init__(
        self,
        motif: Motif,
        background: BackgroundModel,
        config: Optional[CounterConfig] = None,
        threshold: Optional[Threshold] = None,
    ):
        self.motif = motif
        self.background = background
        self.config = resolve_config(config)
        if threshold is not None and abs(threshold.granularity - self.config.granularity) > 1e-12:
            raise ValidationError(
                f"Threshold granularity {threshold.granularity} does not match config granularity "
                f"{self.config.granularity}"
            )
        self._threshold = threshold
        self.forward, self.reverse = strand_score_functions(motif, background, self.config.granularity)

    @property
    def threshold(self) -> Threshold:
        if self._threshold is None:
            self._threshold = score_threshold(self.motif, self.background, self.config)
        return self._threshold

    @property
    def length(self) -> int:
        return self.motif.length

    def _strand_function(self, strand: Strand) -> ScoreFunction:
        if strand not in ("+", "-"):
            raise ValidationError(f"strand must be '+' or '-', got {strand!r}")
        return self.forward if strand == "+" else self.reverse

    def _index_scores(self, encoded: np.ndarray, strand: Strand) -> np.ndarray:
        fn = self._strand_function(strand)
        return score_positions(encoded, fn.seeds, fn.columns, fn.order)

    def _batch_index_scores(self, ragged: RaggedData, strand: Strand) -> RaggedData:
        fn = self._strand_function(strand)
        return batch_scores(ragged, fn.seeds, fn.columns, fn.order)

    def score_strand(self, sequence: SequenceLike, strand: Strand = "+") -> np.ndarray:
        """Scores of every window on one strand."""
        return self._index_scores(encode_sequence(sequence), strand) * self.config.granularity

    def score_sequence(self, sequence: SequenceLike) -> Tuple[np.ndarray, np.ndarray]:
        """Forward and reverse scores of every window."""
        encoded = encode_sequence(sequence)
        granularity = self.config.granularity
        return self._index_scores(encoded, "+") * granularity, self._index_scores(encoded, "-") * granularity

    def _result(self, fwd_index: np.ndarray, rev_index: np.ndarray) -> ScanResult:
        cutoff = self.threshold.index
        forward_hits = fwd_index >= cutoff
        if self.config.singlestranded:
            reverse_hits = np.zeros(rev_index.size, dtype=bool)
        else:
            reverse_hits = rev_index >= cutoff
        granularity = self.config.granularity
        return ScanResult(fwd_index * granularity, rev_index * granularity, forward_hits, reverse_hits)

    def scan_sequence(self, sequence: SequenceLike) -> ScanResult:
        """Scores and hits of a single sequence."""
        encoded = encode_sequence(sequence)
        return self._result(self._index_scores(encoded, "+"), self._index_scores(encoded, "-"))

    def scan_sequences(self, sequences: SequenceCollection) -> List[ScanResult]:
        """Scores and hits of every sequence in a collection."""
        ragged = encode_sequences(sequences)
        fwd = self._batch_index_scores(ragged, "+")
        rev = self._batch_index_scores(ragged, "-")
        logging.getLogger(__name__).debug(f"Scanned {ragged.num_sequences} sequences, {fwd.data.size} windows per strand")
        return [self._result(fwd.get_slice(i), rev.get_slice(i)) for i in range(ragged.num_sequences)]

    def motif_hits(self, sequence: SequenceLike) -> Tuple[np.ndarray, np.ndarray]:
        """Forward and reverse hit flags of a single sequence."""
        result = self.scan_sequence(sequence)
        return result.forward_hits, result.reverse_hits

    def num_motif_hits(self, sequences: SequenceCollection) -> pd.DataFrame:
        """Hit counts per sequence.

        Columns: ``seq_index``, ``length``, ``forward``, ``reverse``, ``total``.
        """
        ragged = encode_sequences(sequences)
        results = self.scan_sequences(ragged)
        forward = np.array([r.n_forward for r in results], dtype=np.int64)
        reverse = np.array([r.n_reverse for r in results], dtype=np.int64)
        return pd.DataFrame(
            {
                "seq_index": np.arange(ragged.num_sequences),
                "length": ragged.lengths,
                "forward": forward,
                "reverse": reverse,
                "total": forward + reverse,
            }
        )

    def hit_table(self, sequences: SequenceCollection) -> pd.DataFrame:
        """One row per hit with its position, strand, score and site."""
        ragged = encode_sequences(sequences)
        results = []
        for seq_idx, result in enumerate(self.scan_sequences(ragged)):
            seq = ragged.get_slice(seq_idx)
            for strand, hits, scores in (
                ("+", result.forward_hits, result.forward_scores),
                ("-", result.reverse_hits, result.reverse_scores),
            ):
                for pos in np.flatnonzero(hits):
                    results.append(
                        {
                            "seq_index": seq_idx,
                            "start": int(pos),
                            "end": int(pos + self.length),
                            "strand": strand,
                            "score": float(scores[pos]),
                            "site": decode_sequence(seq[pos : pos + self.length]),
                        }
                    )
        columns = ["seq_index", "start", "end", "strand", "score", "site"]
        return pd.DataFrame(results, columns=columns).sort_values(["seq_index", "start", "strand"], ignore_index=True)

    def _equal_length(self, sequences: SequenceCollection) -> RaggedData:
        ragged = encode_sequences(sequences)
        if ragged.num_sequences == 0:
            raise ValidationError("At least one sequence is required for a profile")
        lengths = ragged.lengths
        if np.any(lengths != lengths[0]):
            raise ValidationError(
                f"Profiles require equally long sequences, got lengths between {lengths.min()} and {lengths.max()}"
            )
        return ragged

    def score_profile(self, sequences: SequenceCollection) -> pd.DataFrame:
        """Mean forward and reverse score per window position across equally long sequences."""
        ragged = self._equal_length(sequences)
        profile = {}
        for strand, name in (("+", "forward"), ("-", "reverse")):
            scores = self._batch_index_scores(ragged, strand)
            n_windows = scores.get_length(0)
            mean = scores.data.reshape(-1, n_windows).mean(axis=0) if n_windows else np.zeros(0)
            profile[name] = mean * self.config.granularity
        return pd.DataFrame({"position": np.arange(n_windows), **profile})

    def hit_profile(self, sequences: SequenceCollection) -> pd.DataFrame:
        """Fraction of sequences with a hit at each window position, per strand."""
        results = self.scan_sequences(self._equal_length(sequences))
        n_windows = len(results[0])
        forward = np.vstack([r.forward_hits for r in results]).mean(axis=0)
        reverse = np.vstack([r.reverse_hits for r in results]).mean(axis=0)
        return pd.DataFrame({"position": np.arange(n_windows), "forward": forward, "reverse": reverse})

    def score_histogram(self, sequences: SequenceCollection) -> pd.DataFrame:
        """Observed window score counts over the full theoretical score range.

        Both strands contribute unless the config is single-stranded.
        """
        ragged = encode_sequences(sequences)
        strands = ["+"] if self.config.singlestranded else ["+", "-"]
        bounds = [self._strand_function(strand).bounds() for strand in strands]
        low = min(b[0] for b in bounds)
        high = max(b[1] for b in bounds)
        counts = np.zeros(high - low + 1, dtype=np.int64)
        for strand in strands:
            scores = self._batch_index_scores(ragged, strand)
            counts += np.bincount(scores.data - low, minlength=counts.size)
        return pd.DataFrame({"score": (low + np.arange(counts.size)) * self.config.granularity, "count": counts})


def _scanner(motif, background, config=None, alpha=None, singlestranded=None, threshold=None) -> SequenceScanner:
    cfg = resolve_config(config, alpha=alpha, singlestranded=singlestranded)
    return SequenceScanner(motif, background, cfg, threshold=threshold)


def score_strand(
    sequence: SequenceLike,
    motif: Motif,
    background: BackgroundModel,
    strand: Strand = "+",
    config: Optional[CounterConfig] = None,
) -> np.ndarray:
    """Scores of every window of ``sequence`` on one strand."""
    return _scanner(motif, background, config).score_strand(sequence, strand)


def score_sequence(
    sequence: SequenceLike,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Forward and reverse scores of every window of ``sequence``."""
    return _scanner(motif, background, config).score_sequence(sequence)


def scan_sequence(
    sequence: SequenceLike,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
    threshold: Optional[Threshold] = None,
) -> ScanResult:
    return _scanner(motif, background, config, alpha, singlestranded, threshold).scan_sequence(sequence)


def scan_sequences(
    sequences: SequenceCollection,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
    threshold: Optional[Threshold] = None,
) -> List[ScanResult]:
    return _scanner(motif, background, config, alpha, singlestranded, threshold).scan_sequences(sequences)


def motif_hits(
    sequence: SequenceLike,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    return _scanner(motif, background, config, alpha, singlestranded).motif_hits(sequence)


def num_motif_hits(
    sequences: SequenceCollection,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
) -> pd.DataFrame:
    return _scanner(motif, background, config, alpha, singlestranded).num_motif_hits(sequences)


def hit_table(
    sequences: SequenceCollection,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
) -> pd.DataFrame:
    return _scanner(motif, background, config, alpha, singlestranded).hit_table(sequences)


def score_profile(
    sequences: SequenceCollection,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
) -> pd.DataFrame:
    return _scanner(motif, background, config).score_profile(sequences)


def hit_profile(
    sequences: SequenceCollection,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    alpha: Optional[float] = None,
    singlestranded: Optional[bool] = None,
) -> pd.DataFrame:
    return _scanner(motif, background, config, alpha, singlestranded).hit_profile(sequences)


def score_histogram(
    sequences: SequenceCollection,
    motif: Motif,
    background: BackgroundModel,
    config: Optional[CounterConfig] = None,
    singlestranded: Optional[bool] = None,
) -> pd.DataFrame:
    return _scanner(motif, background, config, singlestranded=singlestranded).score_histogram(sequences)
