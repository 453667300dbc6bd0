"""
Background Model Module
=======================

Order-d Markov chain over the DNA alphabet used as the null model of all
computations.

Contexts are the 4**d possible d-mers encoded as base-4 integers with the most
recent symbol as the least significant digit, so the successor of context ``u``
after symbol ``x`` is ``(4 * u + x) % 4**d``.  For ``d = 0`` there is a single
empty context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dc_field
from typing import List

import numpy as np
from scipy import linalg

from motifcount.exceptions import ModelInvalidError, ValidationError
from motifcount.functions import word_probability
from motifcount.motif import Motif
from motifcount.sequences import SequenceLike, encode_sequence

DISTRIBUTION_TOLERANCE = 1e-6
STATIONARITY_TOLERANCE = 1e-6


def _context_transitions(transition: np.ndarray) -> np.ndarray:
    """Transition matrix of the chain over contexts (4**d x 4**d)."""
    n_ctx = transition.shape[0]
    chain = np.zeros((n_ctx, n_ctx))
    for u in range(n_ctx):
        for x in range(4):
            chain[u, (4 * u + x) % n_ctx] += transition[u, x]
    return chain


@dataclass(frozen=True, eq=False)
class BackgroundModel:
    """Immutable order-d Markov background.

    Attributes
    ----------
    order : int
        Markov order d.
    stationary : np.ndarray
        Stationary probabilities of the 4**d contexts.
    transition : np.ndarray
        Array of shape (4**d, 4): P(next symbol | context).
    """

    order: int
    stationary: np.ndarray = dc_field(repr=False)
    transition: np.ndarray = dc_field(repr=False)

    def __post_init__(self):
        """Validate the tables and store read-only copies."""
        if isinstance(self.order, bool) or not isinstance(self.order, (int, np.integer)) or self.order < 0:
            raise ModelInvalidError(f"Background order must be a non-negative integer, got {self.order!r}")
        order = int(self.order)
        n_ctx = 4**order

        stationary = np.array(self.stationary, dtype=np.float64).reshape(-1)
        transition = np.array(self.transition, dtype=np.float64)
        if stationary.shape != (n_ctx,):
            raise ModelInvalidError(
                f"Stationary vector of an order-{order} background must have {n_ctx} entries, got {stationary.size}"
            )
        if transition.shape != (n_ctx, 4):
            raise ModelInvalidError(
                f"Transition table of an order-{order} background must have shape ({n_ctx}, 4), "
                f"got {transition.shape}"
            )
        for name, table in (("stationary", stationary), ("transition", transition)):
            if not np.all(np.isfinite(table)) or np.any(table <= 0.0):
                raise ModelInvalidError(f"Background {name} probabilities must be finite and strictly positive")

        if abs(stationary.sum() - 1.0) > DISTRIBUTION_TOLERANCE:
            raise ModelInvalidError(f"Stationary vector sums to {stationary.sum():.8f} instead of 1")
        row_sums = transition.sum(axis=1)
        bad = np.flatnonzero(np.abs(row_sums - 1.0) > DISTRIBUTION_TOLERANCE)
        if bad.size:
            raise ModelInvalidError(f"Transition row {int(bad[0])} sums to {row_sums[bad[0]]:.8f} instead of 1")

        drift = np.abs(stationary @ _context_transitions(transition) - stationary).max()
        if drift > STATIONARITY_TOLERANCE:
            logging.getLogger(__name__).warning(
                f"Stationary vector is not stationary under the transitions (max deviation {drift:.3g})"
            )

        stationary.setflags(write=False)
        transition.setflags(write=False)
        object.__setattr__(self, "order", order)
        object.__setattr__(self, "stationary", stationary)
        object.__setattr__(self, "transition", transition)

    @classmethod
    def uniform(cls, order: int = 0) -> BackgroundModel:
        """Background with all symbols equally likely."""
        n_ctx = 4**order
        return cls(order, np.full(n_ctx, 1.0 / n_ctx), np.full((n_ctx, 4), 0.25))

    @classmethod
    def from_transitions(cls, transition) -> BackgroundModel:
        """Build a background from its transition table, deriving the stationary vector.

        The order follows from the number of rows, which must be a power of 4.
        """
        transition = np.asarray(transition, dtype=np.float64)
        if transition.ndim != 2 or transition.shape[1] != 4:
            raise ModelInvalidError(f"Transition table must have shape (4**d, 4), got {transition.shape}")
        n_ctx = transition.shape[0]
        order = 0
        while 4**order < n_ctx:
            order += 1
        if 4**order != n_ctx:
            raise ModelInvalidError(f"Number of transition rows ({n_ctx}) is not a power of 4")
        if order == 0:
            return cls(0, np.ones(1), transition)

        eigvals, eigvecs = linalg.eig(_context_transitions(transition).T)
        vec = np.real(eigvecs[:, np.argmin(np.abs(eigvals - 1.0))])
        stationary = np.abs(vec) / np.abs(vec).sum()
        return cls(order, stationary, transition)

    @property
    def n_contexts(self) -> int:
        """Number of contexts (4**order)."""
        return self.stationary.shape[0]

    def context_index(self, context: SequenceLike) -> int:
        """Integer index of a d-mer context."""
        encoded = encode_sequence(context)
        if encoded.size != self.order:
            raise ValidationError(f"Context must have length {self.order}, got {encoded.size}")
        index = 0
        for symbol in encoded:
            index = index * 4 + int(symbol)
        return index

    def _resolve_context(self, context) -> int:
        if isinstance(context, (int, np.integer)):
            if not 0 <= context < self.n_contexts:
                raise ValidationError(f"Context index {context} out of range [0, {self.n_contexts})")
            return int(context)
        return self.context_index(context)

    def stationary_probability(self, context) -> float:
        """Stationary probability of a context (index or d-mer)."""
        return float(self.stationary[self._resolve_context(context)])

    def transition_probability(self, context, symbol) -> float:
        """P(symbol | context); ``symbol`` is a letter or its code."""
        code = int(encode_sequence(symbol)[0]) if isinstance(symbol, str) else int(symbol)
        if not 0 <= code < 4:
            raise ValidationError(f"Symbol code must lie in 0..3, got {code}")
        return float(self.transition[self._resolve_context(context), code])

    def prefix_marginals(self) -> List[np.ndarray]:
        """Stationary probabilities of the leading 1..d symbols of a context.

        Element ``c`` has 4**(c + 1) entries indexed like a (c + 1)-mer.
        """
        d = self.order
        return [self.stationary.reshape(4 ** (c + 1), 4 ** (d - 1 - c)).sum(axis=1) for c in range(d)]

    def sequence_probability(self, sequence: SequenceLike) -> float:
        """Probability of observing ``sequence`` at a random position of the stationary chain."""
        encoded = encode_sequence(sequence)
        n = encoded.size
        if n == 0:
            return 1.0
        if n < self.order:
            index = 0
            for symbol in encoded:
                index = index * 4 + int(symbol)
            return float(self.prefix_marginals()[n - 1][index])
        return float(word_probability(encoded, self.stationary, self.transition, self.order))

    def is_strand_symmetric(self, atol: float = 1e-9) -> bool:
        """Return True if every (d+1)-mer is as likely as its reverse complement.

        Under such a chain any word and its reverse complement have the same
        probability, so both strands look alike.
        """
        k = self.order + 1
        words = (self.stationary[:, None] * self.transition).reshape(-1)
        digits = np.stack(np.unravel_index(np.arange(4**k), (4,) * k), axis=1)
        rc_index = np.ravel_multi_index(tuple((3 - digits[:, ::-1]).T), (4,) * k)
        return bool(np.allclose(words, words[rc_index], rtol=0.0, atol=atol))

    def check_compatible(self, motif: Motif) -> None:
        """Raise ValidationError if ``motif`` cannot be scored under this background."""
        if not isinstance(motif, Motif):
            raise ValidationError(f"Expected a Motif, got {type(motif)!r}")
        if motif.length <= self.order:
            raise ValidationError(
                f"Motif length ({motif.length}) must exceed the background order ({self.order})"
            )

    def __hash__(self):
        """Hash on order and the table bytes."""
        return hash((self.order, self.stationary.tobytes(), self.transition.tobytes()))
