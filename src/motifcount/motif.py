"""Validated position frequency matrices."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dc_field

import numpy as np

from motifcount.exceptions import ValidationError

COLUMN_SUM_TOLERANCE = 1e-6


@dataclass(frozen=True, eq=False)
class Motif:
    """Immutable motif model.

    Attributes
    ----------
    matrix : np.ndarray
        Array of shape (4, L); rows are A, C, G, T and every column is a
        probability distribution with strictly positive entries.
    name : str
        Human-readable name.
    """

    matrix: np.ndarray = dc_field(repr=False)
    name: str = "motif"

    def __post_init__(self):
        """Validate the matrix and freeze a private copy of it."""
        matrix = np.array(self.matrix, dtype=np.float64)
        if matrix.ndim != 2 or matrix.shape[0] != 4:
            raise ValidationError(f"Motif must be a 4 x L matrix, got shape {matrix.shape}")
        if matrix.shape[1] == 0:
            raise ValidationError("Motif must have at least one column")
        if not np.all(np.isfinite(matrix)) or np.any(matrix <= 0.0):
            raise ValidationError("Motif entries must be finite and strictly positive")
        column_sums = matrix.sum(axis=0)
        bad = np.flatnonzero(np.abs(column_sums - 1.0) > COLUMN_SUM_TOLERANCE)
        if bad.size:
            raise ValidationError(f"Motif column {int(bad[0])} sums to {column_sums[bad[0]]:.8f} instead of 1")
        matrix.setflags(write=False)
        object.__setattr__(self, "matrix", matrix)

    @property
    def length(self) -> int:
        """Number of motif columns."""
        return self.matrix.shape[1]

    def reverse_complement(self) -> Motif:
        """Motif for scanning the reverse strand (A<->T, C<->G, columns reversed)."""
        return Motif(self.matrix[::-1, ::-1], name=f"{self.name}_rc")

    def is_palindromic(self, atol: float = 1e-12) -> bool:
        """Return True if the motif equals its reverse complement."""
        return bool(np.allclose(self.matrix, self.matrix[::-1, ::-1], rtol=0.0, atol=atol))

    def __hash__(self):
        """Hash on name and the matrix bytes."""
        return hash((self.name, self.matrix.shape, self.matrix.tobytes()))
