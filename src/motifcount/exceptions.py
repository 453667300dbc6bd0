"""
Exception classes for motifcount.

All errors are raised synchronously by the call that detects them.  None of
them is transient, so callers are expected to fix the input (or relax
``alpha``) rather than retry.
"""

from __future__ import annotations

from typing import Optional


class MotifCountError(Exception):
    """Base exception for all motifcount errors."""

    pass


class ValidationError(MotifCountError, ValueError):
    """Raised when a motif, sequence, option or input combination is malformed."""

    pass


class ModelInvalidError(ValidationError):
    """Raised when a background model is not a proper Markov chain of its order."""

    pass


class ThresholdUnattainableError(MotifCountError):
    """Raised when the requested false positive level cannot be reached.

    This happens for short motifs or very stringent ``alpha``: even the highest
    attainable score occurs with a probability above ``alpha``.
    """

    def __init__(self, alpha: float, min_alpha: Optional[float] = None):
        msg = f"The significance level alpha={alpha:g} is too stringent for the given motif."
        if min_alpha is not None:
            msg += f" The smallest attainable false positive probability is {min_alpha:.6g}."
        msg += " Motif hits are impossible at that level; use a less stringent alpha."
        super().__init__(msg)
        self.alpha = alpha
        self.min_alpha = min_alpha


class NumericToleranceError(MotifCountError, ArithmeticError):
    """Raised when a computed probability distribution does not sum to one."""

    def __init__(self, what: str, total: float, tolerance: float):
        super().__init__(f"{what} sums to {total:.12g}, deviation from 1 exceeds tolerance {tolerance:g}")
        self.what = what
        self.total = total
        self.tolerance = tolerance
