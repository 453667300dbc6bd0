"""Immutable options shared by all computations."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Optional

from motifcount.exceptions import ValidationError


@dataclass(frozen=True)
class CounterConfig:
    """Options controlling threshold calibration, strands and numerics.

    Attributes
    ----------
    alpha : float
        Target false positive probability of a single motif hit.
    granularity : float
        Pitch of the discretized score grid.
    singlestranded : bool
        If True only the forward strand is scanned and modelled.
    n_jobs : int
        Number of parallel jobs for independent units of work (-1 for all cores).
    tolerance : float
        Accepted deviation of a probability distribution's total mass from 1.
    """

    alpha: float = 0.001
    granularity: float = 0.1
    singlestranded: bool = False
    n_jobs: int = 1
    tolerance: float = 1e-6

    def __post_init__(self):
        """Validate option values."""
        if not 0.0 < self.alpha < 1.0:
            raise ValidationError(f"alpha must lie in (0, 1), got {self.alpha!r}")
        if not self.granularity > 0.0:
            raise ValidationError(f"granularity must be positive, got {self.granularity!r}")
        if self.n_jobs == 0:
            raise ValidationError("n_jobs must be a positive number or -1")
        if not 0.0 < self.tolerance < 1.0:
            raise ValidationError(f"tolerance must lie in (0, 1), got {self.tolerance!r}")


DEFAULT_CONFIG = CounterConfig()


def create_config(
    alpha: float = 0.001,
    granularity: float = 0.1,
    singlestranded: bool = False,
    n_jobs: int = 1,
    tolerance: float = 1e-6,
) -> CounterConfig:
    """Build a validated config."""
    return CounterConfig(
        alpha=float(alpha),
        granularity=float(granularity),
        singlestranded=bool(singlestranded),
        n_jobs=int(n_jobs),
        tolerance=float(tolerance),
    )


def resolve_config(config: Optional[CounterConfig] = None, **overrides) -> CounterConfig:
    """Apply per-call overrides on top of ``config`` (or the default).

    Overrides equal to None are ignored so that callers can forward their
    optional keyword arguments unchanged.
    """
    base = config if config is not None else DEFAULT_CONFIG
    if not isinstance(base, CounterConfig):
        raise ValidationError(f"Unsupported config type: {type(base)!r}")
    changes = {key: value for key, value in overrides.items() if value is not None}
    if not changes:
        return base
    return dataclasses.replace(base, **changes)
