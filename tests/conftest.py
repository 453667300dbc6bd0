"""
Pytest configuration and common fixtures for motifcount tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

from motifcount import BackgroundModel, Motif

# Force testing the installed package, not the local source
project_root = str(Path(__file__).parent.parent.absolute())
if project_root in sys.path:
    sys.path.remove(project_root)


ORDER1_TRANSITIONS = np.array(
    [
        [0.4, 0.1, 0.2, 0.3],
        [0.25, 0.25, 0.25, 0.25],
        [0.1, 0.4, 0.4, 0.1],
        [0.3, 0.2, 0.1, 0.4],
    ]
)


def consensus_motif(consensus: str, match: float, name: str) -> Motif:
    """Motif preferring ``consensus`` with probability ``match`` per column."""
    other = (1.0 - match) / 3.0
    matrix = np.full((4, len(consensus)), other)
    for col, symbol in enumerate(consensus):
        matrix["ACGT".index(symbol), col] = match
    return Motif(matrix, name=name)


@pytest.fixture
def uniform_bg():
    """Order-0 background with all symbols equally likely."""
    return BackgroundModel.uniform(0)


@pytest.fixture
def order1_bg():
    """Order-1 background with a derived stationary vector."""
    return BackgroundModel.from_transitions(ORDER1_TRANSITIONS)


@pytest.fixture
def order2_bg():
    """Order-2 background with random transitions."""
    rng = np.random.default_rng(1)
    return BackgroundModel.from_transitions(rng.dirichlet(np.ones(4) * 3.0, size=16))


@pytest.fixture
def a_motif():
    """Length-4 motif preferring A in every column (0.7 vs 0.1)."""
    return consensus_motif("AAAA", 0.7, "A4")


@pytest.fixture
def mixed_motif():
    """Length-6 motif with heterogeneous columns."""
    columns = [
        [0.5, 0.2, 0.2, 0.1],
        [0.1, 0.6, 0.2, 0.1],
        [0.25, 0.25, 0.25, 0.25],
        [0.1, 0.1, 0.7, 0.1],
        [0.3, 0.3, 0.2, 0.2],
        [0.05, 0.15, 0.1, 0.7],
    ]
    return Motif(np.array(columns).T, name="mixed")


@pytest.fixture
def short_motif():
    """Length-4 motif used for exhaustive overlap checks."""
    columns = [
        [0.5, 0.2, 0.2, 0.1],
        [0.1, 0.6, 0.2, 0.1],
        [0.1, 0.1, 0.7, 0.1],
        [0.05, 0.15, 0.1, 0.7],
    ]
    return Motif(np.array(columns).T, name="short")


@pytest.fixture
def palindrome_motif():
    """Palindromic motif ACGCGT (0.7 vs 0.1)."""
    return consensus_motif("ACGCGT", 0.7, "ACGCGT")


@pytest.fixture
def strong_motif():
    """Length-8 motif GATTACAG with strong preferences (0.85 vs 0.05)."""
    return consensus_motif("GATTACAG", 0.85, "GATTACAG")


@pytest.fixture
def gc_motif():
    """Length-6 motif GGGCCA (0.8 vs 0.0667), not a palindrome."""
    return consensus_motif("GGGCCA", 0.8, "GGGCCA")
