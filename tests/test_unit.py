"""
Unit tests for the building blocks of motifcount.

These tests validate the correctness of individual functions from:
- motifcount/config.py, sequences.py, motif.py, background.py
- motifcount/scoring.py
- motifcount/overlap.py
- motifcount/hitcount.py and enrichment.py
"""

import dataclasses
import itertools
import logging

import numpy as np
import pytest
from scipy import stats

from motifcount import (
    DEFAULT_CONFIG,
    BackgroundModel,
    HitCountDistribution,
    ModelInvalidError,
    Motif,
    NumericToleranceError,
    OverlapProbabilitySet,
    ScoreFunction,
    ThresholdUnattainableError,
    ValidationError,
    calibrate_threshold,
    compound_poisson_dist,
    create_config,
    decode_sequence,
    encode_sequence,
    encode_sequences,
    enrichment_test,
    hit_count_distribution,
    resolve_config,
    reverse_complement,
    score_distribution,
    score_distribution_bf,
    score_threshold,
)
from motifcount.functions import check_distribution, joint_hit_probability, score_window, word_probability
from motifcount.hitcount import registry as count_registry
from motifcount.overlap import correct_overlaps
from motifcount.scoring import strand_score_functions
from motifcount.sequences import ragged_from_list


def _no_overlap_set(alpha, length, alpha_reverse=None):
    """Overlap set of a motif whose hits never overlap."""
    zeros = np.zeros(length)
    return OverlapProbabilitySet(
        alpha=alpha,
        beta=zeros,
        beta3p=zeros,
        beta5p=zeros,
        gamma=np.zeros((3, length)),
        length=length,
        singlestranded=False,
        alpha_reverse=alpha_reverse,
    )


# --- config -----------------------------------------------------------------


def test_default_config():
    """Test default option values"""
    assert DEFAULT_CONFIG.alpha == 0.001
    assert DEFAULT_CONFIG.granularity == 0.1
    assert DEFAULT_CONFIG.singlestranded is False
    assert DEFAULT_CONFIG.n_jobs == 1


@pytest.mark.parametrize(
    "kwargs",
    [{"alpha": 0.0}, {"alpha": 1.5}, {"granularity": -0.1}, {"n_jobs": 0}, {"tolerance": 0.0}],
)
def test_create_config_rejects_invalid_values(kwargs):
    """Test that invalid option values raise ValidationError"""
    with pytest.raises(ValidationError):
        create_config(**kwargs)


def test_resolve_config_overrides():
    """Test per-call overrides on top of a base config"""
    base = create_config(alpha=0.01)
    resolved = resolve_config(base, alpha=None, singlestranded=True)
    assert resolved.alpha == 0.01
    assert resolved.singlestranded is True
    assert resolve_config(base) is base
    assert resolve_config() is DEFAULT_CONFIG
    with pytest.raises(dataclasses.FrozenInstanceError):
        base.alpha = 0.5


# --- sequences --------------------------------------------------------------


def test_encode_decode_sequence():
    """Test encoding of DNA strings"""
    encoded = encode_sequence("ACGTacgt")
    np.testing.assert_array_equal(encoded, [0, 1, 2, 3, 0, 1, 2, 3])
    assert encoded.dtype == np.int8
    assert decode_sequence(encoded) == "ACGTACGT"


def test_encode_sequence_rejects_invalid_symbols():
    """Test that symbols other than ACGT raise ValidationError"""
    with pytest.raises(ValidationError):
        encode_sequence("ACNGT")
    with pytest.raises(ValidationError):
        encode_sequence(np.array([0, 1, 4]))


def test_reverse_complement_sequence():
    """Test reverse complement of encoded sequences"""
    assert decode_sequence(reverse_complement(encode_sequence("AACG"))) == "CGTT"


def test_ragged_from_list():
    """Test RaggedData construction from a list of arrays"""
    ragged = ragged_from_list([np.array([0, 1, 2]), np.array([3]), np.array([], dtype=np.int8)], dtype=np.int8)
    assert ragged.num_sequences == 3
    np.testing.assert_array_equal(ragged.lengths, [3, 1, 0])
    np.testing.assert_array_equal(ragged.get_slice(1), [3])
    assert len(encode_sequences(["ACG", "T"])) == 2


# --- motif ------------------------------------------------------------------


def test_motif_validation():
    """Test rejection of malformed motifs"""
    with pytest.raises(ValidationError):
        Motif(np.full((4, 3), 0.3))
    with pytest.raises(ValidationError):
        Motif(np.array([[1.0, 0.5], [0.0, 0.5], [0.0, 0.0], [0.0, 0.0]]))
    with pytest.raises(ValidationError):
        Motif(np.full((3, 2), 1.0 / 3.0))


def test_motif_is_immutable(a_motif):
    """Test that the motif matrix cannot be changed"""
    assert not a_motif.matrix.flags.writeable
    with pytest.raises(ValueError):
        a_motif.matrix[0, 0] = 0.5


def test_motif_reverse_complement(mixed_motif, palindrome_motif):
    """Test reverse complement of motifs and the palindrome check"""
    rc = mixed_motif.reverse_complement()
    np.testing.assert_array_equal(rc.matrix, mixed_motif.matrix[::-1, ::-1])
    np.testing.assert_array_equal(rc.reverse_complement().matrix, mixed_motif.matrix)
    assert not mixed_motif.is_palindromic()
    assert palindrome_motif.is_palindromic()


def test_motif_hash_follows_matrix(mixed_motif, short_motif):
    """Test that motifs sharing a name but not a matrix hash apart"""
    same_name = Motif(short_motif.matrix, name=mixed_motif.name)
    copy = Motif(mixed_motif.matrix.copy(), name=mixed_motif.name)
    assert hash(copy) == hash(mixed_motif)
    assert hash(same_name) != hash(mixed_motif)
    widened = Motif(np.hstack([mixed_motif.matrix[:, :4], short_motif.matrix[:, :2]]), name=mixed_motif.name)
    assert hash(widened) != hash(mixed_motif)
    assert len({mixed_motif, copy}) == 2


# --- background -------------------------------------------------------------


def test_uniform_background():
    """Test uniform background construction"""
    bg = BackgroundModel.uniform(2)
    assert bg.n_contexts == 16
    assert bg.stationary_probability("AC") == pytest.approx(1.0 / 16)
    assert bg.transition_probability("AC", "G") == pytest.approx(0.25)


@pytest.mark.parametrize(
    "order, stationary, transition",
    [
        (0, [1.0], [[0.5, 0.5, 0.5, 0.5]]),
        (0, [1.0], [[0.5, 0.5, 0.0, 0.0]]),
        (1, [1.0], [[0.25] * 4]),
        (1, [0.25] * 4, [[0.25] * 4] * 3),
        (-1, [1.0], [[0.25] * 4]),
        (1, [0.5, 0.5, 0.5, 0.5], [[0.25] * 4] * 4),
    ],
)
def test_background_validation(order, stationary, transition):
    """Test rejection of malformed backgrounds"""
    with pytest.raises(ModelInvalidError):
        BackgroundModel(order, np.array(stationary), np.array(transition))


def test_model_invalid_is_validation_error():
    """Test error taxonomy"""
    assert issubclass(ModelInvalidError, ValidationError)
    assert issubclass(ValidationError, ValueError)


def test_from_transitions_stationary(order1_bg):
    """Test that the derived stationary vector is stationary"""
    pi = order1_bg.stationary
    t = order1_bg.transition
    # order 1: the context is the previous symbol
    np.testing.assert_allclose(pi @ t, pi, atol=1e-10)
    assert pi.sum() == pytest.approx(1.0)


def test_non_stationary_background_warns(caplog):
    """Test that a non-stationary start vector is accepted with a warning"""
    transition = np.array([[0.7, 0.1, 0.1, 0.1]] * 4)
    with caplog.at_level(logging.WARNING):
        bg = BackgroundModel(1, np.full(4, 0.25), transition)
    assert bg.order == 1
    assert any("not stationary" in record.message for record in caplog.records)


def test_sequence_probability(uniform_bg, order1_bg):
    """Test probability of short words"""
    assert uniform_bg.sequence_probability("AC") == pytest.approx(1.0 / 16)
    expected = order1_bg.stationary[0] * 0.1 * 0.25
    assert order1_bg.sequence_probability("ACG") == pytest.approx(expected)


def test_strand_symmetry(order1_bg, order2_bg):
    """Test detection of backgrounds that treat both strands alike"""
    assert BackgroundModel.uniform(0).is_strand_symmetric()
    assert BackgroundModel.uniform(2).is_strand_symmetric()
    assert BackgroundModel.from_transitions([[0.3, 0.2, 0.2, 0.3]]).is_strand_symmetric()
    assert not BackgroundModel.from_transitions([[0.4, 0.2, 0.2, 0.2]]).is_strand_symmetric()
    assert not order1_bg.is_strand_symmetric()
    assert not order2_bg.is_strand_symmetric()


def test_check_compatible(order1_bg):
    """Test that motifs must be longer than the background order"""
    with pytest.raises(ValidationError):
        order1_bg.check_compatible(Motif(np.full((4, 1), 0.25)))


# --- scoring ----------------------------------------------------------------


def test_score_function_matches_log_likelihood_ratio(mixed_motif, order1_bg):
    """Test that grid scores deviate from the exact score by at most L * granularity / 2"""
    granularity = 0.1
    fn = ScoreFunction.build(mixed_motif, order1_bg, granularity)
    rng = np.random.default_rng(0)
    m = mixed_motif.matrix
    for _ in range(50):
        word = rng.integers(0, 4, size=mixed_motif.length)
        exact = np.log(m[word[0], 0] / order1_bg.stationary[word[0]])
        for c in range(1, mixed_motif.length):
            exact += np.log(m[word[c], c] / order1_bg.transition[word[c - 1], word[c]])
        approx = fn.score_index(word.astype(np.int8)) * granularity
        assert abs(approx - exact) <= mixed_motif.length * granularity / 2 + 1e-9


def test_a_motif_max_score(a_motif, uniform_bg):
    """Test that AAAA carries the maximum score 4 * log(2.8)"""
    dist = score_distribution(a_motif, uniform_bg, granularity=0.001)
    assert dist.probabilities.sum() == pytest.approx(1.0)
    assert abs(dist.scores[-1] - 4 * np.log(2.8)) <= dist.max_discretization_error
    assert dist.probabilities[-1] == pytest.approx(0.25**4)
    fn = ScoreFunction.build(a_motif, uniform_bg, 0.001)
    assert fn.score_index("AAAA") == dist.indices[-1]


@pytest.mark.parametrize("bg_name", ["uniform_bg", "order1_bg", "order2_bg"])
def test_score_distribution_matches_brute_force(mixed_motif, bg_name, request):
    """Test that the dynamic program equals exhaustive enumeration"""
    bg = request.getfixturevalue(bg_name)
    dp = score_distribution(mixed_motif, bg)
    bf = score_distribution_bf(mixed_motif, bg)
    assert dp.offset == bf.offset
    assert dp.probabilities.size == bf.probabilities.size
    np.testing.assert_allclose(dp.probabilities, bf.probabilities, rtol=1e-9, atol=1e-14)
    assert dp.probabilities.sum() == pytest.approx(1.0, abs=1e-9)
    assert dp.probabilities[0] > 0 and dp.probabilities[-1] > 0


def test_score_distribution_frame(mixed_motif, uniform_bg):
    """Test the tabular view of a score distribution"""
    dist = score_distribution(mixed_motif, uniform_bg)
    frame = dist.to_frame()
    assert list(frame.columns) == ["score", "probability"]
    assert len(frame) == dist.probabilities.size
    assert dist.tail(dist.scores[0]) == pytest.approx(1.0)
    assert dist.tail(dist.scores[-1] + 1.0) == 0.0


def test_brute_force_limited_to_short_motifs(uniform_bg):
    """Test that enumeration refuses long motifs"""
    with pytest.raises(ValidationError):
        score_distribution_bf(Motif(np.full((4, 11), 0.25)), uniform_bg)


def test_threshold_monotone_in_alpha(mixed_motif, uniform_bg):
    """Test that relaxing alpha never raises the threshold"""
    dist = score_distribution(mixed_motif, uniform_bg)
    previous = np.inf
    for alpha in [0.01, 0.02, 0.05, 0.1, 0.2, 0.5]:
        threshold = calibrate_threshold(dist, alpha)
        assert threshold.value <= previous
        assert threshold.alpha <= alpha
        assert threshold.alpha == pytest.approx(dist.tail(threshold.value))
        previous = threshold.value


def test_palindrome_threshold_on_empty_bin(palindrome_motif, uniform_bg):
    """Test calibration when the cutoff falls between occupied bins"""
    threshold = score_threshold(palindrome_motif, uniform_bg, alpha=0.01)
    assert threshold.index == 23
    assert threshold.value == pytest.approx(2.3)
    assert threshold.alpha == pytest.approx(19.0 / 4096)
    assert threshold.requested_alpha == 0.01


def test_threshold_unattainable(a_motif, uniform_bg):
    """Test that too stringent alpha raises ThresholdUnattainableError"""
    with pytest.raises(ThresholdUnattainableError) as excinfo:
        score_threshold(a_motif, uniform_bg, alpha=0.001)
    assert excinfo.value.alpha == 0.001
    assert excinfo.value.min_alpha == pytest.approx(1.0 / 256)


def test_check_distribution_raises():
    """Test the normalization check"""
    check_distribution(np.array([0.5, 0.5]), 1e-6, "test")
    with pytest.raises(NumericToleranceError):
        check_distribution(np.array([0.5, 0.4]), 1e-6, "test")


# --- overlap ----------------------------------------------------------------


def _brute_force_joint(bg, first, second, offset, cutoff, length):
    total = 0.0
    for word in itertools.product(range(4), repeat=offset + length):
        w = np.array(word, dtype=np.int8)
        a = score_window(w, 0, length, first.seeds, first.columns, first.order)
        b = score_window(w, offset, length, second.seeds, second.columns, second.order)
        if a >= cutoff and b >= cutoff:
            total += word_probability(w, bg.stationary, bg.transition, bg.order)
    return total


@pytest.mark.parametrize("bg_name", ["uniform_bg", "order1_bg"])
def test_joint_hit_probability_matches_brute_force(short_motif, bg_name, request):
    """Test the two-dimensional dynamic program against enumeration"""
    bg = request.getfixturevalue(bg_name)
    forward, reverse = strand_score_functions(short_motif, bg, 0.1)
    cutoff = score_threshold(short_motif, bg, alpha=0.1).index
    length = short_motif.length
    for first, second in [(forward, forward), (forward, reverse), (reverse, forward)]:
        for offset in range(length):
            dp = joint_hit_probability(
                bg.stationary,
                bg.transition,
                bg.order,
                first.seeds,
                first.columns,
                second.seeds,
                second.columns,
                offset,
                cutoff,
            )
            bf = _brute_force_joint(bg, first, second, offset, cutoff, length)
            assert dp == pytest.approx(bf, rel=1e-9, abs=1e-15)


def test_correct_overlaps_single_strand():
    """Test the next-hit correction on hand-computed values"""
    gamma = np.zeros((3, 4))
    gamma[0] = [0.0, 0.2, 0.1, 0.05]
    b = correct_overlaps(gamma, singlestranded=True)
    np.testing.assert_allclose(b[0, 0], [0.0, 0.2, 0.06, 0.018])
    np.testing.assert_array_equal(b[0, 1], 0.0)
    np.testing.assert_array_equal(b[1, 0], 0.0)


def test_correct_overlaps_cross_strand():
    """Test that a sure reverse hit at offset 0 absorbs same-strand overlaps"""
    gamma = np.zeros((3, 3))
    gamma[0] = [0.0, 0.3, 0.1]
    gamma[1] = [1.0, 0.3, 0.1]
    gamma[2] = [0.0, 0.3, 0.1]
    b = correct_overlaps(gamma)
    assert b[0, 1, 0] == pytest.approx(1.0)
    np.testing.assert_allclose(b[0, 0, 1:], 0.0, atol=1e-15)
    assert np.all(b <= np.array([[gamma[0], gamma[1]], [gamma[2], gamma[0]]]) + 1e-15)


def test_correct_overlaps_reverse_row():
    """Test that a separate reverse/reverse row is corrected on its own"""
    gamma = np.zeros((3, 4))
    gamma[0] = [0.0, 0.2, 0.1, 0.05]
    b = correct_overlaps(gamma, gamma_reverse=np.array([0.0, 0.1, 0.05, 0.0]))
    np.testing.assert_allclose(b[0, 0], [0.0, 0.2, 0.06, 0.018])
    np.testing.assert_allclose(b[1, 1], [0.0, 0.1, 0.04, 0.0])
    mirrored = correct_overlaps(gamma, gamma_reverse=gamma[0])
    np.testing.assert_allclose(mirrored, correct_overlaps(gamma))


# --- hit counts -------------------------------------------------------------


def test_compound_poisson_without_overlaps_is_poisson():
    """Test that non-overlapping hits give a Poisson distribution"""
    overlap = _no_overlap_set(alpha=0.001, length=5)
    dist = compound_poisson_dist(overlap, [1004])
    expected = stats.poisson.pmf(dist.counts, 2.0)
    np.testing.assert_allclose(dist.probabilities, expected, atol=1e-10)
    assert dist.mean == pytest.approx(2.0, rel=1e-6)
    assert dist.method == "compound_poisson"


def test_hit_counts_use_reverse_hit_probability():
    """Test that forward and reverse hit probabilities both enter the expected count"""
    overlap = _no_overlap_set(alpha=0.001, length=5, alpha_reverse=0.003)
    np.testing.assert_allclose(overlap.hit_probabilities, [0.001, 0.003])
    dist = compound_poisson_dist(overlap, [1004])
    np.testing.assert_allclose(dist.probabilities, stats.poisson.pmf(dist.counts, 4.0), atol=1e-10)
    comb = hit_count_distribution(overlap, [1004], method="combinatorial")
    assert comb.mean == pytest.approx(4.0, rel=0.02)
    assert _no_overlap_set(alpha=0.001, length=5).alpha_reverse == 0.001


def test_compound_poisson_extends_support():
    """Test that a small max_hits is extended until the mass is complete"""
    overlap = _no_overlap_set(alpha=0.01, length=5)
    dist = compound_poisson_dist(overlap, [1004], max_hits=5)
    assert dist.max_hits > 5
    assert dist.probabilities.sum() == pytest.approx(1.0, abs=1e-6)


def test_hit_count_short_sequences():
    """Test that sequences shorter than the motif give zero hits"""
    overlap = _no_overlap_set(alpha=0.01, length=5)
    for method in ["compound_poisson", "combinatorial"]:
        dist = hit_count_distribution(overlap, [3, 4], method=method)
        assert dist.probabilities[0] == pytest.approx(1.0)
        assert dist.mean == pytest.approx(0.0)


def test_combinatorial_rejects_single_strand():
    """Test that the combinatorial model requires both strands"""
    overlap = dataclasses.replace(_no_overlap_set(alpha=0.01, length=5), singlestranded=True)
    with pytest.raises(ValidationError):
        hit_count_distribution(overlap, [200], method="combinatorial")


def test_registry_unknown_model():
    """Test registry lookup of an unknown model"""
    assert set(count_registry.keys()) >= {"compound_poisson", "combinatorial"}
    with pytest.raises(ValueError):
        count_registry.get("unknown")


def test_hit_count_distribution_tail():
    """Test tail and mean of a hit count distribution"""
    dist = HitCountDistribution(np.array([0.5, 0.3, 0.2]), "manual", (100,))
    assert dist.tail(0) == pytest.approx(1.0)
    assert dist.tail(1) == pytest.approx(0.5)
    assert dist.tail(3) == 0.0
    assert dist.mean == pytest.approx(0.7)
    assert list(dist.to_frame().columns) == ["count", "probability"]


# --- enrichment -------------------------------------------------------------


def test_enrichment_test_poisson():
    """Test p-value and fold against a Poisson(20) distribution"""
    dist = compound_poisson_dist(_no_overlap_set(alpha=0.01, length=5), [1004])
    at_mean = enrichment_test(dist, 20)
    assert 0.3 < at_mean.pvalue < 0.7
    assert at_mean.fold == pytest.approx(1.0, rel=1e-6)

    high = enrichment_test(dist, 60)
    assert high.pvalue < 1e-10
    assert high.fold == pytest.approx(3.0, rel=1e-6)
    assert high.pvalue == pytest.approx(stats.poisson.sf(59, 20.0), abs=1e-12)


def test_enrichment_test_edge_cases():
    """Test observed counts at and beyond the support"""
    dist = HitCountDistribution(np.array([0.5, 0.5]), "manual", (100,))
    assert enrichment_test(dist, 0).pvalue == pytest.approx(1.0)
    assert enrichment_test(dist, 5).pvalue == 0.0
    zero = HitCountDistribution(np.ones(1), "manual", (2,))
    assert enrichment_test(zero, 1).fold == np.inf
    with pytest.raises(ValidationError):
        enrichment_test(dist, -1)
