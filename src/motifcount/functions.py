import numpy as np
from numba import njit, prange

from motifcount.exceptions import NumericToleranceError
from motifcount.sequences import RaggedData


@njit(cache=True)
def score_window(data, start, length, seeds, columns, order):
    """Integer score of the window ``data[start:start + length]``.

    The first ``order`` symbols select the seed score, every following column
    adds its contribution given the preceding ``order`` symbols.
    """
    n_ctx = seeds.shape[0]
    ctx = 0
    for i in range(order):
        ctx = ctx * 4 + data[start + i]
    score = seeds[ctx]
    for c in range(order, length):
        x = data[start + c]
        score += columns[c, ctx, x]
        ctx = (ctx * 4 + x) % n_ctx
    return score


@njit(cache=True)
def word_probability(word, stationary, transition, order):
    """Probability of ``word`` under a stationary order-d Markov chain."""
    n_ctx = stationary.shape[0]
    ctx = 0
    for i in range(order):
        ctx = ctx * 4 + word[i]
    prob = stationary[ctx]
    for i in range(order, word.shape[0]):
        x = word[i]
        prob *= transition[ctx, x]
        ctx = (ctx * 4 + x) % n_ctx
    return prob


@njit(cache=True)
def score_positions(seq, seeds, columns, order):
    """Scores of all windows of a single sequence."""
    length = columns.shape[0]
    n = seq.shape[0] - length + 1
    if n < 0:
        n = 0
    out = np.empty(n, dtype=np.int64)
    for i in range(n):
        out[i] = score_window(seq, i, length, seeds, columns, order)
    return out


@njit(parallel=True, cache=True)
def _batch_scores_jit(data, offsets, seeds, columns, order):
    """Compute window scores for every sequence of a ragged collection."""
    n_seq = len(offsets) - 1
    m = columns.shape[0]

    new_offsets = np.zeros(n_seq + 1, dtype=np.int64)
    for i in range(n_seq):
        seq_len = offsets[i + 1] - offsets[i]
        if seq_len >= m:
            new_offsets[i + 1] = seq_len - m + 1

    for i in range(n_seq):
        new_offsets[i + 1] += new_offsets[i]

    results = np.zeros(new_offsets[n_seq], dtype=np.int64)

    for i in prange(n_seq):
        start = offsets[i]
        out_start = new_offsets[i]
        n_scores = new_offsets[i + 1] - out_start
        for k in range(n_scores):
            results[out_start + k] = score_window(data, start + k, m, seeds, columns, order)

    return results, new_offsets


def batch_scores(sequences: RaggedData, seeds: np.ndarray, columns: np.ndarray, order: int) -> RaggedData:
    """Integer window scores for all sequences in RaggedData."""
    data, offsets = _batch_scores_jit(sequences.data, sequences.offsets, seeds, columns, order)
    return RaggedData(data, offsets)


@njit(cache=True)
def enumerate_words(words, stationary, transition, seeds, columns, order):
    """Scores and background probabilities of every row of ``words``."""
    n = words.shape[0]
    length = words.shape[1]
    scores = np.empty(n, dtype=np.int64)
    probs = np.empty(n, dtype=np.float64)
    for i in range(n):
        scores[i] = score_window(words[i], 0, length, seeds, columns, order)
        probs[i] = word_probability(words[i], stationary, transition, order)
    return scores, probs


@njit(cache=True)
def score_distribution_dp(stationary, transition, seeds, columns, order, base, n_bins):
    """Distribution of the integer window score over bins ``base .. base + n_bins - 1``.

    The state is the Markov context; each state carries a vector over partial
    scores.  ``base`` and ``n_bins`` must cover every partial score.
    """
    n_ctx = stationary.shape[0]
    length = columns.shape[0]
    dist = np.zeros((n_ctx, n_bins))
    for u in range(n_ctx):
        dist[u, seeds[u] - base] += stationary[u]

    for c in range(order, length):
        new = np.zeros((n_ctx, n_bins))
        for u in range(n_ctx):
            for x in range(4):
                prob = transition[u, x]
                shift = columns[c, u, x]
                v = (u * 4 + x) % n_ctx
                for j in range(n_bins):
                    w = dist[u, j]
                    if w != 0.0:
                        new[v, j + shift] += w * prob
        dist = new

    total = np.zeros(n_bins)
    for u in range(n_ctx):
        for j in range(n_bins):
            total[j] += dist[u, j]
    return total


@njit(cache=True)
def joint_hit_probability(stationary, transition, order, seeds_a, columns_a, seeds_b, columns_b, offset, threshold):
    """Probability that window A at 0 and window B at ``offset`` both score >= ``threshold``.

    Both windows are read off one background trajectory covering positions
    ``0 .. offset + L - 1``.  The state is (context, partial score of A,
    partial score of B).  A partial score that cannot reach the threshold any
    more is dropped; one that is certain to reach it is clamped to the upper
    edge of its window, so every window shrinks to a single bin at the end.
    """
    n_ctx = stationary.shape[0]
    length = columns_a.shape[0]
    start = order - 1
    end = offset + length - 1
    n_steps = end - start + 1
    b_seed_pos = offset + order - 1

    lo_a = np.zeros(n_steps, dtype=np.int64)
    hi_a = np.zeros(n_steps, dtype=np.int64)
    lo_b = np.zeros(n_steps, dtype=np.int64)
    hi_b = np.zeros(n_steps, dtype=np.int64)
    for q in range(n_steps):
        p = start + q
        if q == 0:
            lo_a[q] = seeds_a.min()
            hi_a[q] = seeds_a.max()
        elif p < length:
            lo_a[q] = columns_a[p].min()
            hi_a[q] = columns_a[p].max()
        if p == b_seed_pos:
            lo_b[q] = seeds_b.min()
            hi_b[q] = seeds_b.max()
        elif p > b_seed_pos:
            lo_b[q] = columns_b[p - offset].min()
            hi_b[q] = columns_b[p - offset].max()

    rem_lo_a = np.zeros(n_steps, dtype=np.int64)
    rem_hi_a = np.zeros(n_steps, dtype=np.int64)
    rem_lo_b = np.zeros(n_steps, dtype=np.int64)
    rem_hi_b = np.zeros(n_steps, dtype=np.int64)
    for q in range(n_steps - 2, -1, -1):
        rem_lo_a[q] = rem_lo_a[q + 1] + lo_a[q + 1]
        rem_hi_a[q] = rem_hi_a[q + 1] + hi_a[q + 1]
        rem_lo_b[q] = rem_lo_b[q + 1] + lo_b[q + 1]
        rem_hi_b[q] = rem_hi_b[q + 1] + hi_b[q + 1]

    wa = rem_hi_a[0] - rem_lo_a[0] + 1
    wb = rem_hi_b[0] - rem_lo_b[0] + 1
    cur = np.zeros((n_ctx, wa, wb))
    nxt = np.zeros((n_ctx, wa, wb))

    base_a = threshold - rem_hi_a[0]
    base_b = threshold - rem_hi_b[0]
    top_a = rem_hi_a[0] - rem_lo_a[0]
    top_b = rem_hi_b[0] - rem_lo_b[0]
    a_lo, a_hi, b_lo, b_hi = wa, -1, wb, -1
    for u in range(n_ctx):
        ia = seeds_a[u] - base_a
        if ia < 0:
            continue
        if ia > top_a:
            ia = top_a
        b = seeds_b[u] if offset == 0 else 0
        ib = b - base_b
        if ib < 0:
            continue
        if ib > top_b:
            ib = top_b
        cur[u, ia, ib] += stationary[u]
        a_lo = min(a_lo, ia)
        a_hi = max(a_hi, ia)
        b_lo = min(b_lo, ib)
        b_hi = max(b_hi, ib)

    for q in range(1, n_steps):
        if a_hi < 0:
            return 0.0
        p = start + q
        new_base_a = threshold - rem_hi_a[q]
        new_base_b = threshold - rem_hi_b[q]
        top_a = rem_hi_a[q] - rem_lo_a[q]
        top_b = rem_hi_b[q] - rem_lo_b[q]
        na_lo, na_hi, nb_lo, nb_hi = wa, -1, wb, -1

        for u in range(n_ctx):
            for x in range(4):
                prob = transition[u, x]
                v = (u * 4 + x) % n_ctx
                da = columns_a[p, u, x] if p < length else 0
                if p > b_seed_pos:
                    db = columns_b[p - offset, u, x]
                elif p == b_seed_pos:
                    db = seeds_b[v]
                else:
                    db = 0
                shift_a = base_a + da - new_base_a
                shift_b = base_b + db - new_base_b
                for ia in range(a_lo, a_hi + 1):
                    na = ia + shift_a
                    if na < 0:
                        continue
                    if na > top_a:
                        na = top_a
                    for ib in range(b_lo, b_hi + 1):
                        w = cur[u, ia, ib]
                        if w == 0.0:
                            continue
                        nb = ib + shift_b
                        if nb < 0:
                            continue
                        if nb > top_b:
                            nb = top_b
                        nxt[v, na, nb] += w * prob
                        if na < na_lo:
                            na_lo = na
                        if na > na_hi:
                            na_hi = na
                        if nb < nb_lo:
                            nb_lo = nb
                        if nb > nb_hi:
                            nb_hi = nb

        for u in range(n_ctx):
            for ia in range(a_lo, a_hi + 1):
                for ib in range(b_lo, b_hi + 1):
                    cur[u, ia, ib] = 0.0
        cur, nxt = nxt, cur
        base_a = new_base_a
        base_b = new_base_b
        a_lo, a_hi, b_lo, b_hi = na_lo, na_hi, nb_lo, nb_hi

    total = 0.0
    for u in range(n_ctx):
        for ia in range(a_lo, a_hi + 1):
            for ib in range(b_lo, b_hi + 1):
                total += cur[u, ia, ib]
    return total


@njit(cache=True)
def combinatorial_counts(n_pos, motif_length, start_probs, continuation, exit_probs, max_hits):
    """Distribution of the number of hits among ``n_pos`` window positions.

    States are "free position" and "hit on strand s", indexed by the number of
    hits so far.  Only the next ``motif_length + 1`` positions are ever
    addressed, so the tables are rolling buffers.  Returns the distribution
    over 0..max_hits and the mass that exceeded ``max_hits``.
    """
    size = motif_length + 1
    free = np.zeros((size, max_hits + 1))
    hits = np.zeros((2, size, max_hits + 1))
    result = np.zeros(max_hits + 1)
    overflow = 0.0
    no_start = 1.0 - start_probs[0] - start_probs[1]

    if n_pos <= 0:
        result[0] = 1.0
        return result, overflow

    free[0, 0] = 1.0
    for i in range(n_pos):
        cur = i % size
        for h in range(max_hits + 1):
            w = free[cur, h]
            if w == 0.0:
                continue
            if i + 1 < n_pos:
                free[(i + 1) % size, h] += w * no_start
            else:
                result[h] += w * no_start
            if h < max_hits:
                hits[0, cur, h + 1] += w * start_probs[0]
                hits[1, cur, h + 1] += w * start_probs[1]
            else:
                overflow += w * (start_probs[0] + start_probs[1])
            free[cur, h] = 0.0

        # forward before reverse: a forward hit may be joined by a reverse hit at the same position
        for s in range(2):
            for h in range(1, max_hits + 1):
                w = hits[s, cur, h]
                if w == 0.0:
                    continue
                j = i + motif_length
                if j < n_pos:
                    free[j % size, h] += w * exit_probs[s]
                else:
                    result[h] += w * exit_probs[s]
                for t in range(2):
                    for k in range(motif_length):
                        b = continuation[s, t, k]
                        if b == 0.0:
                            continue
                        j = i + k
                        if j >= n_pos:
                            result[h] += w * b
                        elif h < max_hits:
                            hits[t, j % size, h + 1] += w * b
                        else:
                            overflow += w * b
                hits[s, cur, h] = 0.0

    return result, overflow


@njit(cache=True)
def _draw(cumulative, u):
    """Index of the first bin of a cumulative distribution exceeding ``u``."""
    k = 0
    last = cumulative.shape[0] - 1
    while k < last and u >= cumulative[k]:
        k += 1
    return k


@njit(cache=True)
def sample_markov(uniforms, cum_stationary, cum_transition, order):
    """Draw one sequence from an order-d Markov chain using pre-drawn uniforms."""
    n = uniforms.shape[0]
    n_ctx = cum_stationary.shape[0]
    out = np.empty(n, dtype=np.int8)
    if n == 0:
        return out

    ctx = 0
    first = 0
    if order > 0:
        ctx = _draw(cum_stationary, uniforms[0])
        for i in range(order):
            if i < n:
                out[i] = (ctx // 4 ** (order - 1 - i)) % 4
        first = order

    for i in range(first, n):
        x = _draw(cum_transition[ctx], uniforms[i])
        out[i] = x
        ctx = (ctx * 4 + x) % n_ctx
    return out


def check_distribution(probabilities: np.ndarray, tolerance: float, what: str) -> None:
    """Raise NumericToleranceError if ``probabilities`` does not sum to one."""
    total = float(np.sum(probabilities))
    if not abs(total - 1.0) <= tolerance:
        raise NumericToleranceError(what, total, tolerance)
