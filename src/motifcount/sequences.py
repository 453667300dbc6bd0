"""
Integer-encoded DNA sequences and ragged collections.

Sequences are stored as ``int8`` arrays with A=0, C=1, G=2, T=3.  A
collection of sequences (or of per-sequence score vectors) is held in a
:class:`RaggedData` object, a flattened ``data`` array plus ``offsets``.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Union

import numpy as np

from motifcount.exceptions import ValidationError

ALPHABET = "ACGT"
RC_TABLE = np.array([3, 2, 1, 0], dtype=np.int8)

_INVALID = 255
_TRANS_TABLE = bytearray([_INVALID] * 256)
for _char, _code in zip(b"ACGTacgt", [0, 1, 2, 3] * 2, strict=False):
    _TRANS_TABLE[_char] = _code

SequenceLike = Union[str, bytes, np.ndarray, Sequence[int]]


class RaggedData:
    """
    Variable-length arrays stored as one flat buffer.

    ``data[offsets[i]:offsets[i + 1]]`` is the i-th entry.  Used both for
    collections of encoded sequences and for per-sequence score vectors.
    """

    def __init__(self, data: np.ndarray, offsets: np.ndarray):
        """Initialize the RaggedData object."""
        self.data = data
        self.offsets = np.asarray(offsets, dtype=np.int64)

    def get_length(self, i: int) -> int:
        """Return the length of the i-th entry."""
        return int(self.offsets[i + 1] - self.offsets[i])

    def get_slice(self, i: int) -> np.ndarray:
        """Return the i-th entry (view)."""
        return self.data[self.offsets[i] : self.offsets[i + 1]]

    @property
    def lengths(self) -> np.ndarray:
        """Lengths of all entries."""
        return np.diff(self.offsets)

    @property
    def num_sequences(self) -> int:
        """Return the number of entries."""
        return self.offsets.size - 1

    def __len__(self) -> int:
        return self.num_sequences

    def __iter__(self):
        for i in range(self.num_sequences):
            yield self.get_slice(i)


def ragged_from_list(data_list: List[np.ndarray], dtype=None) -> RaggedData:
    """Create RaggedData from a list of numpy arrays."""
    if len(data_list) == 0:
        return RaggedData(np.empty(0, dtype=dtype if dtype else np.int8), np.zeros(1, dtype=np.int64))

    if dtype is None:
        dtype = np.asarray(data_list[0]).dtype

    offsets = np.zeros(len(data_list) + 1, dtype=np.int64)
    offsets[1:] = np.cumsum([len(item) for item in data_list])

    data = np.empty(offsets[-1], dtype=dtype)
    for i, item in enumerate(data_list):
        data[offsets[i] : offsets[i + 1]] = item

    return RaggedData(data, offsets)


def encode_sequence(sequence: SequenceLike) -> np.ndarray:
    """Convert a DNA string (or an integer array) into a validated ``int8`` array.

    Raises
    ------
    ValidationError
        If the sequence contains symbols other than A, C, G and T.
    """
    if isinstance(sequence, str):
        sequence = sequence.encode("ascii", errors="replace")
    if isinstance(sequence, (bytes, bytearray)):
        encoded = np.frombuffer(bytes(sequence).translate(_TRANS_TABLE), dtype=np.uint8)
        bad = np.flatnonzero(encoded == _INVALID)
        if bad.size:
            raise ValidationError(
                f"Sequence contains a symbol outside {ALPHABET} at position {int(bad[0])}: "
                f"{chr(sequence[bad[0]])!r}"
            )
        return encoded.astype(np.int8)

    arr = np.asarray(sequence)
    if arr.ndim != 1:
        raise ValidationError(f"Expected a one-dimensional sequence, got shape {arr.shape}")
    if arr.size and (not np.issubdtype(arr.dtype, np.integer) or arr.min() < 0 or arr.max() > 3):
        raise ValidationError("Integer-encoded sequences must only contain the codes 0, 1, 2 and 3")
    return arr.astype(np.int8, copy=False)


def decode_sequence(sequence: np.ndarray) -> str:
    """Convert an integer-encoded sequence back to an ACGT string."""
    decoder = np.array(list(ALPHABET), dtype="U1")
    return "".join(decoder[np.asarray(sequence, dtype=np.int64)])


def reverse_complement(sequence: np.ndarray) -> np.ndarray:
    """Return the reverse complement of an integer-encoded sequence."""
    return RC_TABLE[np.asarray(sequence)[::-1]]


def encode_sequences(sequences: Union[RaggedData, Iterable[SequenceLike]]) -> RaggedData:
    """Encode a collection of sequences into RaggedData."""
    if isinstance(sequences, RaggedData):
        encode_sequence(sequences.data)
        return sequences
    if isinstance(sequences, (str, bytes)):
        raise ValidationError("Expected a collection of sequences, got a single sequence")
    return ragged_from_list([encode_sequence(seq) for seq in sequences], dtype=np.int8)
