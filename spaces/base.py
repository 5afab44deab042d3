"""Space interface.

A space describes a value domain (observations or actions): it can sample
values, test membership, and convert values to and from a fixed-length
numeric feature vector. The encoding length depends only on the static
structure of the space, never on sampled values.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Iterable

import numpy as np

from core.errors import InvalidEncoding


class Space(ABC):
    """Abstract base class for all spaces.

    Subclasses implement sample, contains, encoding_length, encode, decode
    and to_dict. Equality is structural (two spaces with the same to_dict()
    are equal).
    """

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> Any:
        """Draw a random value of the space.

        Args:
            rng: Explicit random generator; spaces never use global state.

        Returns:
            A value for which contains() holds.
        """

    @abstractmethod
    def contains(self, value: Any) -> bool:
        """Whether value is a member of the space."""

    @property
    @abstractmethod
    def encoding_length(self) -> int:
        """Length of the feature vector produced by encode()."""

    @abstractmethod
    def encode(self, value: Any) -> np.ndarray:
        """Encode a value as a float64 vector of length encoding_length."""

    @abstractmethod
    def decode(self, vector: np.ndarray) -> Any:
        """Decode a feature vector back into a value.

        Raises:
            InvalidEncoding: If the vector violates the space's structure.
        """

    @abstractmethod
    def to_dict(self) -> dict:
        """Structural description, inverse of spaces.space_from_dict()."""

    def encode_batch(self, values: Iterable[Any]) -> np.ndarray:
        """Encode a sequence of values into a [N, encoding_length] matrix."""
        rows = [self.encode(v) for v in values]
        if not rows:
            return np.zeros((0, self.encoding_length), dtype=np.float64)
        return np.stack(rows, axis=0)

    def _check_vector(self, vector: np.ndarray) -> np.ndarray:
        vec = np.asarray(vector, dtype=np.float64)
        if vec.ndim != 1 or vec.shape[0] != self.encoding_length:
            raise InvalidEncoding(
                f"{self} expects a vector of length {self.encoding_length}, "
                f"got shape {vec.shape}"
            )
        if not np.all(np.isfinite(vec)):
            raise InvalidEncoding(f"{self} got a non-finite encoding")
        return vec

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Space):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(repr(self))


class FiniteSpace(Space):
    """A space with finitely many values, indexed 0..size-1.

    Finite spaces encode values as a one-hot vector over their index by
    default; Product overrides encoding but keeps the index mapping.
    """

    @property
    @abstractmethod
    def size(self) -> int:
        """Number of values in the space."""

    @abstractmethod
    def to_index(self, value: Any) -> int:
        ...

    @abstractmethod
    def from_index(self, index: int) -> Any:
        """Inverse of to_index. Raises IndexError for out-of-range indices."""

    def sample(self, rng: np.random.Generator) -> Any:
        return self.from_index(int(rng.integers(self.size)))

    @property
    def encoding_length(self) -> int:
        return self.size

    def encode(self, value: Any) -> np.ndarray:
        out = np.zeros(self.size, dtype=np.float64)
        out[self.to_index(value)] = 1.0
        return out

    def decode(self, vector: np.ndarray) -> Any:
        vec = self._check_vector(vector)
        return self.from_index(decode_one_hot(vec, str(self)))


def decode_one_hot(vec: np.ndarray, name: str) -> int:
    """Return the hot index of an exactly one-hot vector.

    Raises:
        InvalidEncoding: If the entries are not all 0/1 or do not sum to 1.
    """
    if vec.shape[0] == 0:
        raise InvalidEncoding(f"{name}: empty one-hot slice")
    if not np.all((vec == 0.0) | (vec == 1.0)) or vec.sum() != 1.0:
        raise InvalidEncoding(f"{name}: slice {vec.tolist()} is not one-hot")
    return int(np.argmax(vec))
