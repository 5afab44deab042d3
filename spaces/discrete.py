from __future__ import annotations
from typing import Any, Sequence, Tuple

import numpy as np

from .base import FiniteSpace


class Discrete(FiniteSpace):
    """The integers {0, 1, ..., n - 1}, one-hot encoded."""

    def __init__(self, n: int):
        if int(n) < 1:
            raise ValueError(f"Discrete space needs n >= 1, got {n}")
        self.n = int(n)

    @property
    def size(self) -> int:
        return self.n

    def contains(self, value: Any) -> bool:
        if isinstance(value, (bool, np.bool_)):
            return False
        if not isinstance(value, (int, np.integer)):
            return False
        return 0 <= int(value) < self.n

    def to_index(self, value: Any) -> int:
        if not self.contains(value):
            raise ValueError(f"{value!r} is not in {self}")
        return int(value)

    def from_index(self, index: int) -> int:
        if not 0 <= index < self.n:
            raise IndexError(f"index {index} out of range for {self}")
        return int(index)

    def to_dict(self) -> dict:
        return {"type": "discrete", "n": self.n}

    def __repr__(self) -> str:
        return f"Discrete({self.n})"


class Indexed(FiniteSpace):
    """A fixed, ordered, finite set of hashable elements, one-hot encoded.

    Attributes:
        elements: The members, in index order.
    """

    def __init__(self, elements: Sequence[Any]):
        self.elements: Tuple[Any, ...] = tuple(elements)
        if not self.elements:
            raise ValueError("Indexed space needs at least one element")
        self._index = {e: i for i, e in enumerate(self.elements)}
        if len(self._index) != len(self.elements):
            raise ValueError("Indexed space elements must be distinct")

    @property
    def size(self) -> int:
        return len(self.elements)

    def contains(self, value: Any) -> bool:
        try:
            return value in self._index
        except TypeError:  # unhashable
            return False

    def to_index(self, value: Any) -> int:
        if not self.contains(value):
            raise ValueError(f"{value!r} is not in {self}")
        return self._index[value]

    def from_index(self, index: int) -> Any:
        if not 0 <= index < len(self.elements):
            raise IndexError(f"index {index} out of range for {self}")
        return self.elements[index]

    def to_dict(self) -> dict:
        return {"type": "indexed", "elements": list(self.elements)}

    def __repr__(self) -> str:
        return f"Indexed({list(self.elements)!r})"


class Singleton(FiniteSpace):
    """A space with exactly one value, None. Its encoding is empty."""

    @property
    def size(self) -> int:
        return 1

    @property
    def encoding_length(self) -> int:
        return 0

    def contains(self, value: Any) -> bool:
        return value is None

    def to_index(self, value: Any) -> int:
        if value is not None:
            raise ValueError(f"{value!r} is not in {self}")
        return 0

    def from_index(self, index: int) -> None:
        if index != 0:
            raise IndexError(f"index {index} out of range for {self}")
        return None

    def sample(self, rng: np.random.Generator) -> None:
        return None

    def encode(self, value: Any) -> np.ndarray:
        self.to_index(value)
        return np.zeros(0, dtype=np.float64)

    def decode(self, vector: np.ndarray) -> None:
        self._check_vector(vector)
        return None

    def to_dict(self) -> dict:
        return {"type": "singleton"}

    def __repr__(self) -> str:
        return "Singleton()"
