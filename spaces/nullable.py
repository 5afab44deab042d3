"""A sub-space whose value may be missing."""
from __future__ import annotations
from typing import Any

import numpy as np

from core.errors import InvalidEncoding

from .base import Space


class Nullable(Space):
    """Either None or a value of the inner space.

    Encoded as a presence flag followed by the inner encoding; the inner
    slice is all zeros when the value is None.
    An inner space whose own value is None (Singleton) therefore encodes
    its value the same way as a missing one.

    Attributes:
        inner: Space of the present values.
        none_probability: Chance that sample() returns None.
    """

    def __init__(self, inner: Space, none_probability: float = 0.5):
        if not isinstance(inner, Space):
            raise TypeError(f"Nullable needs a Space, got {inner!r}")
        if not 0.0 <= none_probability <= 1.0:
            raise ValueError(f"none_probability must be in [0, 1], got {none_probability}")
        self.inner = inner
        self.none_probability = float(none_probability)

    @property
    def encoding_length(self) -> int:
        return 1 + self.inner.encoding_length

    def sample(self, rng: np.random.Generator) -> Any:
        if rng.random() < self.none_probability:
            return None
        return self.inner.sample(rng)

    def contains(self, value: Any) -> bool:
        return value is None or self.inner.contains(value)

    def encode(self, value: Any) -> np.ndarray:
        out = np.zeros(self.encoding_length, dtype=np.float64)
        if value is not None:
            out[0] = 1.0
            out[1:] = self.inner.encode(value)
        return out

    def decode(self, vector: np.ndarray) -> Any:
        vec = self._check_vector(vector)
        flag, rest = vec[0], vec[1:]
        if flag == 1.0:
            return self.inner.decode(rest)
        if flag != 0.0:
            raise InvalidEncoding(f"{self}: presence flag {flag} is not 0 or 1")
        if np.any(rest != 0.0):
            raise InvalidEncoding(f"{self}: missing value with a non-zero payload")
        return None

    def to_dict(self) -> dict:
        return {
            "type": "nullable",
            "inner": self.inner.to_dict(),
            "none_probability": self.none_probability,
        }

    def __repr__(self) -> str:
        return f"Nullable({self.inner!r})"
