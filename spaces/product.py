"""Cartesian product of an ordered sequence of sub-spaces."""
from __future__ import annotations
from typing import Any, Iterable, List, Tuple

import numpy as np

from core.errors import InvalidEncoding

from .base import FiniteSpace, Space


class Product(Space):
    """Ordered product of sub-spaces; values are tuples.

    The encoding is the concatenation of the sub-encodings in declared order,
    so encoding_length is the sum of the sub-space lengths and sub-vector k
    starts at offsets[k]. Both are computed from the structure alone.

    If every sub-space is finite, the product is finite as well (see
    FiniteProduct, which Product() returns automatically in that case).

    Attributes:
        spaces: The sub-spaces, in order.
        offsets: Start offset of each sub-encoding.
    """

    def __new__(cls, spaces: Iterable[Space] = ()):
        spaces = tuple(spaces)
        if cls is Product and all(isinstance(s, FiniteSpace) for s in spaces):
            obj = super().__new__(FiniteProduct)
        else:
            obj = super().__new__(cls)
        obj.spaces = spaces
        return obj

    def __init__(self, spaces: Iterable[Space] = ()):
        # self.spaces is set by __new__, which consumes generator arguments.
        for s in self.spaces:
            if not isinstance(s, Space):
                raise TypeError(f"Product sub-spaces must be Space instances, got {s!r}")

        offsets: List[int] = []
        total = 0
        for s in self.spaces:
            offsets.append(total)
            total += s.encoding_length
        self.offsets: Tuple[int, ...] = tuple(offsets)
        self._length = total

    def __getnewargs__(self):
        return (self.spaces,)

    @property
    def encoding_length(self) -> int:
        return self._length

    def __len__(self) -> int:
        return len(self.spaces)

    def sample(self, rng: np.random.Generator) -> Tuple[Any, ...]:
        return tuple(s.sample(rng) for s in self.spaces)

    def contains(self, value: Any) -> bool:
        if not isinstance(value, tuple) or len(value) != len(self.spaces):
            return False
        return all(s.contains(v) for s, v in zip(self.spaces, value))

    def encode(self, value: Any) -> np.ndarray:
        if not isinstance(value, tuple) or len(value) != len(self.spaces):
            raise ValueError(f"{value!r} does not have {len(self.spaces)} components")
        out = np.zeros(self._length, dtype=np.float64)
        for s, off, v in zip(self.spaces, self.offsets, value):
            out[off:off + s.encoding_length] = s.encode(v)
        return out

    def decode(self, vector: np.ndarray) -> Tuple[Any, ...]:
        vec = self._check_vector(vector)
        values = []
        for k, (s, off) in enumerate(zip(self.spaces, self.offsets)):
            try:
                values.append(s.decode(vec[off:off + s.encoding_length]))
            except InvalidEncoding as exc:
                raise InvalidEncoding(f"{self}: component {k}: {exc.message}") from exc
        return tuple(values)

    def split(self, vector: np.ndarray) -> List[np.ndarray]:
        """Split an encoding (or a batch of encodings) into sub-encodings."""
        vec = np.asarray(vector)
        return [vec[..., off:off + s.encoding_length] for s, off in zip(self.spaces, self.offsets)]

    def to_dict(self) -> dict:
        return {"type": "product", "spaces": [s.to_dict() for s in self.spaces]}

    def __repr__(self) -> str:
        return f"Product({list(self.spaces)!r})"


class FiniteProduct(Product, FiniteSpace):
    """Product of finite spaces.

    Indices use mixed radix with the first sub-space most significant.
    Encoding stays the concatenation of sub-encodings (not one-hot over the
    full product).
    """

    @property
    def size(self) -> int:
        n = 1
        for s in self.spaces:
            n *= s.size
        return n

    def to_index(self, value: Any) -> int:
        if not isinstance(value, tuple) or len(value) != len(self.spaces):
            raise ValueError(f"{value!r} is not in {self}")
        index = 0
        for s, v in zip(self.spaces, value):
            index = index * s.size + s.to_index(v)
        return index

    def from_index(self, index: int) -> Tuple[Any, ...]:
        if not 0 <= index < self.size:
            raise IndexError(f"index {index} out of range for {self}")
        values = []
        for s in reversed(self.spaces):
            index, rem = divmod(index, s.size)
            values.append(s.from_index(rem))
        return tuple(reversed(values))
