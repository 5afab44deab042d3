"""Continuous box space with per-dimension bounds."""
from __future__ import annotations
from typing import Any

import numpy as np

from core.errors import DimensionMismatch, InvalidEncoding

from .base import Space


class Interval(Space):
    """Real vectors v with low <= v <= high element-wise.

    Values are float64 arrays of shape (dim,). Bounds may be infinite.

    Sampling, per dimension:
        - both bounds finite: uniform on [low, high]
        - only low finite: low + Exponential(1)
        - only high finite: high - Exponential(1)
        - unbounded: standard normal

    Scaling policy (fixed per instance): with rescale=True, dimensions with
    finite bounds are mapped affinely onto [-1, 1] by encode(); unbounded
    dimensions pass through unchanged. With rescale=False encode() returns
    the raw values.

    Round trip: without rescaling decode(encode(v)) returns v exactly. The
    rescaling map rounds, so decode(encode(v)) matches v only to within a few
    ulps of the bound magnitudes (clipped back into [low, high]). An affine
    map of doubles onto [-1, 1] is not injective in general, so no exact
    inverse exists.

    Attributes:
        low: Lower bounds, shape (dim,).
        high: Upper bounds, shape (dim,).
        rescale: Whether encode() maps finite bounds onto [-1, 1].
    """

    def __init__(self, low: Any = -np.inf, high: Any = np.inf, rescale: bool = False):
        low_arr, high_arr = np.broadcast_arrays(
            np.atleast_1d(np.asarray(low, dtype=np.float64)),
            np.atleast_1d(np.asarray(high, dtype=np.float64)),
        )
        if low_arr.ndim != 1:
            raise ValueError("Interval bounds must be scalars or 1-D")
        if np.any(np.isnan(low_arr)) or np.any(np.isnan(high_arr)):
            raise ValueError("Interval bounds must not be NaN")
        if np.any(low_arr > high_arr):
            raise ValueError("require low <= high")
        self.low = low_arr.copy()
        self.high = high_arr.copy()
        self.rescale = bool(rescale)

        self._bounded = np.isfinite(self.low) & np.isfinite(self.high)
        self._center = np.where(self._bounded, (self.low + self.high) / 2.0, 0.0)
        half = np.where(self._bounded, (self.high - self.low) / 2.0, 1.0)
        # Degenerate [a, a] dimensions encode to 0.
        self._half_width = np.where(half > 0.0, half, 1.0)

    @property
    def dim(self) -> int:
        return int(self.low.shape[0])

    @property
    def encoding_length(self) -> int:
        return self.dim

    def sample(self, rng: np.random.Generator) -> np.ndarray:
        out = np.empty(self.dim, dtype=np.float64)
        low_finite = np.isfinite(self.low)
        high_finite = np.isfinite(self.high)
        for i in range(self.dim):
            if low_finite[i] and high_finite[i]:
                out[i] = rng.uniform(self.low[i], self.high[i])
            elif low_finite[i]:
                out[i] = self.low[i] + rng.exponential(1.0)
            elif high_finite[i]:
                out[i] = self.high[i] - rng.exponential(1.0)
            else:
                out[i] = rng.standard_normal()
        return out

    def contains(self, value: Any) -> bool:
        try:
            arr = np.asarray(value, dtype=np.float64)
        except (TypeError, ValueError):
            return False
        if arr.shape != (self.dim,):
            return False
        return bool(
            np.all(np.isfinite(arr)) and np.all(arr >= self.low) and np.all(arr <= self.high)
        )

    def encode(self, value: Any) -> np.ndarray:
        arr = np.asarray(value, dtype=np.float64)
        if arr.shape != (self.dim,):
            raise DimensionMismatch(f"{self}: value of shape {arr.shape}, expected ({self.dim},)")
        if self.rescale:
            arr = np.where(self._bounded, (arr - self._center) / self._half_width, arr)
        return arr.astype(np.float64)

    def decode(self, vector: np.ndarray) -> np.ndarray:
        vec = self._check_vector(vector)
        if self.rescale:
            if np.any(np.abs(vec[self._bounded]) > 1.0 + 1e-5):
                raise InvalidEncoding(f"{self}: rescaled coordinate outside [-1, 1]")
            vec = np.where(self._bounded, vec * self._half_width + self._center, vec)
        else:
            tol = 1e-6 * np.maximum(1.0, np.abs(vec))
            if np.any(vec < self.low - tol) or np.any(vec > self.high + tol):
                raise InvalidEncoding(f"{self}: coordinate outside the bounds")
        # Rounding in the affine map may push a value just past a bound.
        return np.clip(vec, self.low, self.high)

    def to_dict(self) -> dict:
        return {
            "type": "interval",
            "low": self.low.tolist(),
            "high": self.high.tolist(),
            "rescale": self.rescale,
        }

    def __repr__(self) -> str:
        return f"Interval(low={self.low.tolist()}, high={self.high.tolist()}, rescale={self.rescale})"
