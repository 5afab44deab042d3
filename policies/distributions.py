"""Action distributions parameterized by a flat parameter vector.

A policy network emits num_distribution_params(space) numbers per row;
distribution_for(space, params) turns them into a distribution whose
samples are values of the space. Sampling goes through an explicit numpy
generator so that rollouts are reproducible per instance; log_prob and
entropy are differentiable torch ops used by the update rules.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, List, Sequence

import numpy as np
import torch

from spaces import FiniteSpace, Interval, Product, Singleton, Space

LOG_STD_MIN = -5.0
LOG_STD_MAX = 2.0


class ActionDistribution(ABC):
    """A batch of B distributions over values of a space."""

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> List[Any]:
        """Draw one value per row."""

    @abstractmethod
    def mode(self) -> List[Any]:
        """Most likely value per row (used for deterministic evaluation)."""

    @abstractmethod
    def log_prob(self, values: Sequence[Any]) -> torch.Tensor:
        """Log-probability of one value per row, shape [B]."""

    @abstractmethod
    def entropy(self) -> torch.Tensor:
        """Entropy per row, shape [B]."""


class CategoricalDistribution(ActionDistribution):
    """Softmax over the indices of a finite space."""

    def __init__(self, space: FiniteSpace, logits: torch.Tensor):
        self.space = space
        self.dist = torch.distributions.Categorical(logits=logits)

    def sample(self, rng: np.random.Generator) -> List[Any]:
        probs = self.dist.probs.detach().cpu().double().numpy()
        out = []
        for p in probs:
            idx = int(rng.choice(len(p), p=p / p.sum()))
            out.append(self.space.from_index(idx))
        return out

    def mode(self) -> List[Any]:
        idx = torch.argmax(self.dist.logits, dim=-1).tolist()
        return [self.space.from_index(int(i)) for i in idx]

    def log_prob(self, values: Sequence[Any]) -> torch.Tensor:
        idx = torch.as_tensor(
            [self.space.to_index(v) for v in values],
            dtype=torch.long,
            device=self.dist.logits.device,
        )
        return self.dist.log_prob(idx)

    def entropy(self) -> torch.Tensor:
        return self.dist.entropy()


class GaussianDistribution(ActionDistribution):
    """Diagonal Gaussian with state-dependent log-std over an Interval.

    Samples are clipped to the interval's finite bounds; log_prob is the
    density of the unclipped Gaussian at the (clipped) value.
    """

    def __init__(self, space: Interval, params: torch.Tensor):
        self.space = space
        d = space.dim
        mean = params[..., :d]
        log_std = torch.clamp(params[..., d:], LOG_STD_MIN, LOG_STD_MAX)
        self.dist = torch.distributions.Normal(mean, log_std.exp())

    def _clip(self, x: np.ndarray) -> np.ndarray:
        return np.clip(x, self.space.low, self.space.high)

    def sample(self, rng: np.random.Generator) -> List[Any]:
        mean = self.dist.loc.detach().cpu().double().numpy()
        std = self.dist.scale.detach().cpu().double().numpy()
        noise = rng.standard_normal(mean.shape)
        return [self._clip(row) for row in mean + std * noise]

    def mode(self) -> List[Any]:
        mean = self.dist.loc.detach().cpu().double().numpy()
        return [self._clip(row) for row in mean]

    def log_prob(self, values: Sequence[Any]) -> torch.Tensor:
        x = torch.as_tensor(
            np.stack([np.asarray(v, dtype=np.float64) for v in values]),
            dtype=self.dist.loc.dtype,
            device=self.dist.loc.device,
        )
        return self.dist.log_prob(x).sum(-1)

    def entropy(self) -> torch.Tensor:
        return self.dist.entropy().sum(-1)


class SingletonDistribution(ActionDistribution):
    """The point mass on None."""

    def __init__(self, batch_size: int, device: torch.device):
        self.batch_size = batch_size
        self.device = device

    def sample(self, rng: np.random.Generator) -> List[Any]:
        return [None] * self.batch_size

    def mode(self) -> List[Any]:
        return [None] * self.batch_size

    def log_prob(self, values: Sequence[Any]) -> torch.Tensor:
        return torch.zeros(len(values), device=self.device)

    def entropy(self) -> torch.Tensor:
        return torch.zeros(self.batch_size, device=self.device)


class ProductDistribution(ActionDistribution):
    """Independent factors, one per sub-space; values are tuples."""

    def __init__(self, factors: Sequence[ActionDistribution], batch_size: int, device: torch.device):
        self.factors = list(factors)
        self.batch_size = batch_size
        self.device = device

    def sample(self, rng: np.random.Generator) -> List[Any]:
        columns = [f.sample(rng) for f in self.factors]
        return [tuple(c[b] for c in columns) for b in range(self.batch_size)]

    def mode(self) -> List[Any]:
        columns = [f.mode() for f in self.factors]
        return [tuple(c[b] for c in columns) for b in range(self.batch_size)]

    def log_prob(self, values: Sequence[Any]) -> torch.Tensor:
        total = torch.zeros(len(values), device=self.device)
        for k, f in enumerate(self.factors):
            total = total + f.log_prob([v[k] for v in values])
        return total

    def entropy(self) -> torch.Tensor:
        total = torch.zeros(self.batch_size, device=self.device)
        for f in self.factors:
            total = total + f.entropy()
        return total


def num_distribution_params(space: Space) -> int:
    """Number of network outputs needed to parameterize an action space."""
    if isinstance(space, Singleton):
        return 0
    if isinstance(space, Product):
        return sum(num_distribution_params(s) for s in space.spaces)
    if isinstance(space, FiniteSpace):
        return space.size
    if isinstance(space, Interval):
        return 2 * space.dim
    raise TypeError(f"no action distribution for {space}")


def distribution_for(space: Space, params: torch.Tensor) -> ActionDistribution:
    """Build the action distribution of space from params of shape [B, P]."""
    expected = num_distribution_params(space)
    if params.shape[-1] != expected:
        raise ValueError(
            f"{space} needs {expected} distribution parameters, got {params.shape[-1]}"
        )
    if isinstance(space, Singleton):
        return SingletonDistribution(params.shape[0], params.device)
    if isinstance(space, Product):
        factors = []
        start = 0
        for sub in space.spaces:
            n = num_distribution_params(sub)
            factors.append(distribution_for(sub, params[..., start:start + n]))
            start += n
        return ProductDistribution(factors, params.shape[0], params.device)
    if isinstance(space, FiniteSpace):
        return CategoricalDistribution(space, params)
    if isinstance(space, Interval):
        return GaussianDistribution(space, params)
    raise TypeError(f"no action distribution for {space}")
