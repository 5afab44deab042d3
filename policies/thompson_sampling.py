"""Thompson sampling for finite observation and action spaces.

Rewards are treated as Bernoulli outcomes: a reward above the midpoint of
reward_range counts as a success. Each (observation, action) pair keeps a
Beta(successes + 1, failures + 1) posterior; acting draws from the
posteriors and takes the action with the highest draw.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from core.errors import DimensionMismatch
from core.specs import EnvSpec
from spaces import FiniteSpace

from .agent import ActOutput, Agent, TrainingBatch, UpdateStats


@dataclass
class ThompsonSamplingConfig:
    """Configuration for ThompsonSamplingAgent.

    Attributes:
        num_samples: Posterior draws per action; the action with the highest
            mean draw is taken.
        reward_range: (min, max) reward; rewards above the midpoint are
            successes.
    """
    num_samples: int = 1
    reward_range: Tuple[float, float] = (0.0, 1.0)

    def __post_init__(self):
        if self.num_samples < 1:
            raise ValueError(f"num_samples must be >= 1, got {self.num_samples}")
        low, high = self.reward_range
        if not low < high:
            raise ValueError(f"reward_range must be (min, max) with min < max, got {self.reward_range}")

    @property
    def reward_threshold(self) -> float:
        low, high = self.reward_range
        return (low + high) / 2.0


class ThompsonSamplingAgent(Agent):
    """Beta-Bernoulli Thompson sampling.

    Learns from the immediate reward of every step (not the return), so it
    suits bandits and other one-step problems. Use it with the Monte-Carlo
    estimator; it has no critic.
    """

    def __init__(self, spec: EnvSpec, cfg: Optional[ThompsonSamplingConfig] = None):
        if not isinstance(spec.observation_space, FiniteSpace):
            raise TypeError(f"Thompson sampling needs a finite observation space, got {spec.observation_space}")
        if not isinstance(spec.action_space, FiniteSpace):
            raise TypeError(f"Thompson sampling needs a finite action space, got {spec.action_space}")
        self.spec = spec
        self.cfg = cfg or ThompsonSamplingConfig()
        # [..., 0] failures, [..., 1] successes; both start at the uniform prior.
        self.counts = np.ones(
            (spec.observation_space.size, spec.action_space.size, 2), dtype=np.int64
        )

    def _obs_index(self, observation: Any) -> int:
        return self.spec.observation_space.to_index(observation)

    def act(self, observation: Any, instance_id: int, rng: np.random.Generator) -> ActOutput:
        counts = self.counts[self._obs_index(observation)]
        draws = rng.beta(
            counts[:, 1], counts[:, 0], size=(self.cfg.num_samples, counts.shape[0])
        )
        index = int(np.argmax(draws.mean(axis=0)))
        return ActOutput(action=self.spec.action_space.from_index(index))

    def act_greedy(self, observation: Any) -> Any:
        """Action with the highest posterior mean success rate."""
        counts = self.counts[self._obs_index(observation)]
        means = counts[:, 1] / counts.sum(axis=1)
        return self.spec.action_space.from_index(int(np.argmax(means)))

    def update(self, batch: TrainingBatch) -> UpdateStats:
        if batch.rewards is None or len(batch.rewards) != len(batch):
            raise DimensionMismatch("Thompson sampling needs one immediate reward per step")
        obs_space = self.spec.observation_space
        for row, action, reward in zip(batch.observations, batch.actions, batch.rewards):
            o = obs_space.to_index(obs_space.decode(row))
            a = self.spec.action_space.to_index(action)
            self.counts[o, a, int(reward > self.cfg.reward_threshold)] += 1
        return UpdateStats(num_steps=len(batch))

    def state_dict(self) -> Dict[str, Any]:
        return {"counts": self.counts.tolist()}

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        counts = np.asarray(state["counts"], dtype=np.int64)
        if counts.shape != self.counts.shape:
            raise DimensionMismatch(f"counts of shape {counts.shape}, expected {self.counts.shape}")
        self.counts = counts

    def __repr__(self) -> str:
        return f"ThompsonSamplingAgent(threshold={self.cfg.reward_threshold})"
