"""Online step and episode statistics."""
from __future__ import annotations
from dataclasses import dataclass, field
import math
from typing import Dict


@dataclass
class OnlineMeanVariance:
    """Welford running mean / variance."""
    count: int = 0
    mean: float = 0.0
    _m2: float = 0.0

    def push(self, x: float) -> None:
        self.count += 1
        delta = x - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (x - self.mean)

    @property
    def variance(self) -> float:
        if self.count < 2:
            return math.nan
        return self._m2 / (self.count - 1)

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)


@dataclass
class OnlineStepsSummary:
    """Accumulates step rewards and completed-episode returns and lengths.

    An episode is counted once its terminal step is pushed; partial
    episodes only contribute to step_reward.
    """
    step_reward: OnlineMeanVariance = field(default_factory=OnlineMeanVariance)
    episode_reward: OnlineMeanVariance = field(default_factory=OnlineMeanVariance)
    episode_length: OnlineMeanVariance = field(default_factory=OnlineMeanVariance)
    current_episode_reward: float = 0.0
    current_episode_length: int = 0

    def push(self, reward: float, done: bool) -> None:
        self.step_reward.push(reward)
        self.current_episode_reward += reward
        self.current_episode_length += 1
        if done:
            self.end_episode()

    def end_episode(self) -> None:
        self.episode_reward.push(self.current_episode_reward)
        self.episode_length.push(float(self.current_episode_length))
        self.current_episode_reward = 0.0
        self.current_episode_length = 0

    def discard_partial(self) -> None:
        """Forget the running episode (e.g. at a horizon cutoff)."""
        self.current_episode_reward = 0.0
        self.current_episode_length = 0

    @property
    def num_steps(self) -> int:
        return self.step_reward.count

    @property
    def num_episodes(self) -> int:
        return self.episode_reward.count

    def as_dict(self) -> Dict[str, float]:
        return {
            "num_steps": float(self.num_steps),
            "num_episodes": float(self.num_episodes),
            "step_reward_mean": self.step_reward.mean,
            "episode_reward_mean": self.episode_reward.mean if self.num_episodes else math.nan,
            "episode_length_mean": self.episode_length.mean if self.num_episodes else math.nan,
        }
