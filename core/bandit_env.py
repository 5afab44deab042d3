"""Deterministic multi-armed bandit.

Each episode is a single step: the agent picks an arm and receives that arm's
fixed reward. Used to check that an agent learns to prefer the best arm.
"""
from __future__ import annotations
from typing import Sequence

import numpy as np

from spaces import Discrete, Singleton

from .base_env import Env, StepResult
from .specs import EnvSpec


class DeterministicBanditEnv(Env):
    """One-step episodes with a fixed reward per arm.

    Attributes:
        rewards: Reward paid by each arm.
    """
    def __init__(self, rewards: Sequence[float] = (0.0, 1.0)):
        if len(rewards) == 0:
            raise ValueError("need at least one arm")
        self.rewards = np.asarray(rewards, dtype=np.float64)
        self.spec = EnvSpec(
            observation_space=Singleton(),
            action_space=Discrete(len(self.rewards)),
        )

    @property
    def best_arm(self) -> int:
        return int(np.argmax(self.rewards))

    def reset(self, rng: np.random.Generator) -> None:
        return None

    def step(self, action: int) -> StepResult:
        return StepResult(obs=None, reward=float(self.rewards[action]), done=True)
