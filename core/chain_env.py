"""Chain environment.

A small discrete MDP useful for smoke-testing agents. The agent walks along a
chain of states. Moving "left" always returns to the start with a small
reward; moving "right" advances one state and pays a large reward only at the
end of the chain. With probability ``slip`` the chosen move is swapped.

Episodes never terminate on their own; rollouts are cut by the sampler's
horizon (or by ``max_steps`` when set).
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import numpy as np

from spaces import Discrete, Indexed

from .base_env import Env, StepResult
from .specs import EnvSpec

MOVES = ("left", "right")


@dataclass
class ChainEnvConfig:
    """Configuration for the chain environment.

    Attributes:
        size: Number of states in the chain.
        slip: Probability that the chosen move is swapped.
        left_reward: Reward for moving left (back to the start).
        end_reward: Reward for moving right at the last state.
        max_steps: Optional episode length; None means never terminate.
    """
    size: int = 5
    slip: float = 0.2
    left_reward: float = 2.0
    end_reward: float = 10.0
    max_steps: Optional[int] = None

    def __post_init__(self):
        if self.size < 1:
            raise ValueError(f"size must be >= 1, got {self.size}")
        if not 0.0 <= self.slip <= 1.0:
            raise ValueError(f"slip must be in [0, 1], got {self.slip}")


class ChainEnv(Env):
    def __init__(self, cfg: Optional[ChainEnvConfig] = None):
        self.cfg = cfg or ChainEnvConfig()
        self.spec = EnvSpec(
            observation_space=Discrete(self.cfg.size),
            action_space=Indexed(MOVES),
        )
        self._state = 0
        self._t = 0
        self._rng: Optional[np.random.Generator] = None

    def reset(self, rng: np.random.Generator) -> int:
        self._rng = rng
        self._state = 0
        self._t = 0
        return self._state

    def step(self, action: str) -> StepResult:
        if self._rng is not None and self._rng.random() < self.cfg.slip:
            action = "left" if action == "right" else "right"

        if action == "left":
            self._state = 0
            reward = self.cfg.left_reward
        elif self._state == self.cfg.size - 1:
            reward = self.cfg.end_reward
        else:
            self._state += 1
            reward = 0.0

        self._t += 1
        done = self.cfg.max_steps is not None and self._t >= self.cfg.max_steps
        return StepResult(obs=self._state, reward=reward, done=done)
