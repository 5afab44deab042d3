# core/checked_env.py
from __future__ import annotations
import math
from typing import Any

import numpy as np

from .base_env import Env, StepResult
from .errors import ProtocolViolation


class CheckedEnv(Env):
    """
    Wraps a base Env and enforces the reset/step protocol:

    - step() before the first reset() is a ProtocolViolation
    - step() after a done=True step without reset() is a ProtocolViolation
    - non-finite rewards (NaN / inf) are a ProtocolViolation
    - actions outside the action space are a ProtocolViolation

    Violations are caller errors and are never retried.
    """

    def __init__(self, base_env: Env, check_actions: bool = True, check_observations: bool = False):
        self.base_env = base_env
        self.spec = base_env.spec
        self.check_actions = check_actions
        self.check_observations = check_observations

        self._needs_reset = True
        self._t = 0

    @property
    def needs_reset(self) -> bool:
        return self._needs_reset

    @property
    def t(self) -> int:
        """Number of steps taken since the last reset."""
        return self._t

    def _check_obs(self, obs: Any) -> None:
        if self.check_observations and not self.spec.observation_space.contains(obs):
            raise ProtocolViolation(
                f"observation {obs!r} is not in {self.spec.observation_space}", step=self._t
            )

    def reset(self, rng: np.random.Generator) -> Any:
        obs = self.base_env.reset(rng)
        self._needs_reset = False
        self._t = 0
        self._check_obs(obs)
        return obs

    def step(self, action: Any) -> StepResult:
        if self._needs_reset:
            raise ProtocolViolation(
                "step() called before reset() or after the episode ended", step=self._t
            )
        if self.check_actions and not self.spec.action_space.contains(action):
            raise ProtocolViolation(
                f"action {action!r} is not in {self.spec.action_space}", step=self._t
            )

        res = self.base_env.step(action)
        reward = float(res.reward)
        if not math.isfinite(reward):
            # The environment is in an unknown state after a bad step.
            self._needs_reset = True
            raise ProtocolViolation(f"non-finite reward {reward}", step=self._t)

        self._t += 1
        self._check_obs(res.obs)
        if res.done:
            self._needs_reset = True

        return StepResult(obs=res.obs, reward=reward, done=bool(res.done), info=res.info)

    def close(self) -> None:
        self.base_env.close()
