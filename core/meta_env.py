# core/meta_env.py
"""Meta-RL environment.

Treats learning itself as the task: one meta episode (a "trial") runs
several episodes of an inner environment that is freshly sampled at every
trial. The outcome of each inner step is fed back through the observation,
so a recurrent agent can adapt within a trial (RL^2, Duan et al. 2016).

Observation: a tuple (inner_obs, prev_step, episode_done)
    - inner_obs: the inner observation the next action acts on, or None
      right after an inner episode ended (then episode_done is True).
    - prev_step: (action, reward) of the previous inner step, or None at the
      start of an inner episode. The reward is a length-1 array.
    - episode_done: whether the previous step ended an inner episode.

Actions are forwarded to the inner environment, except right after an inner
episode ended: that action is ignored, the inner environment is reset and
the step pays 0. The trial ends (done) when the last inner episode ends.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

import numpy as np

from spaces import Indexed, Interval, Nullable, Product, Space

from .base_env import Env, StepResult
from .checked_env import CheckedEnv
from .errors import DimensionMismatch
from .specs import EnvSpec

InnerEnvSampler = Callable[[np.random.Generator], Env]


@dataclass
class MetaEnvConfig:
    episodes_per_trial: int = 10

    def __post_init__(self):
        if self.episodes_per_trial < 1:
            raise ValueError(f"episodes_per_trial must be >= 1, got {self.episodes_per_trial}")


def meta_observation_space(inner: EnvSpec) -> Space:
    step_info = Product([inner.action_space, Interval(-np.inf, np.inf)])
    return Product([
        Nullable(inner.observation_space),
        Nullable(step_info),
        Indexed((False, True)),
    ])


class MetaEnv(Env):
    """Trials of inner episodes over a distribution of environments.

    Args:
        sample_env: Builds a new inner environment from the trial's
            generator. Every sampled environment must have inner_spec.
        inner_spec: Spaces shared by all inner environments.
        cfg: Trial settings.
    """

    def __init__(
        self,
        sample_env: InnerEnvSampler,
        inner_spec: EnvSpec,
        cfg: Optional[MetaEnvConfig] = None,
    ):
        self.sample_env = sample_env
        self.inner_spec = inner_spec
        self.cfg = cfg or MetaEnvConfig()
        self.spec = EnvSpec(
            observation_space=meta_observation_space(inner_spec),
            action_space=inner_spec.action_space,
        )

        self._inner: Optional[CheckedEnv] = None
        self._rng: Optional[np.random.Generator] = None
        self._episode_index = 0
        self._inner_done = False

    @property
    def inner(self) -> Optional[Env]:
        """The inner environment of the current trial."""
        return None if self._inner is None else self._inner.base_env

    @property
    def episode_index(self) -> int:
        """Number of inner episodes completed in the current trial."""
        return self._episode_index

    def reset(self, rng: np.random.Generator) -> Tuple[Any, ...]:
        if self._inner is not None:
            self._inner.close()
            self._inner = None
        inner = self.sample_env(rng)
        if inner.spec != self.inner_spec:
            raise DimensionMismatch(f"sampled inner env has spec {inner.spec}, expected {self.inner_spec}")
        self._inner = CheckedEnv(inner)
        self._rng = rng
        self._episode_index = 0
        self._inner_done = False
        return (self._inner.reset(rng), None, False)

    def step(self, action: Any) -> StepResult:
        if self._inner_done:
            # Start the next inner episode; the action is ignored.
            self._inner_done = False
            return StepResult(obs=(self._inner.reset(self._rng), None, False), reward=0.0, done=False)

        res = self._inner.step(action)
        trial_done = False
        if res.done:
            self._inner_done = True
            self._episode_index += 1
            trial_done = self._episode_index >= self.cfg.episodes_per_trial

        inner_obs = None if res.done else res.obs
        prev_step = (action, np.array([res.reward], dtype=np.float64))
        return StepResult(
            obs=(inner_obs, prev_step, bool(res.done)),
            reward=res.reward,
            done=trial_done,
            info=res.info,
        )

    def close(self) -> None:
        if self._inner is not None:
            self._inner.close()
            self._inner = None
