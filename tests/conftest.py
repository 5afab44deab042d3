from __future__ import annotations
import math
import time
from typing import Any, List, Optional

import numpy as np
import pytest

from core.base_env import Env, StepResult
from core.specs import EnvSpec
from policies.agent import ActOutput, Agent, TrainingBatch, UpdateStats
from policies.engine import Engine
from spaces import Discrete, Interval


class ConstantRewardEnv(Env):
    """Reward `reward` every step; observation is the step count mod n_obs."""

    def __init__(self, reward: float = 1.0, episode_length: Optional[int] = None, n_obs: int = 4):
        self.reward = reward
        self.episode_length = episode_length
        self.n_obs = n_obs
        self.spec = EnvSpec(observation_space=Discrete(n_obs), action_space=Discrete(2))
        self.t = 0
        self.resets = 0
        self.closed = False

    def reset(self, rng: np.random.Generator) -> int:
        self.t = 0
        self.resets += 1
        return 0

    def step(self, action: int) -> StepResult:
        self.t += 1
        done = self.episode_length is not None and self.t >= self.episode_length
        return StepResult(obs=self.t % self.n_obs, reward=self.reward, done=done)

    def close(self) -> None:
        self.closed = True


class NoisyEnv(Env):
    """Interval observations drawn from the reset generator; random lengths."""

    def __init__(self):
        self.spec = EnvSpec(observation_space=Interval(-1.0, 1.0, rescale=True), action_space=Discrete(3))
        self._rng = None
        self._done_p = 0.2

    def reset(self, rng: np.random.Generator) -> np.ndarray:
        self._rng = rng
        return rng.uniform(-1.0, 1.0, size=1)

    def step(self, action: int) -> StepResult:
        obs = self._rng.uniform(-1.0, 1.0, size=1)
        reward = float(action) + float(obs[0])
        return StepResult(obs=obs, reward=reward, done=bool(self._rng.random() < self._done_p))


class FailingEnv(ConstantRewardEnv):
    def __init__(self, fail_at: int = 2):
        super().__init__()
        self.fail_at = fail_at

    def step(self, action: int) -> StepResult:
        if self.t + 1 == self.fail_at:
            raise RuntimeError("simulator exploded")
        return super().step(action)


class NanRewardEnv(ConstantRewardEnv):
    def step(self, action: int) -> StepResult:
        res = super().step(action)
        return StepResult(obs=res.obs, reward=math.nan, done=res.done)


class SlowEnv(ConstantRewardEnv):
    def __init__(self, delay: float = 0.5):
        super().__init__()
        self.delay = delay

    def step(self, action: int) -> StepResult:
        time.sleep(self.delay)
        return super().step(action)


class ConstantValueAgent(Agent):
    """Uniform random actions, a fixed value estimate, records every update."""

    def __init__(self, spec: EnvSpec, value: Optional[float] = 10.0):
        self.spec = spec
        self.value = value
        self.updates: List[TrainingBatch] = []
        self.hidden_resets: List[int] = []

    def act(self, observation: Any, instance_id: int, rng: np.random.Generator) -> ActOutput:
        action = self.spec.action_space.sample(rng)
        return ActOutput(action=action, log_prob=math.log(0.5), value=self.value)

    def bootstrap_value(self, observation: Any, instance_id: int) -> Optional[float]:
        return self.value

    def reset_hidden_state(self, instance_id: int) -> None:
        self.hidden_resets.append(instance_id)

    def update(self, batch: TrainingBatch) -> UpdateStats:
        self.updates.append(batch)
        return UpdateStats(num_steps=len(batch))


class LinearStubEngine(Engine):
    """Linear model y = x @ w with plain gradient steps.

    backward() takes the gradient of the loss with respect to w directly.
    """

    def __init__(self, dim: int, lr: float = 0.1):
        self.w = np.zeros(dim)
        self.lr = lr
        self._grad = None
        self.applied = 0

    def forward(self, x: np.ndarray) -> np.ndarray:
        return np.asarray(x) @ self.w

    def backward(self, loss: np.ndarray) -> float:
        self._grad = np.asarray(loss, dtype=np.float64)
        return float(np.linalg.norm(self._grad))

    def apply(self) -> None:
        self.w = self.w - self.lr * self._grad
        self.applied += 1

    def state_dict(self):
        return {"w": self.w.copy()}

    def load_state_dict(self, state) -> None:
        self.w = np.asarray(state["w"]).copy()


class LinearCriticAgent(Agent):
    """Random actions; linear value function trained by regression on returns."""

    def __init__(self, spec: EnvSpec, lr: float = 0.1):
        self.spec = spec
        self.engine = LinearStubEngine(spec.obs_dim, lr=lr)

    def _value(self, observation: Any) -> float:
        return float(self.engine.forward(self.spec.observation_space.encode(observation)))

    def act(self, observation: Any, instance_id: int, rng: np.random.Generator) -> ActOutput:
        return ActOutput(action=self.spec.action_space.sample(rng), value=self._value(observation))

    def bootstrap_value(self, observation: Any, instance_id: int) -> Optional[float]:
        return self._value(observation)

    def update(self, batch: TrainingBatch) -> UpdateStats:
        pred = self.engine.forward(batch.observations)
        err = pred - batch.returns
        grad = 2.0 * batch.observations.T @ err / len(batch)
        grad_norm = self.engine.backward(grad)
        self.engine.apply()
        return UpdateStats(value_loss=float(np.mean(err ** 2)), grad_norm=grad_norm, num_steps=len(batch))


@pytest.fixture
def rng():
    return np.random.default_rng(0)


class QuadraticCostEnv(Env):
    """Interval observations in [-1, 1]; reward is minus the squared action."""

    def __init__(self, spec: EnvSpec):
        self.spec = spec
        self._rng = None

    def reset(self, rng: np.random.Generator) -> np.ndarray:
        self._rng = rng
        return rng.uniform(-1.0, 1.0, size=1)

    def step(self, action: np.ndarray) -> StepResult:
        return StepResult(
            obs=self._rng.uniform(-1.0, 1.0, size=1),
            reward=-float(np.sum(np.square(action))),
            done=False,
        )
