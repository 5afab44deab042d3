"""Policy-gradient training orchestration.

PolicyGradientAlgorithm turns a finalized sampling Batch into the
TrainingBatch an agent's update() consumes:

1. validate the batch against the environment spec
2. estimate returns and advantages per rollout (Monte-Carlo or GAE),
   bootstrapping every cut-off tail with the agent's value estimate
3. optionally normalize advantages across the whole batch
4. call agent.update() exactly once
"""
from __future__ import annotations
from dataclasses import dataclass
import logging
import math
from typing import Any, List, Optional, Tuple

import numpy as np

from core.errors import DimensionMismatch, ProtocolViolation
from core.specs import EnvSpec
from policies.agent import Agent, TrainingBatch, UpdateStats
from sampling.history import Batch, Rollout
from spaces import Interval, Product, Space

from .returns import compute_gae, discounted_returns

logger = logging.getLogger(__name__)

ESTIMATORS = ("gae", "monte_carlo")


@dataclass
class AdvantageConfig:
    """Configuration for return / advantage estimation.

    Attributes:
        estimator: "gae" (bootstrapped, needs value estimates) or
            "monte_carlo" (discounted returns).
        gamma: Discount factor, 0 < gamma < 1.
        lam: GAE-Lambda parameter, 0 <= lam <= 1. Ignored by Monte-Carlo.
        normalize_advantages: Normalize advantages to zero mean and unit
            variance across the whole batch.
        subtract_baseline: Monte-Carlo only; use return - value as the
            advantage (requires value estimates).
    """
    estimator: str = "gae"
    gamma: float = 0.99
    lam: float = 0.95
    normalize_advantages: bool = True
    subtract_baseline: bool = False

    def __post_init__(self):
        if self.estimator not in ESTIMATORS:
            raise ValueError(f"estimator must be one of {ESTIMATORS}, got {self.estimator!r}")
        if not 0.0 < self.gamma < 1.0:
            raise ValueError(f"gamma must be in (0, 1), got {self.gamma}")
        if not 0.0 <= self.lam <= 1.0:
            raise ValueError(f"lam must be in [0, 1], got {self.lam}")

    @property
    def needs_values(self) -> bool:
        return self.estimator == "gae" or self.subtract_baseline


def _shape_mismatch(space: Space, value: Any) -> Optional[str]:
    """Describe the first Interval component whose shape disagrees with space."""
    if isinstance(space, Interval):
        try:
            shape = np.shape(value)
        except ValueError:
            return f"a ragged value where {space} expects ({space.dim},)"
        if shape != (space.dim,):
            return f"shape {shape} where {space} expects ({space.dim},)"
    elif isinstance(space, Product) and isinstance(value, tuple) and len(value) == len(space.spaces):
        for k, (sub, v) in enumerate(zip(space.spaces, value)):
            found = _shape_mismatch(sub, v)
            if found is not None:
                return f"component {k}: {found}"
    return None


def _check_value(space: Space, value: Any, what: str, instance_id: int, step: int) -> None:
    if space.contains(value):
        return
    mismatch = _shape_mismatch(space, value)
    if mismatch is not None:
        raise DimensionMismatch(f"{what} has {mismatch}", instance_id=instance_id, step=step)
    raise ProtocolViolation(f"{what} {value!r} is not in {space}", instance_id=instance_id, step=step)


def check_training_batch(batch: TrainingBatch, spec: EnvSpec) -> None:
    """Check that every array of a TrainingBatch agrees with the agent's EnvSpec and N.

    Raises:
        DimensionMismatch: On any inconsistent shape.
    """
    n = len(batch)
    if batch.observations.ndim != 2 or batch.observations.shape[1] != spec.obs_dim:
        raise DimensionMismatch(
            f"observation matrix has shape {batch.observations.shape}, "
            f"expected [N, {spec.obs_dim}]"
        )
    columns = {
        "actions": len(batch.actions),
        "advantages": len(batch.advantages),
        "returns": len(batch.returns),
        "episode_starts": len(batch.episode_starts),
    }
    if batch.log_probs is not None:
        columns["log_probs"] = len(batch.log_probs)
    if batch.values is not None:
        columns["values"] = len(batch.values)
    if batch.rewards is not None:
        columns["rewards"] = len(batch.rewards)
    for name, length in columns.items():
        if length != n:
            raise DimensionMismatch(f"{name} has {length} rows, observations have {n}")
    covered = sum(end - start for start, end in batch.segments)
    if covered != n:
        raise DimensionMismatch(f"segments cover {covered} rows, observations have {n}")


class PolicyGradientAlgorithm:
    """Advantage estimation and update orchestration for on-policy agents.

    Args:
        cfg: Advantage estimation settings.
    """

    def __init__(self, cfg: Optional[AdvantageConfig] = None):
        self.cfg = cfg or AdvantageConfig()

    def validate(self, batch: Batch, spec: EnvSpec) -> None:
        """Reject malformed batches before anything reaches the agent.

        Raises:
            ProtocolViolation: Empty batch, values outside their space,
                non-finite rewards, missing value estimates the estimator
                needs, or a cut-off tail without a bootstrap value under GAE.
            DimensionMismatch: Interval values of the wrong dimension.
        """
        if not batch.rollouts:
            raise ProtocolViolation("batch has no rollouts")
        for rollout in batch.rollouts:
            if not rollout.records:
                raise ProtocolViolation("empty rollout", instance_id=rollout.instance_id)
            for t, rec in enumerate(rollout.records):
                _check_value(spec.observation_space, rec.observation, "observation", rollout.instance_id, t)
                _check_value(spec.action_space, rec.action, "action", rollout.instance_id, t)
                if not math.isfinite(rec.reward):
                    raise ProtocolViolation(
                        f"non-finite reward {rec.reward}", instance_id=rollout.instance_id, step=t
                    )
                if self.cfg.needs_values and (rec.value is None or not math.isfinite(rec.value)):
                    raise ProtocolViolation(
                        f"estimator {self.cfg.estimator!r} needs a finite value estimate per step, "
                        f"got {rec.value}",
                        instance_id=rollout.instance_id,
                        step=t,
                    )
            if not rollout.terminal:
                if rollout.bootstrap_value is None:
                    if self.cfg.estimator == "gae":
                        raise ProtocolViolation(
                            "rollout cut mid-episode without a bootstrap value",
                            instance_id=rollout.instance_id,
                            step=len(rollout) - 1,
                        )
                elif not math.isfinite(rollout.bootstrap_value):
                    raise ProtocolViolation(
                        f"non-finite bootstrap value {rollout.bootstrap_value}",
                        instance_id=rollout.instance_id,
                        step=len(rollout) - 1,
                    )

    def trainable_length(self, rollout: Rollout) -> int:
        """Number of leading records of rollout that receive a training signal.

        Under Monte-Carlo a cut-off tail without a bootstrap value cannot be
        scored, so the trailing partial episode is dropped.
        """
        if rollout.terminal or rollout.bootstrap_value is not None:
            return len(rollout)
        last_done = -1
        for t, rec in enumerate(rollout.records):
            if rec.done:
                last_done = t
        return last_done + 1

    def compute_advantages(self, rollout: Rollout) -> Tuple[np.ndarray, np.ndarray]:
        """Advantages and return targets for the trainable prefix of rollout.

        Returns:
            Tuple of (advantages, returns), both of length
            trainable_length(rollout).
        """
        n = self.trainable_length(rollout)
        records = rollout.records[:n]
        rewards = np.array([r.reward for r in records], dtype=np.float64)
        dones = np.array([r.done for r in records], dtype=np.bool_)
        bootstrap = rollout.bootstrap_value if n == len(rollout) else None

        if self.cfg.estimator == "gae":
            values = np.array([r.value for r in records], dtype=np.float64)
            last_value = 0.0 if bootstrap is None else bootstrap
            return compute_gae(rewards, values, dones, last_value, self.cfg.gamma, self.cfg.lam)

        returns = discounted_returns(rewards, dones, self.cfg.gamma, bootstrap)
        if self.cfg.subtract_baseline:
            values = np.array([r.value for r in records], dtype=np.float64)
            return returns - values, returns
        return returns.copy(), returns

    def prepare(self, batch: Batch, spec: EnvSpec) -> TrainingBatch:
        """Validate batch and assemble the TrainingBatch for Agent.update."""
        self.validate(batch, spec)

        obs_rows: List[np.ndarray] = []
        actions: List[Any] = []
        advantages: List[np.ndarray] = []
        returns: List[np.ndarray] = []
        log_probs: List[Optional[float]] = []
        values: List[Optional[float]] = []
        segments: List[Tuple[int, int]] = []
        episode_starts: List[bool] = []
        rewards: List[float] = []

        for rollout in batch.rollouts:
            adv, ret = self.compute_advantages(rollout)
            n = len(adv)
            if n == 0:
                continue
            start = len(actions)
            prev_done = True
            for rec in rollout.records[:n]:
                obs_rows.append(spec.observation_space.encode(rec.observation))
                actions.append(rec.action)
                rewards.append(rec.reward)
                log_probs.append(rec.log_prob)
                values.append(rec.value)
                episode_starts.append(prev_done)
                prev_done = rec.done
            advantages.append(adv)
            returns.append(ret)
            segments.append((start, start + n))

        adv_all = np.concatenate(advantages) if advantages else np.zeros(0)
        if self.cfg.normalize_advantages and len(adv_all) >= 2:
            adv_all = (adv_all - adv_all.mean()) / (adv_all.std() + 1e-8)

        training_batch = TrainingBatch(
            observations=(
                np.stack(obs_rows) if obs_rows else np.zeros((0, spec.obs_dim), dtype=np.float64)
            ),
            actions=actions,
            advantages=adv_all,
            returns=np.concatenate(returns) if returns else np.zeros(0),
            log_probs=(
                np.array(log_probs, dtype=np.float64)
                if log_probs and all(lp is not None for lp in log_probs)
                else None
            ),
            values=(
                np.array(values, dtype=np.float64)
                if values and all(v is not None for v in values)
                else None
            ),
            segments=segments,
            episode_starts=np.array(episode_starts, dtype=np.bool_),
            rewards=np.array(rewards, dtype=np.float64),
        )
        check_training_batch(training_batch, spec)
        return training_batch

    def update(self, agent: Agent, batch: Batch) -> UpdateStats:
        """Prepare batch and run exactly one agent.update() on it.

        Batches that leave no trainable step (Monte-Carlo without a critic
        and no completed episode) are skipped with a warning.
        """
        training_batch = self.prepare(batch, agent.spec)
        if len(training_batch) == 0:
            logger.warning(
                "no trainable steps in a batch of %d steps; skipping update", batch.num_steps
            )
            return UpdateStats()
        return agent.update(training_batch)
