"""Loss construction and optimization steps for torch agents.

This module implements the update rules the actor-critic agents run inside
Agent.update(): Proximal Policy Optimization (clipped surrogate objective,
several epochs of minibatches) and a single-step vanilla policy gradient.
Advantages arrive already estimated (and normalized, if enabled) by
PolicyGradientAlgorithm; nothing here touches rewards or discounting.

Reference:
    Schulman et al. "Proximal Policy Optimization Algorithms" (2017)
    https://arxiv.org/abs/1707.06347
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
import torch

from policies.agent import TrainingBatch, UpdateStats
from policies.distributions import ActionDistribution
from policies.engine import TorchEngine

# Maps row indices of a TrainingBatch to (action distribution, values) for
# those rows under the current parameters.
EvaluateFn = Callable[[np.ndarray], Tuple[ActionDistribution, torch.Tensor]]


@dataclass
class PPOConfig:
    """Configuration for the PPO update rule.

    Attributes:
        clip_ratio: PPO clipping ratio (typically 0.1-0.3). Larger values allow
            bigger policy updates.
        train_iters: Number of passes (epochs) over the batch per update.
        batch_size: Mini-batch size for each gradient step. None uses the
            whole batch as one minibatch.
        value_coef: Coefficient for value function loss in total loss.
        entropy_coef: Entropy bonus coefficient to encourage exploration
            (0 = no entropy bonus).
    """
    clip_ratio: float = 0.2
    train_iters: int = 80
    batch_size: Optional[int] = 64
    value_coef: float = 0.5
    entropy_coef: float = 0.0

    def __post_init__(self):
        if self.clip_ratio <= 0:
            raise ValueError(f"clip_ratio must be > 0, got {self.clip_ratio}")
        if self.train_iters < 1:
            raise ValueError(f"train_iters must be >= 1, got {self.train_iters}")
        if self.batch_size is not None and self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")


@dataclass
class PolicyGradientConfig:
    """Configuration for the vanilla (REINFORCE / A2C style) update rule.

    Attributes:
        value_coef: Coefficient for value function loss in total loss.
        entropy_coef: Entropy bonus coefficient.
    """
    value_coef: float = 0.5
    entropy_coef: float = 0.0


def _as_tensor(x: np.ndarray, device: torch.device) -> torch.Tensor:
    return torch.as_tensor(np.asarray(x), dtype=torch.float32, device=device)


def _old_log_probs(evaluate: EvaluateFn, batch: TrainingBatch, device: torch.device) -> torch.Tensor:
    if batch.log_probs is not None:
        return _as_tensor(batch.log_probs, device)
    with torch.no_grad():
        dist, _ = evaluate(np.arange(len(batch)))
        return dist.log_prob(batch.actions).detach()


def ppo_update(
    evaluate: EvaluateFn,
    engine: TorchEngine,
    batch: TrainingBatch,
    cfg: PPOConfig,
    generator: Optional[torch.Generator] = None,
) -> UpdateStats:
    """Perform PPO policy update on a training batch.

    Updates the policy using clipped surrogate objective and value
    function learning. Performs multiple iterations over the data
    with random mini-batches.

    Args:
        evaluate: Recomputes the action distribution and values for rows of
            the batch with the current parameters.
        engine: Engine owning the parameters.
        batch: Validated training batch.
        cfg: PPO configuration.
        generator: Torch generator for minibatch shuffling.

    Returns:
        Averaged UpdateStats over all gradient steps.
    """
    device = engine.device
    num_samples = len(batch)
    returns = _as_tensor(batch.returns, device)
    advantages = _as_tensor(batch.advantages, device)
    old_log_probs = _old_log_probs(evaluate, batch, device)
    batch_size = cfg.batch_size or num_samples

    stats = UpdateStats(num_steps=num_samples)
    num_updates = 0

    for _ in range(cfg.train_iters):
        idx = torch.randperm(num_samples, generator=generator).numpy()

        for start in range(0, num_samples, batch_size):
            mb_idx = idx[start:start + batch_size]
            mb_idx_t = torch.as_tensor(mb_idx, dtype=torch.long, device=device)
            mb_actions = [batch.actions[i] for i in mb_idx]
            mb_old_logp = old_log_probs[mb_idx_t]
            mb_returns = returns[mb_idx_t]
            mb_adv = advantages[mb_idx_t]

            dist, values = evaluate(mb_idx)
            new_logp = dist.log_prob(mb_actions)
            entropy = dist.entropy().mean()

            # ratio = π_new(a|s) / π_old(a|s)
            ratio = torch.exp(new_logp - mb_old_logp)
            surr1 = ratio * mb_adv
            surr2 = torch.clamp(ratio, 1.0 - cfg.clip_ratio, 1.0 + cfg.clip_ratio) * mb_adv
            policy_loss = -torch.min(surr1, surr2).mean()

            value_loss = torch.nn.functional.mse_loss(values, mb_returns)

            loss = policy_loss + cfg.value_coef * value_loss - cfg.entropy_coef * entropy

            grad_norm = engine.backward(loss)
            engine.apply()

            with torch.no_grad():
                kl = (mb_old_logp - new_logp).mean().item()

            stats.policy_loss += policy_loss.item()
            stats.value_loss += value_loss.item()
            stats.entropy += entropy.item()
            stats.kl += kl
            stats.grad_norm += grad_norm
            num_updates += 1

    for name in ("policy_loss", "value_loss", "entropy", "kl", "grad_norm"):
        setattr(stats, name, getattr(stats, name) / max(1, num_updates))
    return stats


def policy_gradient_update(
    evaluate: EvaluateFn,
    engine: TorchEngine,
    batch: TrainingBatch,
    cfg: PolicyGradientConfig,
) -> UpdateStats:
    """One gradient step on -E[log π(a|s) A] plus value regression."""
    device = engine.device
    num_samples = len(batch)
    returns = _as_tensor(batch.returns, device)
    advantages = _as_tensor(batch.advantages, device)
    old_log_probs = _old_log_probs(evaluate, batch, device)

    dist, values = evaluate(np.arange(num_samples))
    logp = dist.log_prob(batch.actions)
    entropy = dist.entropy().mean()
    policy_loss = -(logp * advantages).mean()
    value_loss = torch.nn.functional.mse_loss(values, returns)
    loss = policy_loss + cfg.value_coef * value_loss - cfg.entropy_coef * entropy

    grad_norm = engine.backward(loss)
    engine.apply()

    with torch.no_grad():
        kl = (old_log_probs - logp).mean().item()

    return UpdateStats(
        policy_loss=policy_loss.item(),
        value_loss=value_loss.item(),
        entropy=entropy.item(),
        kl=kl,
        grad_norm=grad_norm,
        num_steps=num_samples,
    )
