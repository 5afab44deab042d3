"""Return and advantage estimators over a single rollout.

Both estimators treat a rollout as a sequence of steps in which done=True
marks the last step of an episode. A rollout whose last step is not done
was cut mid-episode; its continuation value V(s_T) must be supplied so the
tail is bootstrapped instead of being treated as terminal.
"""
from __future__ import annotations
from typing import Optional, Tuple

import numpy as np


def discounted_returns(
    rewards: np.ndarray,
    dones: np.ndarray,
    gamma: float,
    bootstrap_value: Optional[float] = None,
) -> np.ndarray:
    """Monte-Carlo discounted returns.

    G_t = r_t + gamma * G_{t+1}, with G_{t+1} = 0 after a done step and
    G_T = bootstrap_value (or 0) after the last step.

    Args:
        rewards: Rewards, shape [T].
        dones: Done flags, shape [T].
        gamma: Discount factor.
        bootstrap_value: Value estimate of the observation following the
            last step; only used if that step is not done.

    Returns:
        Returns, shape [T], float64.
    """
    rewards = np.asarray(rewards, dtype=np.float64)
    dones = np.asarray(dones, dtype=np.bool_)
    T = len(rewards)
    out = np.zeros(T, dtype=np.float64)
    running = 0.0 if bootstrap_value is None else float(bootstrap_value)
    for t in reversed(range(T)):
        if dones[t]:
            running = 0.0
        running = rewards[t] + gamma * running
        out[t] = running
    return out


def compute_gae(
    rewards: np.ndarray,
    values: np.ndarray,
    dones: np.ndarray,
    last_value: float,
    gamma: float,
    lam: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Compute Generalized Advantage Estimation (GAE-Lambda).

    GAE provides a bias-variance trade-off for advantage estimation by
    combining TD(0) and Monte Carlo estimates. When lam=1, it's equivalent
    to Monte Carlo with a baseline; when lam=0, it's TD(0).

    The accumulator restarts at every done step. At the end of the rollout
    last_value stands in for V(s_T) and the accumulator starts from zero,
    so a cut-off tail is bootstrapped rather than treated as terminal.

    Args:
        rewards: Array of rewards for each timestep, shape [T].
        values: Array of value function estimates, shape [T].
        dones: Array of done flags (True if episode ended), shape [T].
        last_value: Bootstrap value for the state after the last timestep.
        gamma: Discount factor.
        lam: GAE-Lambda parameter (0 = TD(0), 1 = Monte Carlo).

    Returns:
        Tuple of (advantages, returns) arrays, both shape [T].
        Returns are computed as advantages + values.

    Reference:
        Schulman et al. "High-Dimensional Continuous Control Using
        Generalized Advantage Estimation" (2016)
    """
    rewards = np.asarray(rewards, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    dones = np.asarray(dones, dtype=np.bool_)
    T = len(rewards)
    adv = np.zeros(T, dtype=np.float64)
    last_gae = 0.0

    for t in reversed(range(T)):
        next_nonterminal = 1.0 - float(dones[t])
        next_value = last_value if t == T - 1 else values[t + 1]

        # TD error: δ_t = r_t + γV(s_{t+1}) - V(s_t)
        delta = rewards[t] + gamma * next_value * next_nonterminal - values[t]

        # A_t = δ_t + (γλ)δ_{t+1} + (γλ)²δ_{t+2} + ...
        last_gae = delta + gamma * lam * next_nonterminal * last_gae
        adv[t] = last_gae

    returns = adv + values
    return adv, returns
