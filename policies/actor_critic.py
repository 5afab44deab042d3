"""Actor-Critic neural network policy.

This module implements a shared-parameter actor-critic architecture where
the policy (actor) and value function (critic) share a common feature
extractor. The policy head emits the parameters of an action distribution
over the environment's action space (categorical for finite spaces,
Gaussian for intervals, factored for products), and the value head
estimates expected returns.
"""
from __future__ import annotations
from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import torch
from torch import nn

from algorithms.ppo import PolicyGradientConfig, PPOConfig, policy_gradient_update, ppo_update
from core.specs import EnvSpec

from .agent import ActOutput, Agent, TrainingBatch, UpdateStats
from .distributions import ActionDistribution, distribution_for, num_distribution_params
from .engine import TorchEngine

logger = logging.getLogger(__name__)


@dataclass
class ActorCriticConfig:
    """Configuration for actor-critic agents.

    Attributes:
        hidden_sizes: Hidden layer sizes of the shared MLP (for recurrent
            agents, the last size is the GRU width).
        lr: Learning rate for Adam.
        max_grad_norm: Maximum gradient norm for gradient clipping.
        update_rule: "ppo" or "policy_gradient".
        ppo: PPO settings, used when update_rule == "ppo".
        pg: Vanilla policy gradient settings.
        device: Device to run on ("cpu" or "cuda").
        seed: Seed for parameter initialization and minibatch shuffling.
    """
    hidden_sizes: Tuple[int, ...] = (64, 64)
    lr: float = 3e-4
    max_grad_norm: Optional[float] = 0.5
    update_rule: str = "ppo"
    ppo: PPOConfig = field(default_factory=PPOConfig)
    pg: PolicyGradientConfig = field(default_factory=PolicyGradientConfig)
    device: str = "cpu"
    seed: Optional[int] = None

    def __post_init__(self):
        if self.update_rule not in ("ppo", "policy_gradient"):
            raise ValueError(f"unknown update_rule {self.update_rule!r}")
        if not self.hidden_sizes:
            raise ValueError("hidden_sizes must not be empty")


def mlp(in_dim: int, hidden_sizes: Sequence[int]) -> Tuple[nn.Sequential, int]:
    """MLP with Tanh activations; returns the module and its output width."""
    layers = []
    last = in_dim
    for h in hidden_sizes:
        layers += [nn.Linear(last, h), nn.Tanh()]
        last = h
    return nn.Sequential(*layers), last


class ActorCritic(nn.Module):
    """Actor-Critic policy network with shared feature extractor.

    The network consists of:
    - Shared body: Multi-layer MLP with Tanh activations
    - Policy head: Outputs the action distribution parameters
    - Value head: Outputs scalar value estimate

    Attributes:
        obs_dim: Width of the network input.
        num_params: Number of action distribution parameters.
        body: Shared feature extractor (MLP).
        policy_head: Linear layer mapping features to distribution parameters.
        value_head: Linear layer mapping features to value estimates.
    """
    def __init__(self, obs_dim: int, num_params: int, hidden_sizes=(64, 64)):
        super().__init__()
        self.obs_dim = obs_dim
        self.num_params = num_params

        self.body, last = mlp(obs_dim, hidden_sizes)
        self.policy_head = nn.Linear(last, num_params)
        self.value_head = nn.Linear(last, 1)

    def forward(self, obs: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """Forward pass.

        Args:
            obs: Observation tensor, shape [B, obs_dim].

        Returns:
            Tuple of (distribution parameters [B, num_params], values [B]).
        """
        x = self.body(obs)
        return self.policy_head(x), self.value_head(x).squeeze(-1)


def encode_observations(spec: EnvSpec, rows: np.ndarray, device: torch.device) -> torch.Tensor:
    """Turn encoded observations [B, obs_dim] into a network input.

    Observation spaces with an empty encoding (Singleton) feed a constant
    1.0 so the network still has an input.
    """
    rows = np.asarray(rows, dtype=np.float32)
    if spec.obs_dim == 0:
        return torch.ones((rows.shape[0], 1), dtype=torch.float32, device=device)
    return torch.as_tensor(rows, dtype=torch.float32, device=device)


class ActorCriticAgent(Agent):
    """Feed-forward actor-critic agent.

    The parameters are read concurrently by act() from the sampler's worker
    threads and only written by update(), which runs between sampling
    cycles.
    """

    def __init__(self, spec: EnvSpec, cfg: Optional[ActorCriticConfig] = None):
        self.spec = spec
        self.cfg = cfg or ActorCriticConfig()
        if self.cfg.seed is not None:
            torch.manual_seed(self.cfg.seed)

        self.network = self._build_network()
        self.engine = TorchEngine(
            self.network,
            lr=self.cfg.lr,
            max_grad_norm=self.cfg.max_grad_norm,
            device=self.cfg.device,
        )
        self._generator = torch.Generator()
        if self.cfg.seed is not None:
            self._generator.manual_seed(self.cfg.seed)

    def _build_network(self) -> nn.Module:
        return ActorCritic(
            max(self.spec.obs_dim, 1),
            num_distribution_params(self.spec.action_space),
            self.cfg.hidden_sizes,
        )

    @property
    def device(self) -> torch.device:
        return self.engine.device

    def _input(self, observation: Any) -> torch.Tensor:
        row = self.spec.observation_space.encode(observation)[None, :]
        return encode_observations(self.spec, row, self.device)

    def act(self, observation: Any, instance_id: int, rng: np.random.Generator) -> ActOutput:
        with torch.no_grad():
            params, value = self.network(self._input(observation))
            dist = distribution_for(self.spec.action_space, params)
            action = dist.sample(rng)[0]
            log_prob = dist.log_prob([action])[0].item()
        return ActOutput(action=action, log_prob=log_prob, value=value[0].item())

    def act_deterministic(self, observation: Any) -> Any:
        """Most likely action, for evaluation."""
        with torch.no_grad():
            params, _ = self.network(self._input(observation))
            return distribution_for(self.spec.action_space, params).mode()[0]

    def bootstrap_value(self, observation: Any, instance_id: int) -> Optional[float]:
        with torch.no_grad():
            _, value = self.network(self._input(observation))
        return value[0].item()

    def _evaluate(self, batch: TrainingBatch):
        obs = encode_observations(self.spec, batch.observations, self.device)

        def evaluate(idx: np.ndarray) -> Tuple[ActionDistribution, torch.Tensor]:
            rows = torch.as_tensor(idx, dtype=torch.long, device=self.device)
            params, values = self.network(obs[rows])
            return distribution_for(self.spec.action_space, params), values

        return evaluate

    def update(self, batch: TrainingBatch) -> UpdateStats:
        evaluate = self._evaluate(batch)
        if self.cfg.update_rule == "ppo":
            stats = ppo_update(evaluate, self.engine, batch, self.cfg.ppo, generator=self._generator)
        else:
            stats = policy_gradient_update(evaluate, self.engine, batch, self.cfg.pg)
        logger.debug("update: %s", stats)
        return stats

    def state_dict(self) -> Dict[str, Any]:
        return {
            "engine": self.engine.state_dict(),
            "generator": self._generator.get_state(),
        }

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        self.engine.load_state_dict(state["engine"])
        if "generator" in state:
            self._generator.set_state(state["generator"])
