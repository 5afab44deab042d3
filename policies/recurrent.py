"""Recurrent actor-critic agent.

The network keeps a GRU hidden state per environment instance. During
sampling the state advances one step per act() call and is reset by the
sampler at each of that instance's episode boundaries. During updates the
batch is replayed sequence by sequence from the initial state, resetting
wherever a new episode starts, so the replayed hidden states match the
ones seen during collection.
"""
from __future__ import annotations
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import torch
from torch import nn

from algorithms.ppo import policy_gradient_update, ppo_update
from core.specs import EnvSpec

from .actor_critic import ActorCriticAgent, ActorCriticConfig, encode_observations, mlp
from .agent import ActOutput, TrainingBatch, UpdateStats
from .distributions import ActionDistribution, distribution_for, num_distribution_params
from .hidden_state import HiddenStateTable


class RecurrentActorCritic(nn.Module):
    """MLP encoder, GRU cell, and policy / value heads on the GRU state."""

    def __init__(self, obs_dim: int, num_params: int, hidden_sizes=(64, 64)):
        super().__init__()
        self.encoder, enc_dim = mlp(obs_dim, hidden_sizes[:-1])
        self.hidden_size = hidden_sizes[-1]
        self.cell = nn.GRUCell(enc_dim, self.hidden_size)
        self.policy_head = nn.Linear(self.hidden_size, num_params)
        self.value_head = nn.Linear(self.hidden_size, 1)

    def initial_state(self, batch_size: int = 1) -> torch.Tensor:
        return torch.zeros(batch_size, self.hidden_size)

    def heads(self, h: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        return self.policy_head(h), self.value_head(h).squeeze(-1)

    def forward(self, obs: torch.Tensor, h: torch.Tensor):
        """One step: returns (params [B, P], values [B], new hidden [B, H])."""
        h_new = self.cell(self.encoder(obs), h)
        params, values = self.heads(h_new)
        return params, values, h_new


class RecurrentActorCriticAgent(ActorCriticAgent):
    """Actor-critic agent with per-instance GRU hidden state."""

    is_recurrent = True

    def __init__(self, spec: EnvSpec, cfg: Optional[ActorCriticConfig] = None, num_instances: int = 1):
        super().__init__(spec, cfg)
        self.hidden = HiddenStateTable(self._initial_state, num_instances)

    def _build_network(self) -> nn.Module:
        return RecurrentActorCritic(
            max(self.spec.obs_dim, 1),
            num_distribution_params(self.spec.action_space),
            self.cfg.hidden_sizes,
        )

    def _initial_state(self) -> torch.Tensor:
        return self.network.initial_state(1).to(self.device)

    def set_num_instances(self, num_instances: int) -> None:
        self.hidden.resize(num_instances)

    def reset_hidden_state(self, instance_id: int) -> None:
        self.hidden.reset(instance_id)

    def act(self, observation: Any, instance_id: int, rng: np.random.Generator) -> ActOutput:
        h = self.hidden.get(instance_id)
        with torch.no_grad():
            params, value, h_new = self.network(self._input(observation), h)
            dist = distribution_for(self.spec.action_space, params)
            action = dist.sample(rng)[0]
            log_prob = dist.log_prob([action])[0].item()
        self.hidden.set(instance_id, h_new)
        return ActOutput(action=action, log_prob=log_prob, value=value[0].item())

    def act_deterministic(self, observation: Any, instance_id: int = 0) -> Any:
        h = self.hidden.get(instance_id)
        with torch.no_grad():
            params, _, h_new = self.network(self._input(observation), h)
        self.hidden.set(instance_id, h_new)
        return distribution_for(self.spec.action_space, params).mode()[0]

    def bootstrap_value(self, observation: Any, instance_id: int) -> Optional[float]:
        # The new hidden state is discarded.
        with torch.no_grad():
            _, value, _ = self.network(self._input(observation), self.hidden.get(instance_id))
        return value[0].item()

    def _replay(self, batch: TrainingBatch) -> Tuple[torch.Tensor, torch.Tensor]:
        """Distribution params and values for every row of batch, in row order."""
        obs = encode_observations(self.spec, batch.observations, self.device)
        features = self.network.encoder(obs)
        starts = np.asarray([s for s, _ in batch.segments], dtype=np.int64)
        lengths = np.asarray([e - s for s, e in batch.segments], dtype=np.int64)
        episode_starts = torch.as_tensor(
            np.asarray(batch.episode_starts, dtype=np.float32), device=self.device
        )

        h = self.network.initial_state(len(starts)).to(self.device)
        rows_out: List[np.ndarray] = []
        h_out: List[torch.Tensor] = []
        max_len = int(lengths.max()) if len(lengths) else 0
        for t in range(max_len):
            active = np.nonzero(lengths > t)[0]
            rows = starts[active] + t
            active_t = torch.as_tensor(active, dtype=torch.long, device=self.device)
            rows_t = torch.as_tensor(rows, dtype=torch.long, device=self.device)
            keep = (1.0 - episode_starts[rows_t]).unsqueeze(-1)
            h_new = self.network.cell(features[rows_t], h[active_t] * keep)
            h = h.index_copy(0, active_t, h_new)
            rows_out.append(rows)
            h_out.append(h_new)

        order = torch.as_tensor(np.argsort(np.concatenate(rows_out)), dtype=torch.long, device=self.device)
        hs = torch.cat(h_out, dim=0)[order]
        return self.network.heads(hs)

    def _evaluate(self, batch: TrainingBatch):
        def evaluate(idx: np.ndarray) -> Tuple[ActionDistribution, torch.Tensor]:
            params, values = self._replay(batch)
            rows = torch.as_tensor(idx, dtype=torch.long, device=self.device)
            return distribution_for(self.spec.action_space, params[rows]), values[rows]

        return evaluate

    def update(self, batch: TrainingBatch) -> UpdateStats:
        evaluate = self._evaluate(batch)
        if self.cfg.update_rule == "ppo":
            # Replay needs whole sequences; one minibatch per epoch.
            cfg = replace(self.cfg.ppo, batch_size=None)
            return ppo_update(evaluate, self.engine, batch, cfg, generator=self._generator)
        return policy_gradient_update(evaluate, self.engine, batch, self.cfg.pg)

    def state_dict(self) -> Dict[str, Any]:
        state = super().state_dict()
        state["hidden"] = self.hidden.state_dict()
        return state

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        super().load_state_dict(state)
        if "hidden" in state:
            self.hidden.load_state_dict(state["hidden"])
