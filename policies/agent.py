"""Agent interface.

An agent is a policy: it maps observations to actions and improves itself
from batches of experience. Recurrent agents keep one hidden state per
environment instance; the sampler resets an instance's hidden state exactly
when that instance's environment resets.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from core.specs import EnvSpec


@dataclass(frozen=True)
class ActOutput:
    """Result of Agent.act.

    Attributes:
        action: Chosen action, a value of the action space.
        log_prob: Log-probability of the action under the current policy.
        value: Value estimate V(observation), if the agent has a critic.
    """
    action: Any
    log_prob: Optional[float] = None
    value: Optional[float] = None


@dataclass
class UpdateStats:
    """Scalar diagnostics of one update, for an external metrics sink.

    Attributes:
        policy_loss: Average policy (surrogate) loss.
        value_loss: Average value-function loss.
        entropy: Average policy entropy.
        kl: Average approximate KL between old and new policy.
        grad_norm: Average gradient norm before clipping.
        num_steps: Number of steps the update was computed from.
    """
    policy_loss: float = 0.0
    value_loss: float = 0.0
    entropy: float = 0.0
    kl: float = 0.0
    grad_norm: float = 0.0
    num_steps: int = 0

    def as_dict(self) -> Dict[str, float]:
        return {k: float(v) for k, v in asdict(self).items()}


@dataclass
class TrainingBatch:
    """Training data in the shape Agent.update consumes.

    Steps from all instances are concatenated; segments[k] = (start, end)
    delimits the steps of the k-th rollout, in the order they were produced.

    Attributes:
        observations: Encoded observations, shape [N, obs_dim].
        actions: Action values, length N.
        advantages: Advantage estimates, shape [N].
        returns: Return targets for the critic, shape [N].
        log_probs: Log-probabilities at collection time, shape [N], or None.
        values: Value estimates at collection time, shape [N], or None.
        segments: (start, end) index pairs, one per rollout.
        episode_starts: Shape [N]; True where a step is the first of an
            episode (hidden state must be reset before it).
        rewards: Immediate rewards, shape [N], or None.
    """
    observations: np.ndarray
    actions: List[Any]
    advantages: np.ndarray
    returns: np.ndarray
    log_probs: Optional[np.ndarray]
    values: Optional[np.ndarray]
    segments: List[Tuple[int, int]]
    episode_starts: np.ndarray
    rewards: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return int(self.observations.shape[0])


class Agent(ABC):
    """Abstract base class for agents.

    Attributes:
        spec: Observation and action spaces the agent acts in.
        is_recurrent: Whether act() depends on per-instance hidden state.
    """
    spec: EnvSpec
    is_recurrent: bool = False

    @abstractmethod
    def act(self, observation: Any, instance_id: int, rng: np.random.Generator) -> ActOutput:
        """Choose an action for one environment instance.

        Reads and writes only the hidden state of instance_id.

        Args:
            observation: Observation from the instance.
            instance_id: Which environment instance is asking.
            rng: Generator for exploration noise (one per instance).

        Returns:
            ActOutput with the action and optional diagnostics.
        """

    def bootstrap_value(self, observation: Any, instance_id: int) -> Optional[float]:
        """Value estimate of observation, without touching hidden state.

        Used as the bootstrap target when a rollout is cut mid-episode.
        Agents without a critic return None.
        """
        return None

    @abstractmethod
    def update(self, batch: TrainingBatch) -> UpdateStats:
        """Improve the policy from a validated training batch."""

    def set_num_instances(self, num_instances: int) -> None:
        """Allocate per-instance state for num_instances environments."""

    def reset_hidden_state(self, instance_id: int) -> None:
        """Reset the hidden state of one instance (no-op for feed-forward agents)."""

    def state_dict(self) -> Dict[str, Any]:
        return {}

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        pass


def segment_ids(batch: TrainingBatch) -> Sequence[int]:
    """Rollout index of each step of a training batch."""
    ids = np.empty(len(batch), dtype=np.int64)
    for k, (start, end) in enumerate(batch.segments):
        ids[start:end] = k
    return ids
