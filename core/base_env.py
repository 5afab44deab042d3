"""Base environment interface for reinforcement learning.

This module defines the abstract base class for RL environments, providing
a standardized interface for reset, step, and cleanup operations. All
concrete environment implementations should inherit from the Env class.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np

from .specs import EnvSpec


@dataclass
class StepResult:
    """Result of an environment step.

    Attributes:
        obs: Observation after taking the action (a value of the
            observation space).
        reward: Scalar reward signal for the transition. Must be finite.
        done: Boolean indicating episode termination.
        info: Dictionary of additional information.
    """
    obs: Any
    reward: float
    done: bool
    info: Dict[str, Any] = field(default_factory=dict)


class Env(ABC):
    """Abstract base class for reinforcement learning environments.

    This class defines the standard RL environment interface. All environments
    must implement reset(), step(), and close() methods. The class also supports
    context manager protocol for automatic resource cleanup.

    Protocol: step() must not be called before the first reset(), nor after a
    step that reported done=True without an intervening reset(). Wrap an
    environment in core.checked_env.CheckedEnv to have this enforced.

    Attributes:
        spec: Environment specification containing observation and action spaces.
    """
    spec: EnvSpec

    @abstractmethod
    def reset(self, rng: np.random.Generator) -> Any:
        """Reset the environment to an initial state.

        Args:
            rng: Random generator used for the initial state and for any
                stochasticity of the following episode.

        Returns:
            Initial observation.
        """
        ...

    @abstractmethod
    def step(self, action: Any) -> StepResult:
        """Execute one environment step.

        Args:
            action: Action to apply, a value of spec.action_space.

        Returns:
            StepResult containing observation, reward, done flag and info dict.
        """
        ...

    def close(self) -> None:
        """Clean up environment resources."""

    def __enter__(self) -> "Env":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit, ensures cleanup."""
        self.close()
