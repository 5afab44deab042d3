"""Environment specification definitions.

This module defines the structure describing which observation and action
spaces an environment uses, enabling policies and algorithms to configure
themselves (input width, distribution head size) from the environment.
"""
from __future__ import annotations
from dataclasses import dataclass

from spaces.base import Space


@dataclass(frozen=True)
class EnvSpec:
    """Complete environment specification.

    Contains both observation and action spaces. Both are immutable for the
    lifetime of an environment instance.

    Attributes:
        observation_space: Space of observations returned by reset/step.
        action_space: Space of actions accepted by step.
    """
    observation_space: Space
    action_space: Space

    @property
    def obs_dim(self) -> int:
        """Length of the observation feature encoding."""
        return self.observation_space.encoding_length

    def to_dict(self) -> dict:
        return {
            "observation_space": self.observation_space.to_dict(),
            "action_space": self.action_space.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EnvSpec":
        from spaces import space_from_dict

        return cls(
            observation_space=space_from_dict(data["observation_space"]),
            action_space=space_from_dict(data["action_space"]),
        )
