from __future__ import annotations
from typing import Any

import numpy as np

from core.specs import EnvSpec

from .agent import ActOutput, Agent, TrainingBatch, UpdateStats


class RandomAgent(Agent):
    """Samples uniformly (per the space's sampling rule) from the action space.

    Has no critic and no parameters; update() is a no-op.
    """

    def __init__(self, spec: EnvSpec):
        self.spec = spec

    def act(self, observation: Any, instance_id: int, rng: np.random.Generator) -> ActOutput:
        return ActOutput(action=self.spec.action_space.sample(rng))

    def update(self, batch: TrainingBatch) -> UpdateStats:
        return UpdateStats(num_steps=len(batch))

    def __repr__(self) -> str:
        return f"RandomAgent({self.spec.action_space})"
