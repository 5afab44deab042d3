"""Per-instance recurrent state storage."""
from __future__ import annotations
from typing import Callable, List

import torch


class HiddenStateTable:
    """Index-addressed hidden states, one slot per environment instance.

    Each slot is only ever touched through its own index, so the sampler's
    worker threads can act for different instances concurrently. Resizing
    must not overlap with stepping.

    Args:
        initial: Factory for a fresh hidden state.
        num_instances: Initial number of slots.
    """

    def __init__(self, initial: Callable[[], torch.Tensor], num_instances: int = 0):
        self._initial = initial
        self._states: List[torch.Tensor] = []
        self.resize(num_instances)

    def resize(self, num_instances: int) -> None:
        """Reallocate to num_instances slots, all at the initial state."""
        if num_instances < 0:
            raise ValueError(f"num_instances must be >= 0, got {num_instances}")
        self._states = [self._initial() for _ in range(num_instances)]

    def _check(self, instance_id: int) -> None:
        if not 0 <= instance_id < len(self._states):
            raise IndexError(
                f"instance id {instance_id} out of range [0, {len(self._states)}); "
                "call set_num_instances() first"
            )

    def get(self, instance_id: int) -> torch.Tensor:
        self._check(instance_id)
        return self._states[instance_id]

    def set(self, instance_id: int, state: torch.Tensor) -> None:
        self._check(instance_id)
        self._states[instance_id] = state.detach()

    def reset(self, instance_id: int) -> None:
        self._check(instance_id)
        self._states[instance_id] = self._initial()

    def __len__(self) -> int:
        return len(self._states)

    def state_dict(self) -> List[torch.Tensor]:
        return [s.clone() for s in self._states]

    def load_state_dict(self, states: List[torch.Tensor]) -> None:
        self._states = [torch.as_tensor(s).clone() for s in states]
