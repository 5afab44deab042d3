"""Rollout accumulation.

History collects per-step records from several concurrently stepped
environment instances and finalizes them into a Batch ready for training.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from core.errors import ProtocolViolation


@dataclass(frozen=True)
class StepRecord:
    """One environment step. Produced once, never mutated.

    Attributes:
        observation: Observation the action was chosen for.
        action: Action taken.
        reward: Finite scalar reward.
        done: Whether this step ended the episode.
        value: Optional value estimate V(observation) from the agent.
        log_prob: Optional log-probability of the action under the policy.
    """
    observation: Any
    action: Any
    reward: float
    done: bool
    value: Optional[float] = None
    log_prob: Optional[float] = None


@dataclass(frozen=True)
class Rollout:
    """The records of one environment instance during one collection cycle.

    Episode boundaries inside the rollout are exactly the records with
    done=True. If the last record is not done, the rollout was cut at the
    horizon (or by a stop request) and bootstrap_value holds the agent's
    value estimate of the observation following the last record, when the
    agent has a critic.

    Attributes:
        instance_id: Environment instance that produced the records.
        records: Records in the order they were produced.
        bootstrap_value: V(s_T) for a non-terminal tail, else None.
    """
    instance_id: int
    records: Tuple[StepRecord, ...]
    bootstrap_value: Optional[float] = None

    @property
    def terminal(self) -> bool:
        """Whether the rollout ends at an episode boundary."""
        return bool(self.records) and self.records[-1].done

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class Batch:
    """A finalized History.

    Attributes:
        rollouts: One rollout per instance that produced records, ordered by
            instance id.
        interrupted: True if collection was stopped before the batch was full.
        episode_returns: Undiscounted returns of episodes completed this cycle.
        episode_lengths: Lengths of episodes completed this cycle.
    """
    rollouts: Tuple[Rollout, ...]
    interrupted: bool = False
    episode_returns: Tuple[float, ...] = ()
    episode_lengths: Tuple[int, ...] = ()

    @property
    def num_steps(self) -> int:
        return sum(len(r) for r in self.rollouts)

    def __iter__(self):
        return iter(self.rollouts)

    def __len__(self) -> int:
        return len(self.rollouts)


@dataclass
class _InstanceBuffer:
    records: List[StepRecord] = field(default_factory=list)
    bootstrap_value: Optional[float] = None
    # Set after a done record; cleared by start_episode().
    awaiting_reset: bool = False
    terminated: bool = False


class History:
    """Per-instance, append-only record storage with a fixed horizon.

    Storage is reused across cycles: finalize() hands out immutable tuples
    and clears the per-instance lists in place.

    Args:
        num_instances: Number of environment instances.
        horizon: Maximum records per instance per cycle.
        stop_on_done: If True, an instance counts as finished for the cycle as
            soon as it reports done=True; otherwise it is expected to reset
            (start_episode) and keep going until the horizon.
    """

    def __init__(self, num_instances: int, horizon: int, stop_on_done: bool = False):
        if num_instances < 1:
            raise ValueError(f"num_instances must be >= 1, got {num_instances}")
        if horizon < 1:
            raise ValueError(f"horizon must be >= 1, got {horizon}")
        self.num_instances = num_instances
        self.horizon = horizon
        self.stop_on_done = stop_on_done
        self._buffers = [_InstanceBuffer() for _ in range(num_instances)]

    def _buffer(self, instance_id: int) -> _InstanceBuffer:
        if not 0 <= instance_id < self.num_instances:
            raise IndexError(f"instance id {instance_id} out of range [0, {self.num_instances})")
        return self._buffers[instance_id]

    def push(self, instance_id: int, record: StepRecord) -> None:
        """Append a record for an instance.

        Raises:
            ProtocolViolation: If the instance already holds horizon records,
                or its previous record was done=True and start_episode() was
                not called since.
        """
        buf = self._buffer(instance_id)
        step = len(buf.records)
        if buf.terminated or buf.awaiting_reset:
            raise ProtocolViolation(
                "record pushed after episode termination without a reset",
                instance_id=instance_id,
                step=step,
            )
        if step >= self.horizon:
            raise ProtocolViolation(
                f"instance already holds horizon={self.horizon} records",
                instance_id=instance_id,
                step=step,
            )
        buf.records.append(record)
        if record.done:
            if self.stop_on_done:
                buf.terminated = True
            else:
                buf.awaiting_reset = True

    def start_episode(self, instance_id: int) -> None:
        """Mark that the instance was reset after a terminal record."""
        buf = self._buffer(instance_id)
        if buf.terminated:
            raise ProtocolViolation(
                "instance finished for this cycle (stop_on_done)",
                instance_id=instance_id,
                step=len(buf.records),
            )
        buf.awaiting_reset = False

    def set_bootstrap(self, instance_id: int, value: Optional[float]) -> None:
        """Record V(s_T) for an instance whose rollout ends mid-episode."""
        self._buffer(instance_id).bootstrap_value = None if value is None else float(value)

    def num_records(self, instance_id: int) -> int:
        return len(self._buffer(instance_id).records)

    def instance_done(self, instance_id: int) -> bool:
        """Whether the instance will not receive more records this cycle."""
        buf = self._buffer(instance_id)
        return buf.terminated or len(buf.records) >= self.horizon

    def is_full(self) -> bool:
        return all(self.instance_done(i) for i in range(self.num_instances))

    def __len__(self) -> int:
        return sum(len(b.records) for b in self._buffers)

    def finalize(
        self,
        interrupted: bool = False,
        episode_returns: Tuple[float, ...] = (),
        episode_lengths: Tuple[int, ...] = (),
    ) -> Batch:
        """Hand out the collected records as a Batch and clear the buffer.

        Raises:
            ProtocolViolation: If there is nothing to finalize (e.g. the
                batch was already consumed).
        """
        if len(self) == 0:
            raise ProtocolViolation("History is empty; nothing to finalize")

        rollouts = []
        for i, buf in enumerate(self._buffers):
            if buf.records:
                terminal = buf.records[-1].done
                rollouts.append(
                    Rollout(
                        instance_id=i,
                        records=tuple(buf.records),
                        bootstrap_value=None if terminal else buf.bootstrap_value,
                    )
                )
        self.clear()
        return Batch(
            rollouts=tuple(rollouts),
            interrupted=interrupted,
            episode_returns=tuple(episode_returns),
            episode_lengths=tuple(episode_lengths),
        )

    def clear(self) -> None:
        for buf in self._buffers:
            buf.records.clear()
            buf.bootstrap_value = None
            buf.awaiting_reset = False
            buf.terminated = False
