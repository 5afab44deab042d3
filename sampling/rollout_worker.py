"""Per-instance stepping for the parallel sampler.

An EnvSlot owns one environment instance and its private random generator.
The sampler's worker threads call into slots; a slot is only ever used by
one thread at a time, and only touches the agent state of its own
instance id.

Slot lifecycle within a sampling cycle:

    UNINITIALIZED --reset--> RESET --advance--> STEPPING --advance--> ...
    STEPPING --done, cycle continues--> RESET (auto-reset)
    STEPPING --done (stop_on_done) / horizon cutoff / stop--> FINISHED
    FINISHED --reset (next cycle)--> RESET
"""
from __future__ import annotations
from dataclasses import dataclass
import enum
from typing import Any, Optional

import numpy as np

from core.base_env import Env
from core.checked_env import CheckedEnv
from core.errors import ProtocolViolation, RLCoreError, SamplingError
from policies.agent import Agent

from .history import StepRecord
from .summary import OnlineStepsSummary


class SlotState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    RESET = "reset"
    STEPPING = "stepping"
    FINISHED = "finished"


@dataclass(frozen=True)
class SlotStep:
    """Outcome of one EnvSlot.advance().

    Attributes:
        record: The step record to push into History.
        bootstrap_value: V(next observation) when this step cut the rollout
            mid-episode, else None.
        restarted: The episode ended and the slot was reset for the rest of
            the cycle.
        episode_return: Undiscounted return, if this step ended an episode.
        episode_length: Length in steps, if this step ended an episode.
    """
    record: StepRecord
    bootstrap_value: Optional[float] = None
    restarted: bool = False
    episode_return: Optional[float] = None
    episode_length: Optional[int] = None


def snapshot(value: Any) -> Any:
    """Private copy of an observation; envs may reuse their output buffers."""
    if isinstance(value, np.ndarray):
        return value.copy()
    if isinstance(value, tuple):
        return tuple(snapshot(v) for v in value)
    return value


def raise_with_context(exc: Exception, instance_id: int, step: int) -> None:
    """Re-raise exc with instance and step attached; wrap foreign exceptions."""
    if isinstance(exc, RLCoreError):
        raise exc.with_context(instance_id, step)
    raise SamplingError(
        f"{type(exc).__name__}: {exc}", instance_id=instance_id, step=step
    ) from exc


class EnvSlot:
    """One environment instance, protocol-checked, with its own generator.

    Args:
        instance_id: Index of the instance in the sampler.
        env: Environment; wrapped in CheckedEnv unless it already is one.
        rng: Private generator used for env resets and the agent's
            exploration noise for this instance.
    """

    def __init__(self, instance_id: int, env: Env, rng: np.random.Generator, check_actions: bool = True):
        self.instance_id = instance_id
        self.env = env if isinstance(env, CheckedEnv) else CheckedEnv(env, check_actions=check_actions)
        self.rng = rng
        self.state = SlotState.UNINITIALIZED
        self.observation: Any = None
        self.stats = OnlineStepsSummary()
        self._episode_return = 0.0
        self._episode_length = 0

    def reset(self, agent: Agent, step: int = 0) -> Any:
        """Reset the environment and the agent's hidden state for this instance."""
        try:
            self.observation = snapshot(self.env.reset(self.rng))
            agent.reset_hidden_state(self.instance_id)
        except Exception as e:
            raise_with_context(e, self.instance_id, step)
        self.stats.discard_partial()
        self._episode_return = 0.0
        self._episode_length = 0
        self.state = SlotState.RESET
        return self.observation

    def advance(self, agent: Agent, step: int, last: bool, auto_reset: bool = True) -> SlotStep:
        """Act, step the environment and record the transition.

        Args:
            agent: Agent choosing the action.
            step: Global step index within the cycle (for error context).
            last: This is the final step of the cycle for this slot.
            auto_reset: Reset after done if the cycle continues.

        Raises:
            RLCoreError: With instance id and step attached. Unexpected
                exceptions are wrapped in SamplingError.
        """
        if self.state not in (SlotState.RESET, SlotState.STEPPING):
            raise ProtocolViolation(
                f"advance() in state {self.state.value}", instance_id=self.instance_id, step=step
            )
        try:
            return self._advance(agent, step, last, auto_reset)
        except Exception as e:
            self.state = SlotState.FINISHED
            raise_with_context(e, self.instance_id, step)

    def _advance(self, agent: Agent, step: int, last: bool, auto_reset: bool) -> SlotStep:
        out = agent.act(self.observation, self.instance_id, self.rng)
        res = self.env.step(out.action)

        record = StepRecord(
            observation=self.observation,
            action=out.action,
            reward=res.reward,
            done=res.done,
            value=out.value,
            log_prob=out.log_prob,
        )
        self.stats.push(res.reward, res.done)
        self._episode_return += res.reward
        self._episode_length += 1

        if res.done:
            ep_return, ep_length = self._episode_return, self._episode_length
            restarted = auto_reset and not last
            if restarted:
                self.reset(agent, step)
            else:
                self.observation = None
                self.state = SlotState.FINISHED
            return SlotStep(
                record=record,
                restarted=restarted,
                episode_return=ep_return,
                episode_length=ep_length,
            )

        self.observation = snapshot(res.obs)
        self.state = SlotState.STEPPING
        bootstrap = None
        if last:
            bootstrap = agent.bootstrap_value(self.observation, self.instance_id)
            self.state = SlotState.FINISHED
        return SlotStep(record=record, bootstrap_value=bootstrap)

    def bootstrap(self, agent: Agent, step: int) -> Optional[float]:
        """Value of the pending observation of an interrupted episode."""
        if self.observation is None:
            return None
        try:
            return agent.bootstrap_value(self.observation, self.instance_id)
        except Exception as e:
            raise_with_context(e, self.instance_id, step)

    def finish(self) -> None:
        """End the cycle; the next cycle starts with reset()."""
        if self.state != SlotState.UNINITIALIZED:
            self.state = SlotState.FINISHED

    def close(self) -> None:
        self.env.close()
