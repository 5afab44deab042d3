"""Lock-step parallel rollout collection.

ParallelSampler steps N environment instances with a fixed pool of worker
threads. Each global step submits one advance() per active instance and
waits for all of them (the barrier) before the next step starts, so every
instance makes the same number of steps and a stop request is honored at a
well-defined point. Each instance gets its own generator spawned from a
single SeedSequence; together with per-instance agent state this makes the
collected content independent of the number of worker threads.
"""
from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

import numpy as np

from core.base_env import Env
from core.errors import DimensionMismatch, ProtocolViolation, SamplingError, StepTimeout
from policies.agent import Agent

from .history import Batch, History
from .rollout_worker import EnvSlot, SlotStep

logger = logging.getLogger(__name__)

EnvFactory = Callable[[], Env]
T = TypeVar("T")


@dataclass
class SamplerConfig:
    """Configuration for ParallelSampler.

    Attributes:
        num_instances: Number of environment instances stepped in parallel.
        num_workers: Number of worker threads (1 steps instances serially).
        horizon: Steps per instance per collection cycle.
        step_timeout: Seconds to wait at each barrier before raising
            StepTimeout. None waits indefinitely.
        stop_on_done: If True an instance stops collecting for the cycle at
            its first done; otherwise it resets and continues to the horizon.
        seed: Root seed for the per-instance generators.
        check_actions: Validate every action against the action space.
    """
    num_instances: int = 1
    num_workers: int = 1
    horizon: int = 128
    step_timeout: Optional[float] = None
    stop_on_done: bool = False
    seed: Optional[int] = None
    check_actions: bool = True

    def __post_init__(self):
        if self.num_instances < 1:
            raise ValueError(f"num_instances must be >= 1, got {self.num_instances}")
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        if self.horizon < 1:
            raise ValueError(f"horizon must be >= 1, got {self.horizon}")
        if self.step_timeout is not None and self.step_timeout <= 0:
            raise ValueError(f"step_timeout must be > 0, got {self.step_timeout}")


class ParallelSampler:
    """Collects Batches from N environment instances with a thread pool.

    The sampler owns the environments and drives the agent. The agent's
    parameters must not change while collect() runs; update the agent only
    between calls.

    Args:
        env_factory: Creates one environment instance per call.
        agent: Agent acting in every instance.
        cfg: Sampler configuration.
    """

    def __init__(self, env_factory: EnvFactory, agent: Agent, cfg: Optional[SamplerConfig] = None):
        self.cfg = cfg or SamplerConfig()
        self.agent = agent

        seeds = np.random.SeedSequence(self.cfg.seed).spawn(self.cfg.num_instances)
        self.slots: List[EnvSlot] = []
        for i, seed in enumerate(seeds):
            env = env_factory()
            if env.spec != agent.spec:
                env.close()
                raise DimensionMismatch(
                    f"environment spec {env.spec} does not match agent spec {agent.spec}",
                    instance_id=i,
                )
            self.slots.append(
                EnvSlot(i, env, np.random.default_rng(seed), check_actions=self.cfg.check_actions)
            )

        agent.set_num_instances(self.cfg.num_instances)
        self.history = History(self.cfg.num_instances, self.cfg.horizon, self.cfg.stop_on_done)
        self._pool = ThreadPoolExecutor(
            max_workers=self.cfg.num_workers, thread_name_prefix="sampler"
        )
        self._stop = threading.Event()
        self._broken = False
        self._closed = False
        self.total_steps = 0
        self.num_cycles = 0

    @property
    def num_instances(self) -> int:
        return self.cfg.num_instances

    def stop(self) -> None:
        """Request the running (or next) collect() to finish at the next barrier.

        Safe to call from any thread.
        """
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def _run_all(self, fn: Callable[[int], T], instance_ids: Sequence[int], step: int) -> Dict[int, T]:
        """Run fn(i) for every instance id on the pool and wait for all of them.

        Raises:
            StepTimeout: If some call does not finish within step_timeout.
            RLCoreError: The error of the lowest failing instance id.
        """
        futures = {i: self._pool.submit(fn, i) for i in instance_ids}
        _, not_done = wait(futures.values(), timeout=self.cfg.step_timeout)
        if not_done:
            self._broken = True
            for fut in not_done:
                fut.cancel()
            late = sorted(i for i, fut in futures.items() if fut in not_done)
            raise StepTimeout(
                f"{len(late)} instance(s) {late} did not finish within {self.cfg.step_timeout}s",
                instance_id=late[0],
                step=step,
            )
        results = {}
        for i in instance_ids:
            exc = futures[i].exception()
            if exc is not None:
                raise exc
            results[i] = futures[i].result()
        return results

    def collect(self) -> Batch:
        """Run one collection cycle and return its Batch.

        Every instance (and its hidden state) is reset at the start of the
        cycle. Each instance then steps until it holds horizon records (or,
        with stop_on_done, until its first done). If stop() is requested,
        the cycle ends at the next barrier: cut-off tails are bootstrapped
        and the Batch is marked interrupted.

        Raises:
            StepTimeout: A step did not finish in time. The sampler cannot be
                used afterwards.
            RLCoreError: Any env or agent failure, with instance id and step.
        """
        if self._closed:
            raise ProtocolViolation("collect() on a closed sampler")
        if self._broken:
            raise SamplingError("sampler is unusable after a timeout; create a new one")

        start = time.time()
        history = self.history
        history.clear()
        episode_returns: List[float] = []
        episode_lengths: List[int] = []
        interrupted = False
        agent = self.agent
        auto_reset = not self.cfg.stop_on_done
        horizon = self.cfg.horizon

        try:
            self._run_all(lambda i: self.slots[i].reset(agent, 0), range(self.num_instances), 0)

            for t in range(horizon):
                active = [i for i in range(self.num_instances) if not history.instance_done(i)]
                if not active:
                    break
                last = t == horizon - 1
                steps: Dict[int, SlotStep] = self._run_all(
                    lambda i: self.slots[i].advance(agent, t, last, auto_reset), active, t
                )

                for i in active:
                    res = steps[i]
                    history.push(i, res.record)
                    if res.bootstrap_value is not None:
                        history.set_bootstrap(i, res.bootstrap_value)
                    if res.restarted:
                        history.start_episode(i)
                    if res.episode_return is not None:
                        episode_returns.append(res.episode_return)
                        episode_lengths.append(res.episode_length)

                if self._stop.is_set() and not last and not history.is_full():
                    interrupted = True
                    pending = [i for i in active if not history.instance_done(i)]
                    values = self._run_all(lambda i: self.slots[i].bootstrap(agent, t), pending, t)
                    for i, v in values.items():
                        history.set_bootstrap(i, v)
                    logger.info("collection stopped at step %d of %d", t + 1, horizon)
                    break
        except Exception:
            history.clear()
            raise
        finally:
            self._stop.clear()
            for slot in self.slots:
                slot.finish()

        batch = history.finalize(
            interrupted=interrupted,
            episode_returns=tuple(episode_returns),
            episode_lengths=tuple(episode_lengths),
        )
        self.total_steps += batch.num_steps
        self.num_cycles += 1
        logger.debug(
            "cycle %d: %d steps, %d episodes in %.3fs",
            self.num_cycles,
            batch.num_steps,
            len(episode_returns),
            time.time() - start,
        )
        return batch

    def episode_summary(self) -> Dict[str, float]:
        """Lifetime episode statistics over all instances."""
        num_episodes = sum(s.stats.num_episodes for s in self.slots)
        num_steps = sum(s.stats.num_steps for s in self.slots)
        out = {"num_steps": float(num_steps), "num_episodes": float(num_episodes)}
        if num_episodes:
            out["episode_reward_mean"] = (
                sum(s.stats.episode_reward.mean * s.stats.num_episodes for s in self.slots)
                / num_episodes
            )
            out["episode_length_mean"] = (
                sum(s.stats.episode_length.mean * s.stats.num_episodes for s in self.slots)
                / num_episodes
            )
        return out

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pool.shutdown(wait=not self._broken, cancel_futures=True)
        for slot in self.slots:
            slot.close()

    def __enter__(self) -> "ParallelSampler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
