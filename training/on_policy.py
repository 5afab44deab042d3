"""On-policy training loop.

This module implements the training loop for on-policy RL algorithms
(vanilla policy gradient, PPO) over N parallel environment instances. It
alternates between collecting a batch with the ParallelSampler and
updating the agent through PolicyGradientAlgorithm; the two never overlap.
"""
from __future__ import annotations
from dataclasses import dataclass
import logging
import time
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from algorithms.policy_gradient import AdvantageConfig, PolicyGradientAlgorithm
from core.base_env import Env
from core.specs import EnvSpec
from policies.agent import Agent
from sampling.history import Batch
from sampling.parallel_sampler import ParallelSampler, SamplerConfig

from .checkpoint import save_checkpoint
from .metrics import MetricsSink

logger = logging.getLogger(__name__)


@dataclass
class TrainConfig:
    """Configuration for training loop.

    Attributes:
        total_steps: Total number of environment steps to collect.
        log_interval: Frequency of logging (every N iterations).
        checkpoint_path: Path to save model checkpoints (None disables).
        checkpoint_interval: Also save every N iterations (None: only at
            the end).
    """
    total_steps: int = 200_000
    log_interval: int = 10
    checkpoint_path: Optional[str] = "checkpoints/model.pt"
    checkpoint_interval: Optional[int] = None

    def __post_init__(self):
        if self.total_steps < 1:
            raise ValueError(f"total_steps must be >= 1, got {self.total_steps}")
        if self.log_interval < 1:
            raise ValueError(f"log_interval must be >= 1, got {self.log_interval}")


EnvFactory = Callable[[], Env]
AgentFactory = Callable[[EnvSpec], Agent]


class OnPolicyTrainer:
    """Parallel-environment on-policy RL trainer.

    Implements the standard on-policy training loop:
    1. Collect a batch from all instances with the current policy
    2. Compute advantages (bootstrapping cut-off tails)
    3. Update the agent once with the batch
    4. Repeat until total_steps reached

    Args:
        env_factory: Creates one environment instance per call.
        agent_factory: Receives the environment spec, returns the agent.
        sampler_cfg: Parallel sampling settings.
        advantage_cfg: Return / advantage estimation settings.
        train_cfg: Loop settings.
        sinks: Metric sinks receiving one row per iteration.
    """

    def __init__(
        self,
        env_factory: EnvFactory,
        agent_factory: AgentFactory,
        sampler_cfg: Optional[SamplerConfig] = None,
        advantage_cfg: Optional[AdvantageConfig] = None,
        train_cfg: Optional[TrainConfig] = None,
        sinks: Sequence[MetricsSink] = (),
    ):
        self.train_cfg = train_cfg or TrainConfig()

        # Agent factory receives env.spec
        with env_factory() as first_env:
            spec = first_env.spec
        self.agent = agent_factory(spec)

        self.algorithm = PolicyGradientAlgorithm(advantage_cfg)
        self.sampler = ParallelSampler(env_factory, self.agent, sampler_cfg)
        self.sinks: List[MetricsSink] = list(sinks)

        self.iteration = 0
        self.total_steps = 0
        self._stop_requested = False

    def stop(self) -> None:
        """Finish the current collection early and leave run() after its update."""
        self._stop_requested = True
        self.sampler.stop()

    def train_iteration(self) -> Dict[str, float]:
        """Collect one batch, update once, return the iteration's metrics."""
        iter_start = time.time()
        batch = self.sampler.collect()
        stats = self.algorithm.update(self.agent, batch)

        self.iteration += 1
        self.total_steps += batch.num_steps

        metrics = stats.as_dict()
        metrics.update(self._batch_metrics(batch))
        metrics["iter_time"] = time.time() - iter_start
        for sink in self.sinks:
            sink.write(metrics, self.total_steps)
        return metrics

    @staticmethod
    def _batch_metrics(batch: Batch) -> Dict[str, float]:
        rewards = [rec.reward for rollout in batch for rec in rollout.records]
        out = {
            "batch_steps": float(batch.num_steps),
            "step_reward_mean": float(np.mean(rewards)),
            "episodes": float(len(batch.episode_returns)),
            "episode_return_mean": float("nan"),
            "episode_length_mean": float("nan"),
        }
        if batch.episode_returns:
            out["episode_return_mean"] = float(np.mean(batch.episode_returns))
            out["episode_length_mean"] = float(np.mean(batch.episode_lengths))
        return out

    def run(self) -> Dict[str, float]:
        """Run the training loop.

        Collects batches and updates the agent until total_steps is reached
        or stop() is called. Logs progress periodically and saves the final
        checkpoint.

        Returns:
            Metrics of the last iteration.
        """
        start_time = time.time()
        start_steps = self.total_steps
        metrics: Dict[str, float] = {}

        while self.total_steps < self.train_cfg.total_steps and not self._stop_requested:
            metrics = self.train_iteration()

            elapsed = time.time() - start_time
            steps_per_sec = (self.total_steps - start_steps) / max(1e-6, elapsed)

            if self.iteration % self.train_cfg.log_interval == 0:
                logger.info(
                    "[Iter %d]  Steps=%d  IterTime=%.2fs  Steps/sec=%.1f  Return=%.2f  "
                    "pi_loss=%.3f  v_loss=%.3f  entropy=%.3f",
                    self.iteration,
                    self.total_steps,
                    metrics["iter_time"],
                    steps_per_sec,
                    metrics["episode_return_mean"],
                    metrics["policy_loss"],
                    metrics["value_loss"],
                    metrics["entropy"],
                )

            cfg = self.train_cfg
            if (
                cfg.checkpoint_path
                and cfg.checkpoint_interval
                and self.iteration % cfg.checkpoint_interval == 0
            ):
                save_checkpoint(cfg.checkpoint_path, self.agent, self.iteration)

        total_time = time.time() - start_time
        steps_per_sec = (self.total_steps - start_steps) / max(1e-6, total_time)
        logger.info("Training finished")
        logger.info("Total steps:        %d", self.total_steps)
        logger.info("Total time:         %.2f seconds", total_time)
        logger.info("Average steps/sec:  %.1f", steps_per_sec)

        if self.train_cfg.checkpoint_path:
            save_checkpoint(self.train_cfg.checkpoint_path, self.agent, self.iteration)
        return metrics

    def close(self) -> None:
        self.sampler.close()
        for sink in self.sinks:
            sink.close()

    def __enter__(self) -> "OnPolicyTrainer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
