# scripts/train_bandit_thompson.py
from __future__ import annotations

import logging

from algorithms.policy_gradient import AdvantageConfig
from core.bandit_env import DeterministicBanditEnv
from core.log_setup import configure_logging
from policies.thompson_sampling import ThompsonSamplingAgent, ThompsonSamplingConfig
from sampling.parallel_sampler import SamplerConfig
from training.on_policy import OnPolicyTrainer, TrainConfig

logger = logging.getLogger(__name__)

ARM_REWARDS = (0.0, 0.2, 1.0, 0.5)


def make_env():
    return DeterministicBanditEnv(ARM_REWARDS)


def make_agent(env_spec):
    return ThompsonSamplingAgent(env_spec, ThompsonSamplingConfig(num_samples=1, reward_range=(0.0, 1.0)))


def main():
    configure_logging()

    with OnPolicyTrainer(
        env_factory=make_env,
        agent_factory=make_agent,
        sampler_cfg=SamplerConfig(num_instances=4, horizon=16, seed=0),
        advantage_cfg=AdvantageConfig(estimator="monte_carlo", normalize_advantages=False),
        train_cfg=TrainConfig(total_steps=2_000, log_interval=5, checkpoint_path=None),
    ) as trainer:
        trainer.run()
        greedy = trainer.agent.act_greedy(None)
        logger.info("greedy arm %d (best arm %d)", greedy, make_env().best_arm)


if __name__ == "__main__":
    main()
