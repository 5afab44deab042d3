# scripts/train_meta_bandit.py
from __future__ import annotations

import logging

import numpy as np

from algorithms.policy_gradient import AdvantageConfig
from algorithms.ppo import PPOConfig
from core.bandit_env import DeterministicBanditEnv
from core.log_setup import configure_logging
from core.meta_env import MetaEnv, MetaEnvConfig
from policies.actor_critic import ActorCriticConfig
from policies.recurrent import RecurrentActorCriticAgent
from sampling.parallel_sampler import SamplerConfig
from training.metrics import LoggingSink
from training.on_policy import OnPolicyTrainer, TrainConfig

NUM_ARMS = 3
INNER_SPEC = DeterministicBanditEnv(np.zeros(NUM_ARMS)).spec


def sample_bandit(rng: np.random.Generator) -> DeterministicBanditEnv:
    # One paying arm, at a new position every trial.
    rewards = np.zeros(NUM_ARMS)
    rewards[rng.integers(NUM_ARMS)] = 1.0
    return DeterministicBanditEnv(rewards)


def make_env():
    return MetaEnv(sample_bandit, INNER_SPEC, MetaEnvConfig(episodes_per_trial=10))


def make_agent(env_spec):
    cfg = ActorCriticConfig(
        hidden_sizes=(32, 32),
        lr=3e-3,
        update_rule="ppo",
        ppo=PPOConfig(train_iters=4, value_coef=0.5, entropy_coef=0.01),
        seed=0,
    )
    return RecurrentActorCriticAgent(env_spec, cfg)


def main():
    configure_logging()

    # A trial is 19 meta steps; the horizon covers a few of them.
    with OnPolicyTrainer(
        env_factory=make_env,
        agent_factory=make_agent,
        sampler_cfg=SamplerConfig(num_instances=8, num_workers=4, horizon=64, seed=0),
        advantage_cfg=AdvantageConfig(estimator="gae", gamma=0.95, lam=0.95),
        train_cfg=TrainConfig(total_steps=100_000, log_interval=10, checkpoint_path="checkpoints/meta_bandit.pt"),
        sinks=[LoggingSink(logging.DEBUG, keys=("episode_return_mean", "policy_loss", "entropy"))],
    ) as trainer:
        trainer.run()


if __name__ == "__main__":
    main()
