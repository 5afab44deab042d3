# scripts/train_bandit_recurrent.py
from __future__ import annotations

import logging

from algorithms.policy_gradient import AdvantageConfig
from algorithms.ppo import PolicyGradientConfig
from core.bandit_env import DeterministicBanditEnv
from core.log_setup import configure_logging
from policies.actor_critic import ActorCriticConfig
from policies.recurrent import RecurrentActorCriticAgent
from sampling.parallel_sampler import SamplerConfig
from training.metrics import LoggingSink
from training.on_policy import OnPolicyTrainer, TrainConfig

logger = logging.getLogger(__name__)

ARM_REWARDS = (0.0, 0.2, 1.0, 0.5)


def make_env():
    return DeterministicBanditEnv(ARM_REWARDS)


def make_agent(env_spec):
    cfg = ActorCriticConfig(
        hidden_sizes=(16, 16),
        lr=1e-2,
        update_rule="policy_gradient",
        pg=PolicyGradientConfig(value_coef=0.5, entropy_coef=0.0),
        seed=0,
    )
    return RecurrentActorCriticAgent(env_spec, cfg)


def main():
    configure_logging()

    # One-step episodes: Monte-Carlo returns are exact, no critic needed.
    advantage_cfg = AdvantageConfig(
        estimator="monte_carlo",
        gamma=0.9,
        normalize_advantages=True,
    )
    with OnPolicyTrainer(
        env_factory=make_env,
        agent_factory=make_agent,
        sampler_cfg=SamplerConfig(num_instances=4, num_workers=2, horizon=16, seed=0),
        advantage_cfg=advantage_cfg,
        train_cfg=TrainConfig(total_steps=20_000, log_interval=20, checkpoint_path=None),
        sinks=[LoggingSink(logging.DEBUG)],
    ) as trainer:
        trainer.run()
        agent = trainer.agent
        agent.reset_hidden_state(0)
        greedy = agent.act_deterministic(None, instance_id=0)
        logger.info("greedy arm %d (best arm %d)", greedy, make_env().best_arm)


if __name__ == "__main__":
    main()
