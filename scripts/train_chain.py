# scripts/train_chain.py
from __future__ import annotations

from algorithms.policy_gradient import AdvantageConfig
from algorithms.ppo import PPOConfig
from core.chain_env import ChainEnv, ChainEnvConfig
from core.log_setup import configure_logging
from policies.actor_critic import ActorCriticAgent, ActorCriticConfig
from sampling.parallel_sampler import SamplerConfig
from training.metrics import TensorBoardSink
from training.on_policy import OnPolicyTrainer, TrainConfig


def make_env():
    # Five states, 20% slip; the chain never terminates, so every rollout
    # is cut at the horizon and bootstrapped.
    return ChainEnv(ChainEnvConfig(size=5, slip=0.2))


def make_agent(env_spec):
    cfg = ActorCriticConfig(
        hidden_sizes=(32, 32),
        lr=3e-4,
        max_grad_norm=0.5,
        update_rule="ppo",
        ppo=PPOConfig(
            clip_ratio=0.2,
            train_iters=10,
            batch_size=64,
            value_coef=0.5,
            entropy_coef=0.01,
        ),
        seed=0,
    )
    return ActorCriticAgent(env_spec, cfg)


def main():
    configure_logging()

    sampler_cfg = SamplerConfig(
        num_instances=8,
        num_workers=4,
        horizon=64,
        seed=0,
    )
    advantage_cfg = AdvantageConfig(
        estimator="gae",
        gamma=0.95,
        lam=0.95,
        normalize_advantages=True,
    )
    train_cfg = TrainConfig(
        total_steps=100_000,
        log_interval=10,
        checkpoint_path="checkpoints/chain_ppo.pt",
    )

    with OnPolicyTrainer(
        env_factory=make_env,
        agent_factory=make_agent,
        sampler_cfg=sampler_cfg,
        advantage_cfg=advantage_cfg,
        train_cfg=train_cfg,
        sinks=[TensorBoardSink("runs/chain_ppo")],
    ) as trainer:
        trainer.run()


if __name__ == "__main__":
    main()
