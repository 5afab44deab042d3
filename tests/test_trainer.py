import logging
import math
import os

import numpy as np
import pytest

from algorithms.policy_gradient import AdvantageConfig
from algorithms.ppo import PPOConfig
from core.bandit_env import DeterministicBanditEnv
from core.chain_env import ChainEnv
from core.log_setup import configure_logging
from policies.actor_critic import ActorCriticAgent, ActorCriticConfig
from sampling.parallel_sampler import SamplerConfig
from training.checkpoint import load_checkpoint
from training.metrics import LoggingSink, MemorySink, TensorBoardSink
from training.on_policy import OnPolicyTrainer, TrainConfig

from conftest import ConstantRewardEnv, ConstantValueAgent


def small_agent(spec):
    cfg = ActorCriticConfig(hidden_sizes=(8,), seed=0, ppo=PPOConfig(train_iters=2, batch_size=8))
    return ActorCriticAgent(spec, cfg)


def test_trainer_runs_until_total_steps(tmp_path):
    sink = MemorySink()
    path = str(tmp_path / "ckpt" / "chain.pt")
    with OnPolicyTrainer(
        env_factory=ChainEnv,
        agent_factory=small_agent,
        sampler_cfg=SamplerConfig(num_instances=2, num_workers=2, horizon=8, seed=0),
        advantage_cfg=AdvantageConfig(estimator="gae", gamma=0.9),
        train_cfg=TrainConfig(total_steps=40, log_interval=1, checkpoint_path=path),
        sinks=[sink],
    ) as trainer:
        metrics = trainer.run()

    # 16 steps per iteration: 3 iterations reach 40.
    assert trainer.iteration == 3
    assert trainer.total_steps == 48
    assert [step for step, _ in sink.rows] == [16, 32, 48]
    assert math.isnan(metrics["episode_return_mean"])
    assert np.isfinite(metrics["policy_loss"])
    assert os.path.exists(path)

    restored = small_agent(trainer.agent.spec)
    assert load_checkpoint(path, restored)["iteration"] == 3


def test_trainer_updates_once_per_iteration():
    agents = []

    def factory(spec):
        agents.append(ConstantValueAgent(spec, value=0.0))
        return agents[-1]

    with OnPolicyTrainer(
        env_factory=lambda: ConstantRewardEnv(episode_length=2),
        agent_factory=factory,
        sampler_cfg=SamplerConfig(num_instances=3, horizon=4),
        train_cfg=TrainConfig(total_steps=24, checkpoint_path=None),
    ) as trainer:
        metrics = trainer.run()
    assert len(agents[0].updates) == 2
    assert all(len(tb) == 12 for tb in agents[0].updates)
    assert metrics["episode_return_mean"] == pytest.approx(2.0)
    assert metrics["episodes"] == 6.0


def test_stop_ends_run_after_current_iteration():
    class StopAfterFirst(MemorySink):
        def write(self, metrics, step):
            super().write(metrics, step)
            trainer.stop()

    sink = StopAfterFirst()
    trainer = OnPolicyTrainer(
        env_factory=lambda: DeterministicBanditEnv((0.0, 1.0)),
        agent_factory=small_agent,
        sampler_cfg=SamplerConfig(num_instances=2, horizon=4),
        train_cfg=TrainConfig(total_steps=1_000, checkpoint_path=None),
        sinks=[sink],
    )
    trainer.run()
    trainer.close()
    assert trainer.iteration == 1
    assert len(sink.rows) == 1


def test_logging_sink_writes_progress(caplog):
    handler = configure_logging(logging.DEBUG)
    with caplog.at_level(logging.INFO, logger="training.metrics"):
        LoggingSink().write({"policy_loss": 0.5, "entropy": 1.25}, step=10)
    assert "[step 10]" in caplog.text
    assert "entropy=1.25" in caplog.text
    logging.getLogger().removeHandler(handler)


def test_configure_logging_replaces_its_handler():
    root = logging.getLogger()
    first = configure_logging()
    second = configure_logging()
    assert first not in root.handlers
    assert second in root.handlers
    root.removeHandler(second)


def test_tensorboard_sink_writes_event_file(tmp_path):
    sink = TensorBoardSink(str(tmp_path / "tb"))
    sink.write({"policy_loss": 0.1, "episode_return_mean": float("nan")}, step=1)
    sink.close()
    files = os.listdir(tmp_path / "tb")
    assert any(name.startswith("events.out.tfevents") for name in files)


def test_train_config_validation():
    with pytest.raises(ValueError):
        TrainConfig(total_steps=0)
    with pytest.raises(ValueError):
        SamplerConfig(num_workers=0)
