import numpy as np
import pytest

from algorithms.policy_gradient import AdvantageConfig, PolicyGradientAlgorithm
from core.bandit_env import DeterministicBanditEnv
from core.specs import EnvSpec
from policies.thompson_sampling import ThompsonSamplingAgent, ThompsonSamplingConfig
from sampling.history import Batch, Rollout, StepRecord
from sampling.parallel_sampler import ParallelSampler, SamplerConfig
from spaces import Discrete, Interval, Singleton
from training.checkpoint import load_checkpoint, save_checkpoint

MC = AdvantageConfig(estimator="monte_carlo", normalize_advantages=False)


def one_step(observation, action, reward, instance_id=0):
    record = StepRecord(observation=observation, action=action, reward=reward, done=True)
    return Rollout(instance_id=instance_id, records=(record,))


def test_learns_deterministic_bandit():
    env = DeterministicBanditEnv((0.0, 1.0, 0.2))
    agent = ThompsonSamplingAgent(env.spec)
    algo = PolicyGradientAlgorithm(MC)
    with ParallelSampler(
        lambda: DeterministicBanditEnv((0.0, 1.0, 0.2)),
        agent,
        SamplerConfig(num_instances=2, num_workers=2, horizon=10, seed=0),
    ) as sampler:
        for _ in range(20):
            algo.update(agent, sampler.collect())
        last = sampler.collect()

    assert agent.act_greedy(None) == env.best_arm
    actions = [r.action for rollout in last for r in rollout.records]
    assert actions.count(env.best_arm) / len(actions) > 0.8


def test_update_counts_successes_per_observation_and_action():
    spec = EnvSpec(observation_space=Discrete(2), action_space=Discrete(3))
    agent = ThompsonSamplingAgent(spec, ThompsonSamplingConfig(reward_range=(0.0, 1.0)))
    batch = Batch(rollouts=(
        one_step(0, 1, 1.0, instance_id=0),
        one_step(1, 0, 0.0, instance_id=1),
        one_step(1, 0, 0.5, instance_id=2),
    ))
    stats = PolicyGradientAlgorithm(MC).update(agent, batch)

    assert stats.num_steps == 3
    assert agent.counts[0, 1].tolist() == [1, 2]
    # 0.5 is not above the midpoint: a failure.
    assert agent.counts[1, 0].tolist() == [3, 1]
    assert agent.counts.sum() == 2 * 3 * 2 + 3
    assert agent.act_greedy(0) == 1


def test_act_uses_only_the_given_generator():
    agent = ThompsonSamplingAgent(EnvSpec(Singleton(), Discrete(4)), ThompsonSamplingConfig(num_samples=3))
    a = [agent.act(None, 0, np.random.default_rng(5)).action for _ in range(4)]
    np.random.seed(1)
    b = [agent.act(None, 0, np.random.default_rng(5)).action for _ in range(4)]
    assert a == b
    assert all(0 <= x < 4 for x in a)


def test_rejects_continuous_spaces():
    with pytest.raises(TypeError):
        ThompsonSamplingAgent(EnvSpec(Interval(-1.0, 1.0), Discrete(2)))
    with pytest.raises(TypeError):
        ThompsonSamplingAgent(EnvSpec(Singleton(), Interval(-1.0, 1.0)))


def test_config_validation():
    with pytest.raises(ValueError):
        ThompsonSamplingConfig(num_samples=0)
    with pytest.raises(ValueError):
        ThompsonSamplingConfig(reward_range=(1.0, 1.0))
    assert ThompsonSamplingConfig(reward_range=(-1.0, 3.0)).reward_threshold == 1.0


def test_checkpoint_round_trip(tmp_path):
    spec = EnvSpec(Singleton(), Discrete(2))
    agent = ThompsonSamplingAgent(spec)
    PolicyGradientAlgorithm(MC).update(agent, Batch(rollouts=(one_step(None, 1, 1.0),)))

    path = str(tmp_path / "ts.pt")
    save_checkpoint(path, agent)
    restored = ThompsonSamplingAgent(spec)
    load_checkpoint(path, restored)
    np.testing.assert_array_equal(restored.counts, agent.counts)
