import math

import numpy as np
import pytest

from algorithms.policy_gradient import AdvantageConfig, PolicyGradientAlgorithm, check_training_batch
from core.errors import DimensionMismatch, ProtocolViolation
from core.specs import EnvSpec
from sampling.history import Batch, Rollout, StepRecord
from sampling.parallel_sampler import ParallelSampler, SamplerConfig
from spaces import Discrete, Interval, Product

from conftest import ConstantRewardEnv, ConstantValueAgent, LinearCriticAgent

SPEC = EnvSpec(observation_space=Discrete(4), action_space=Discrete(2))


def rollout(rewards, dones, values=None, bootstrap=None, instance_id=0):
    values = values or [None] * len(rewards)
    records = tuple(
        StepRecord(observation=t % 4, action=0, reward=r, done=d, value=v, log_prob=math.log(0.5))
        for t, (r, d, v) in enumerate(zip(rewards, dones, values))
    )
    return Rollout(instance_id=instance_id, records=records, bootstrap_value=bootstrap)


def test_advantage_config_validation():
    with pytest.raises(ValueError):
        AdvantageConfig(gamma=1.0)
    with pytest.raises(ValueError):
        AdvantageConfig(gamma=0.0)
    with pytest.raises(ValueError):
        AdvantageConfig(lam=1.5)
    with pytest.raises(ValueError):
        AdvantageConfig(estimator="td3")
    AdvantageConfig(lam=0.0)
    AdvantageConfig(lam=1.0)


def test_scenario_horizon_cutoff_with_value_bootstrap():
    # Discrete(2) actions, one instance, horizon 4, +1 per step, no
    # termination, gamma 0.9, value bootstrap 10.
    agent = ConstantValueAgent(SPEC, value=10.0)
    sampler = ParallelSampler(
        ConstantRewardEnv, agent, SamplerConfig(num_instances=1, horizon=4, seed=0)
    )
    batch = sampler.collect()
    sampler.close()

    assert len(batch.rollouts) == 1
    records = batch.rollouts[0].records
    assert len(records) == 4
    assert all(not r.done for r in records)
    assert batch.rollouts[0].bootstrap_value == 10.0

    expected = 1 + 0.9 * 1 + 0.81 * 1 + 0.729 * 1 + 0.6561 * 10

    mc = PolicyGradientAlgorithm(
        AdvantageConfig(estimator="monte_carlo", gamma=0.9, normalize_advantages=False)
    )
    adv, ret = mc.compute_advantages(batch.rollouts[0])
    assert adv[0] == pytest.approx(expected)
    assert ret[0] == pytest.approx(expected)

    # With lam=1 GAE gives the same return target; the advantage subtracts V.
    gae = PolicyGradientAlgorithm(
        AdvantageConfig(estimator="gae", gamma=0.9, lam=1.0, normalize_advantages=False)
    )
    adv, ret = gae.compute_advantages(batch.rollouts[0])
    assert ret[0] == pytest.approx(expected)
    assert adv[0] == pytest.approx(expected - 10.0)


def test_monte_carlo_terminal_return():
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo", gamma=0.5, normalize_advantages=False))
    adv, _ = algo.compute_advantages(rollout([1.0, 2.0, 4.0], [False, False, True]))
    assert adv[0] == pytest.approx(1.0 + 0.5 * 2.0 + 0.25 * 4.0)


def test_update_calls_agent_once_with_all_instances():
    agent = ConstantValueAgent(SPEC)
    batch = Batch(rollouts=(
        rollout([1.0, 1.0], [False, True], values=[0.0, 0.0], instance_id=0),
        rollout([2.0, 2.0, 2.0], [False, False, False], values=[0.0] * 3, bootstrap=1.0, instance_id=1),
    ))
    stats = PolicyGradientAlgorithm().update(agent, batch)
    assert len(agent.updates) == 1
    tb = agent.updates[0]
    assert len(tb) == 5
    assert stats.num_steps == 5
    assert tb.segments == [(0, 2), (2, 5)]
    assert tb.episode_starts.tolist() == [True, False, True, False, False]
    assert tb.observations.shape == (5, 4)
    np.testing.assert_allclose(tb.log_probs, [math.log(0.5)] * 5)


def test_normalization_is_batch_wide():
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo", gamma=0.5, normalize_advantages=True))
    batch = Batch(rollouts=(
        rollout([1.0], [True], instance_id=0),
        rollout([3.0], [True], instance_id=1),
        rollout([5.0], [True], instance_id=2),
    ))
    tb = algo.prepare(batch, SPEC)
    assert tb.advantages.mean() == pytest.approx(0.0, abs=1e-9)
    assert tb.advantages.std() == pytest.approx(1.0, rel=1e-6)
    # Per-instance normalization would have zeroed every single-step rollout.
    assert tb.advantages[0] < 0 < tb.advantages[2]


def test_normalization_skipped_for_single_step():
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo", gamma=0.5, normalize_advantages=True))
    tb = algo.prepare(Batch(rollouts=(rollout([3.0], [True]),)), SPEC)
    assert tb.advantages.tolist() == [3.0]


def test_gae_rejects_cutoff_without_bootstrap():
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="gae"))
    batch = Batch(rollouts=(rollout([1.0, 1.0], [False, False], values=[0.0, 0.0]),))
    with pytest.raises(ProtocolViolation) as info:
        algo.validate(batch, SPEC)
    assert info.value.instance_id == 0


def test_gae_requires_values():
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="gae"))
    batch = Batch(rollouts=(rollout([1.0], [True]),))
    with pytest.raises(ProtocolViolation, match="value estimate"):
        algo.prepare(batch, SPEC)


def test_monte_carlo_drops_unbootstrapped_partial_episode():
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo", gamma=0.9, normalize_advantages=False))
    r = rollout([1.0, 1.0, 5.0, 5.0], [False, True, False, False])
    assert algo.trainable_length(r) == 2
    tb = algo.prepare(Batch(rollouts=(r,)), SPEC)
    np.testing.assert_allclose(tb.advantages, [1.9, 1.0])


def test_monte_carlo_without_any_complete_episode_skips_update():
    agent = ConstantValueAgent(SPEC, value=None)
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo"))
    stats = algo.update(agent, Batch(rollouts=(rollout([1.0, 1.0], [False, False]),)))
    assert agent.updates == []
    assert stats.num_steps == 0


def test_validate_rejects_bad_records():
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo"))
    bad_action = Rollout(0, (StepRecord(observation=0, action=5, reward=1.0, done=True),))
    with pytest.raises(ProtocolViolation):
        algo.validate(Batch(rollouts=(bad_action,)), SPEC)
    bad_reward = Rollout(0, (StepRecord(observation=0, action=0, reward=float("inf"), done=True),))
    with pytest.raises(ProtocolViolation):
        algo.validate(Batch(rollouts=(bad_reward,)), SPEC)
    with pytest.raises(ProtocolViolation):
        algo.validate(Batch(rollouts=()), SPEC)


def test_dimension_mismatch_for_wrong_interval_width():
    spec = EnvSpec(observation_space=Interval([-1.0, -1.0], [1.0, 1.0]), action_space=Discrete(2))
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo"))
    r = Rollout(0, (StepRecord(observation=np.zeros(3), action=0, reward=1.0, done=True),))
    with pytest.raises(DimensionMismatch):
        algo.validate(Batch(rollouts=(r,)), spec)


def test_dimension_mismatch_for_interval_nested_in_product():
    obs_space = Product([Discrete(2), Interval([-1.0, -1.0], [1.0, 1.0])])
    spec = EnvSpec(observation_space=obs_space, action_space=Discrete(2))
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo"))
    r = Rollout(0, (StepRecord(observation=(0, np.zeros(3)), action=0, reward=1.0, done=True),))
    with pytest.raises(DimensionMismatch, match="component 1"):
        algo.validate(Batch(rollouts=(r,)), spec)

    # Right shape, out of bounds: a protocol error, not a shape error.
    r = Rollout(0, (StepRecord(observation=(0, np.full(2, 5.0)), action=0, reward=1.0, done=True),))
    with pytest.raises(ProtocolViolation):
        algo.validate(Batch(rollouts=(r,)), spec)


def test_check_training_batch_catches_inconsistent_columns():
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="monte_carlo", normalize_advantages=False))
    tb = algo.prepare(Batch(rollouts=(rollout([1.0, 1.0], [False, True]),)), SPEC)
    check_training_batch(tb, SPEC)
    tb.advantages = tb.advantages[:1]
    with pytest.raises(DimensionMismatch):
        check_training_batch(tb, SPEC)


def test_linear_critic_learns_constant_return_through_stub_engine():
    spec = ConstantRewardEnv().spec
    agent = LinearCriticAgent(spec, lr=0.2)
    algo = PolicyGradientAlgorithm(
        AdvantageConfig(estimator="monte_carlo", gamma=0.5, normalize_advantages=False, subtract_baseline=True)
    )
    with ParallelSampler(
        lambda: ConstantRewardEnv(episode_length=1), agent, SamplerConfig(num_instances=2, horizon=8, seed=1)
    ) as sampler:
        for _ in range(50):
            algo.update(agent, sampler.collect())
    # One-step episodes from observation 0 always return exactly 1.
    assert agent.engine.applied == 50
    assert agent.engine.w[0] == pytest.approx(1.0, abs=1e-3)
