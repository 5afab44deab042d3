import numpy as np
import pytest
import torch

from algorithms.policy_gradient import AdvantageConfig, PolicyGradientAlgorithm
from algorithms.ppo import PolicyGradientConfig, PPOConfig
from core.bandit_env import DeterministicBanditEnv
from core.errors import EngineError
from core.specs import EnvSpec
from policies.actor_critic import ActorCriticAgent, ActorCriticConfig
from policies.distributions import distribution_for, num_distribution_params
from policies.engine import TorchEngine
from policies.hidden_state import HiddenStateTable
from policies.random_agent import RandomAgent
from policies.recurrent import RecurrentActorCriticAgent
from sampling.parallel_sampler import ParallelSampler, SamplerConfig
from spaces import Discrete, Indexed, Interval, Product, Singleton
from training.checkpoint import load_checkpoint, save_checkpoint

from conftest import QuadraticCostEnv

SMALL = ActorCriticConfig(hidden_sizes=(8, 8), seed=0, ppo=PPOConfig(train_iters=2, batch_size=4))


def spec_for(action_space, observation_space=None):
    return EnvSpec(observation_space=observation_space or Interval(-1.0, 1.0), action_space=action_space)


@pytest.mark.parametrize(
    "space",
    [
        Discrete(3),
        Indexed(("left", "right")),
        Interval([-1.0, 0.0], [1.0, 2.0]),
        Singleton(),
        Product([Discrete(2), Interval(-1.0, 1.0), Singleton()]),
    ],
    ids=repr,
)
def test_distribution_samples_are_in_the_space(space):
    n = num_distribution_params(space)
    params = torch.randn(5, n)
    dist = distribution_for(space, params)
    rng = np.random.default_rng(0)
    values = dist.sample(rng)
    assert len(values) == 5
    assert all(space.contains(v) for v in values)
    assert all(space.contains(v) for v in dist.mode())
    assert dist.log_prob(values).shape == (5,)
    assert dist.entropy().shape == (5,)


def test_distribution_param_count_mismatch():
    with pytest.raises(ValueError):
        distribution_for(Discrete(3), torch.zeros(1, 2))


@pytest.mark.parametrize("action_space", [Discrete(2), Interval(-1.0, 1.0), Product([Discrete(2), Discrete(3)])], ids=repr)
def test_actor_critic_act_outputs(action_space):
    agent = ActorCriticAgent(spec_for(action_space), SMALL)
    out = agent.act(np.array([0.3]), 0, np.random.default_rng(0))
    assert action_space.contains(out.action)
    assert np.isfinite(out.log_prob)
    assert np.isfinite(out.value)
    assert agent.bootstrap_value(np.array([0.3]), 0) == pytest.approx(out.value)


def test_act_is_reproducible_for_the_same_generator():
    agent = ActorCriticAgent(spec_for(Discrete(4)), SMALL)
    a = [agent.act(np.array([0.1]), 0, np.random.default_rng(5)).action for _ in range(3)]
    b = [agent.act(np.array([0.1]), 0, np.random.default_rng(5)).action for _ in range(3)]
    assert a == b


def test_singleton_observations_get_a_constant_input():
    agent = ActorCriticAgent(EnvSpec(Singleton(), Discrete(2)), SMALL)
    out = agent.act(None, 0, np.random.default_rng(0))
    assert out.action in (0, 1)


def test_recurrent_hidden_state_isolation():
    agent = RecurrentActorCriticAgent(spec_for(Discrete(2)), SMALL, num_instances=3)
    rng = np.random.default_rng(0)
    before_1 = agent.hidden.get(1).clone()
    before_2 = agent.hidden.get(2).clone()

    agent.act(np.array([0.5]), 0, rng)
    agent.act(np.array([-0.5]), 0, rng)
    assert not torch.equal(agent.hidden.get(0), before_1)
    assert torch.equal(agent.hidden.get(1), before_1)
    assert torch.equal(agent.hidden.get(2), before_2)

    agent.act(np.array([0.2]), 2, rng)
    snapshot_0 = agent.hidden.get(0).clone()
    agent.reset_hidden_state(2)
    assert torch.equal(agent.hidden.get(0), snapshot_0)
    assert torch.equal(agent.hidden.get(2), before_2)


def test_recurrent_bootstrap_value_does_not_touch_hidden_state():
    agent = RecurrentActorCriticAgent(spec_for(Discrete(2)), SMALL, num_instances=1)
    agent.act(np.array([0.5]), 0, np.random.default_rng(0))
    h = agent.hidden.get(0).clone()
    agent.bootstrap_value(np.array([0.9]), 0)
    assert torch.equal(agent.hidden.get(0), h)


def test_recurrent_replay_matches_collection():
    spec = EnvSpec(Singleton(), Discrete(3))
    agent = RecurrentActorCriticAgent(spec, SMALL)
    with ParallelSampler(
        lambda: DeterministicBanditEnv((0.0, 1.0, 0.5)),
        agent,
        SamplerConfig(num_instances=2, num_workers=2, horizon=5, seed=0),
    ) as sampler:
        batch = sampler.collect()
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="gae", gamma=0.9))
    tb = algo.prepare(batch, spec)
    with torch.no_grad():
        params, values = agent._replay(tb)
        logp = distribution_for(spec.action_space, params).log_prob(tb.actions)
    np.testing.assert_allclose(values.numpy(), tb.values, rtol=1e-5, atol=1e-6)
    np.testing.assert_allclose(logp.numpy(), tb.log_probs, rtol=1e-5, atol=1e-6)


def test_unknown_instance_raises():
    table = HiddenStateTable(lambda: torch.zeros(1, 2), num_instances=2)
    with pytest.raises(IndexError):
        table.get(2)
    table.resize(3)
    assert len(table) == 3


@pytest.mark.parametrize("agent_cls", [ActorCriticAgent, RecurrentActorCriticAgent])
def test_checkpoint_restore_reproduces_actions(tmp_path, agent_cls):
    spec = spec_for(Discrete(3))
    agent = agent_cls(spec, SMALL)
    agent.set_num_instances(1)
    obs = np.array([0.25])
    agent.act(obs, 0, np.random.default_rng(1))

    path = str(tmp_path / "agent.pt")
    save_checkpoint(path, agent, iteration=7)
    expected = [agent.act(obs, 0, np.random.default_rng(2)) for _ in range(3)]

    restored = agent_cls(spec, ActorCriticConfig(hidden_sizes=(8, 8), seed=123))
    restored.set_num_instances(1)
    state = load_checkpoint(path, restored)
    assert state["iteration"] == 7
    got = [restored.act(obs, 0, np.random.default_rng(2)) for _ in range(3)]
    assert [o.action for o in got] == [o.action for o in expected]
    assert [o.value for o in got] == pytest.approx([o.value for o in expected])


def test_bandit_agent_learns_best_arm():
    spec = EnvSpec(Singleton(), Discrete(3))
    cfg = ActorCriticConfig(
        hidden_sizes=(16,),
        lr=0.05,
        update_rule="policy_gradient",
        pg=PolicyGradientConfig(value_coef=0.5),
        seed=0,
    )
    agent = ActorCriticAgent(spec, cfg)
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="gae", gamma=0.5, lam=1.0))
    with ParallelSampler(
        lambda: DeterministicBanditEnv((0.0, 1.0, 0.2)),
        agent,
        SamplerConfig(num_instances=4, horizon=8, seed=0),
    ) as sampler:
        for _ in range(60):
            algo.update(agent, sampler.collect())
    assert agent.act_deterministic(None) == 1


def test_ppo_update_reports_finite_stats():
    spec = spec_for(Interval(-2.0, 2.0))
    agent = ActorCriticAgent(spec, SMALL)
    algo = PolicyGradientAlgorithm(AdvantageConfig(estimator="gae", gamma=0.9))
    with ParallelSampler(lambda: QuadraticCostEnv(spec), agent, SamplerConfig(num_instances=2, horizon=6, seed=0)) as sampler:
        stats = algo.update(agent, sampler.collect())
    assert stats.num_steps == 12
    for value in stats.as_dict().values():
        assert np.isfinite(value)


def test_engine_rejects_non_finite_loss():
    module = torch.nn.Linear(2, 1)
    engine = TorchEngine(module, lr=0.1)
    before = module.weight.detach().clone()
    with pytest.raises(EngineError):
        engine.backward(module(torch.ones(1, 2)).sum() * float("nan"))
    engine.apply()
    assert torch.equal(module.weight.detach(), before)


def test_engine_step_changes_parameters():
    module = torch.nn.Linear(2, 1)
    engine = TorchEngine(module, lr=0.1, max_grad_norm=None)
    before = module.weight.detach().clone()
    grad_norm = engine.backward(engine.forward(torch.ones(1, 2)).sum())
    engine.apply()
    assert grad_norm > 0
    assert not torch.equal(module.weight.detach(), before)


def test_random_agent_samples_action_space():
    spec = spec_for(Product([Discrete(2), Interval(0.0, 1.0)]))
    agent = RandomAgent(spec)
    rng = np.random.default_rng(0)
    for _ in range(10):
        out = agent.act(np.array([0.0]), 0, rng)
        assert spec.action_space.contains(out.action)
        assert out.value is None
    assert agent.bootstrap_value(np.array([0.0]), 0) is None
