"""Unit tests for pacing delay distributions."""

from __future__ import annotations

import threading

import numpy as np
import pytest

import cadence.distributions as distributions
from cadence.distributions import (
    ConstantDistribution,
    DelayDistribution,
    ExponentialDistribution,
    GaussianDistribution,
    MAX_DELAY_S,
    NullDistribution,
    UniformDistribution,
    create_distribution,
    distribution_kinds,
    register_distribution,
)
from cadence.errors import ConfigurationError


def test_null_distribution_always_returns_zero() -> None:
    distribution = NullDistribution()
    rng = np.random.default_rng(1)
    assert all(distribution.sample() == 0.0 for _ in range(100))
    assert distribution.sample(rng) == 0.0


def test_builtin_kinds_are_registered() -> None:
    kinds = distribution_kinds()
    for kind in ("null", "constant", "uniform", "gaussian", "exponential"):
        assert kind in kinds


def test_create_distribution_is_case_insensitive() -> None:
    distribution = create_distribution("Gaussian", (0.01, 0.002))
    assert isinstance(distribution, GaussianDistribution)
    assert distribution.parameters == (0.01, 0.002)


def test_unknown_kind_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="unknown distribution kind"):
        create_distribution("zipf", (1.0,))


@pytest.mark.parametrize(
    ("kind", "parameters"),
    [
        ("null", (1.0,)),
        ("uniform", (0.1,)),
        ("gaussian", (0.1, 0.2, 0.3)),
        ("exponential", ()),
    ],
)
def test_wrong_parameter_count_fails_construction(kind: str, parameters: tuple[float, ...]) -> None:
    with pytest.raises(ConfigurationError, match="expects"):
        create_distribution(kind, parameters)


def test_non_numeric_and_non_finite_parameters_fail_construction() -> None:
    with pytest.raises(ConfigurationError, match="must be a number"):
        ConstantDistribution("soon")
    with pytest.raises(ConfigurationError, match="finite"):
        ConstantDistribution(float("inf"))


def test_uniform_validates_bounds() -> None:
    with pytest.raises(ConfigurationError, match="min"):
        UniformDistribution(0.2, 0.1)
    with pytest.raises(ConfigurationError, match=">= 0"):
        UniformDistribution(-0.1, 0.1)


def test_uniform_samples_stay_within_bounds() -> None:
    distribution = UniformDistribution(0.01, 0.02)
    rng = np.random.default_rng(7)
    samples = [distribution.sample(rng) for _ in range(1_000)]
    assert min(samples) >= 0.01
    assert max(samples) <= 0.02


def test_uniform_with_equal_bounds_is_constant() -> None:
    assert UniformDistribution(0.05, 0.05).sample() == 0.05


def test_gaussian_rejects_negative_stddev() -> None:
    with pytest.raises(ConfigurationError, match="stddev"):
        GaussianDistribution(0.1, -0.01)


def test_gaussian_is_clamped_at_zero() -> None:
    distribution = GaussianDistribution(-1.0, 0.1)
    rng = np.random.default_rng(3)
    assert all(distribution.sample(rng) == 0.0 for _ in range(200))


def test_gaussian_with_zero_stddev_returns_mean() -> None:
    assert GaussianDistribution(0.25, 0.0).sample() == 0.25


def test_exponential_rejects_non_positive_rate() -> None:
    with pytest.raises(ConfigurationError, match="rate"):
        ExponentialDistribution(0.0)


def test_exponential_mean_matches_rate() -> None:
    distribution = ExponentialDistribution(50.0)
    rng = np.random.default_rng(11)
    samples = np.array([distribution.sample(rng) for _ in range(20_000)])
    assert samples.min() >= 0.0
    assert samples.mean() == pytest.approx(1.0 / 50.0, rel=0.05)


def test_same_seed_gives_same_sequence() -> None:
    distribution = GaussianDistribution(0.01, 0.005)
    first = [distribution.sample(np.random.default_rng(42)) for _ in range(3)]
    rng_a = np.random.default_rng(42)
    rng_b = np.random.default_rng(42)
    assert [distribution.sample(rng_a) for _ in range(10)] == [
        distribution.sample(rng_b) for _ in range(10)
    ]
    assert len(set(first)) == 1


def test_shared_instance_can_be_sampled_concurrently() -> None:
    distribution = UniformDistribution(0.0, 1.0)
    samples: list[float] = []
    lock = threading.Lock()

    def worker() -> None:
        local = [distribution.sample() for _ in range(500)]
        with lock:
            samples.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(samples) == 4_000
    assert all(0.0 <= value <= 1.0 for value in samples)


def test_custom_kinds_can_be_registered(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(distributions, "_REGISTRY", dict(distributions._REGISTRY))

    @register_distribution
    class StepDistribution(DelayDistribution):
        kind = "unit-test-step"
        parameter_names = ("step",)

        def _draw(self, rng: np.random.Generator) -> float:
            return self.parameters[0] * 2

    distribution = create_distribution("unit-test-step", (0.5,))
    assert isinstance(distribution, StepDistribution)
    assert distribution.sample() == 1.0
    assert register_distribution(StepDistribution) is StepDistribution
    assert "unit-test-step" in distribution_kinds()


def test_registering_a_taken_kind_fails() -> None:
    class Impostor(DelayDistribution):
        kind = "gaussian"

    with pytest.raises(ConfigurationError, match="already registered"):
        register_distribution(Impostor)


def test_configuration_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        UniformDistribution(1.0, 0.0)


def test_distributions_compare_by_kind_and_parameters() -> None:
    assert GaussianDistribution(0.1, 0.01) == GaussianDistribution(0.1, 0.01)
    assert GaussianDistribution(0.1, 0.01) != UniformDistribution(0.1, 0.1)
    assert repr(UniformDistribution(0.0, 1.0)) == "UniformDistribution(min=0.0, max=1.0)"


def test_custom_kind_does_not_outlive_its_test() -> None:
    assert "unit-test-step" not in distribution_kinds()


def test_incomplete_subclass_cannot_be_built() -> None:
    class Unfinished(DelayDistribution):
        kind = "unfinished"

    with pytest.raises(TypeError):
        Unfinished()


@pytest.mark.parametrize(
    "kind, parameters",
    [
        ("constant", (1e10,)),
        ("uniform", (0.0, 1e10)),
        ("gaussian", (1e10, 1.0)),
    ],
)
def test_delays_beyond_the_wait_limit_are_rejected(kind, parameters) -> None:
    with pytest.raises(ConfigurationError, match="must be <="):
        create_distribution(kind, parameters)


def test_samples_never_exceed_the_wait_limit() -> None:
    distribution = ExponentialDistribution(1e-300)
    rng = np.random.default_rng(0)
    assert all(0.0 <= distribution.sample(rng) <= MAX_DELAY_S for _ in range(50))
    assert ConstantDistribution(MAX_DELAY_S).sample() == MAX_DELAY_S
