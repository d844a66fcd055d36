"""Pacing delays between consecutive invocations of a worker loop.

Every distribution is built from a kind name plus an ordered vector of float
parameters, validated once at construction. ``sample`` never fails and never
returns a negative delay or one longer than ``MAX_DELAY_S``.
"""

from __future__ import annotations

import abc
import math
import threading
from typing import ClassVar, Sequence

import numpy as np

from .errors import ConfigurationError

_REGISTRY: dict[str, type[DelayDistribution]] = {}

# longest delay a worker can wait on; larger values overflow Event.wait
MAX_DELAY_S = threading.TIMEOUT_MAX


def _check_delay(kind: str, name: str, value: float) -> None:
    if value > MAX_DELAY_S:
        raise ConfigurationError(
            f"{kind} parameter {name!r} must be <= {MAX_DELAY_S:g} seconds, got {value!r}"
        )


class DelayDistribution(abc.ABC):
    """Base class for delay distributions, sampled in seconds.

    ``sample`` may be handed a per-worker ``numpy.random.Generator``. Without
    one it falls back to the instance generator, which is guarded by a lock so
    concurrent worker loops can share the instance safely.
    """

    kind: ClassVar[str] = ""
    parameter_names: ClassVar[tuple[str, ...]] = ()

    def __init__(self, *parameters: float, seed: int | None = None) -> None:
        if len(parameters) != len(self.parameter_names):
            expected = ", ".join(self.parameter_names) or "no parameters"
            raise ConfigurationError(
                f"{self.kind} distribution expects {len(self.parameter_names)} "
                f"parameter(s) ({expected}), got {len(parameters)}"
            )
        values: list[float] = []
        for name, raw in zip(self.parameter_names, parameters):
            try:
                value = float(raw)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(
                    f"{self.kind} parameter {name!r} must be a number, got {raw!r}"
                ) from exc
            if not math.isfinite(value):
                raise ConfigurationError(f"{self.kind} parameter {name!r} must be finite")
            values.append(value)
        self.parameters: tuple[float, ...] = tuple(values)
        self._validate()
        self._rng = np.random.default_rng(seed)
        self._rng_lock = threading.Lock()

    def _validate(self) -> None:
        """Hook for kind-specific parameter checks."""

    @abc.abstractmethod
    def _draw(self, rng: np.random.Generator) -> float:
        """Return one raw delay; ``sample`` clamps it at zero."""

    def sample(self, rng: np.random.Generator | None = None) -> float:
        if rng is None:
            with self._rng_lock:
                value = self._draw(self._rng)
        else:
            value = self._draw(rng)
        return min(max(float(value), 0.0), MAX_DELAY_S)

    def __repr__(self) -> str:
        args = ", ".join(
            f"{name}={value!r}" for name, value in zip(self.parameter_names, self.parameters)
        )
        return f"{type(self).__name__}({args})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DelayDistribution):
            return NotImplemented
        return type(self) is type(other) and self.parameters == other.parameters

    def __hash__(self) -> int:
        return hash((type(self), self.parameters))


def register_distribution(
    cls: type[DelayDistribution],
) -> type[DelayDistribution]:
    """Class decorator adding a distribution kind to the registry."""
    key = cls.kind.strip().lower()
    if not key:
        raise ConfigurationError(f"{cls.__name__} must define a non-empty kind")
    existing = _REGISTRY.get(key)
    if existing is not None and existing is not cls:
        raise ConfigurationError(
            f"distribution kind {key!r} already registered by {existing.__name__}"
        )
    _REGISTRY[key] = cls
    return cls


def distribution_kinds() -> tuple[str, ...]:
    return tuple(sorted(_REGISTRY))


def distribution_class(kind: str) -> type[DelayDistribution]:
    try:
        return _REGISTRY[kind.strip().lower()]
    except KeyError:
        known = ", ".join(distribution_kinds())
        raise ConfigurationError(
            f"unknown distribution kind {kind!r} (known: {known})"
        ) from None


def create_distribution(
    kind: str,
    parameters: Sequence[float] = (),
    seed: int | None = None,
) -> DelayDistribution:
    return distribution_class(kind)(*parameters, seed=seed)


@register_distribution
class NullDistribution(DelayDistribution):
    """No pacing at all; the default."""

    kind = "null"

    def _draw(self, rng: np.random.Generator) -> float:
        return 0.0

    def sample(self, rng: np.random.Generator | None = None) -> float:
        return 0.0


@register_distribution
class ConstantDistribution(DelayDistribution):
    kind = "constant"
    parameter_names = ("delay",)

    def _validate(self) -> None:
        if self.parameters[0] < 0:
            raise ConfigurationError("constant delay must be >= 0")
        _check_delay(self.kind, "delay", self.parameters[0])

    def _draw(self, rng: np.random.Generator) -> float:
        return self.parameters[0]


@register_distribution
class UniformDistribution(DelayDistribution):
    kind = "uniform"
    parameter_names = ("min", "max")

    def _validate(self) -> None:
        low, high = self.parameters
        if low < 0 or high < 0:
            raise ConfigurationError("uniform bounds must be >= 0")
        if low > high:
            raise ConfigurationError(f"uniform min ({low}) must be <= max ({high})")
        _check_delay(self.kind, "max", high)

    def _draw(self, rng: np.random.Generator) -> float:
        low, high = self.parameters
        if low == high:
            return low
        return rng.uniform(low, high)


@register_distribution
class GaussianDistribution(DelayDistribution):
    """Normal draw clamped at zero."""

    kind = "gaussian"
    parameter_names = ("mean", "stddev")

    def _validate(self) -> None:
        if self.parameters[1] < 0:
            raise ConfigurationError("gaussian stddev must be >= 0")
        _check_delay(self.kind, "mean", self.parameters[0])

    def _draw(self, rng: np.random.Generator) -> float:
        mean, stddev = self.parameters
        if stddev == 0:
            return mean
        return rng.normal(mean, stddev)


@register_distribution
class ExponentialDistribution(DelayDistribution):
    """Inter-arrival times of a Poisson process with ``rate`` arrivals per second."""

    kind = "exponential"
    parameter_names = ("rate",)

    def _validate(self) -> None:
        if self.parameters[0] <= 0:
            raise ConfigurationError("exponential rate must be > 0")

    def _draw(self, rng: np.random.Generator) -> float:
        return rng.exponential(1.0 / self.parameters[0])


__all__ = [
    "ConstantDistribution",
    "DelayDistribution",
    "ExponentialDistribution",
    "GaussianDistribution",
    "MAX_DELAY_S",
    "NullDistribution",
    "UniformDistribution",
    "create_distribution",
    "distribution_class",
    "distribution_kinds",
    "register_distribution",
]
