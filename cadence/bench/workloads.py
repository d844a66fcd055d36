from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import numpy as np

from ..errors import ConfigurationError


class WorkloadError(RuntimeError):
    """Deliberate failure injected by a synthetic workload."""


class SleepWorkload:
    """Sleeps for a gaussian duration and optionally fails at a fixed rate.

    Instances are shared by every worker loop, so the random generator is
    guarded by a lock.
    """

    def __init__(
        self,
        mean_s: float = 0.005,
        jitter_s: float = 0.001,
        failure_rate: float = 0.0,
        seed: int | None = None,
    ) -> None:
        if mean_s < 0 or jitter_s < 0:
            raise ConfigurationError("sleep workload mean_s and jitter_s must be >= 0")
        if not 0.0 <= failure_rate <= 1.0:
            raise ConfigurationError("sleep workload failure_rate must be within [0, 1]")
        self._mean_s = mean_s
        self._jitter_s = jitter_s
        self._failure_rate = failure_rate
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()
        self.calls = 0

    def __call__(self) -> None:
        with self._lock:
            self.calls += 1
            delay = self._rng.normal(self._mean_s, self._jitter_s) if self._jitter_s else self._mean_s
            fail = self._failure_rate > 0 and self._rng.random() < self._failure_rate
        time.sleep(max(float(delay), 0.0))
        if fail:
            raise WorkloadError(f"injected failure on call {self.calls}")


class SpinWorkload:
    """Burns CPU on a fixed amount of arithmetic."""

    def __init__(self, iterations: int = 20_000) -> None:
        if iterations < 1:
            raise ConfigurationError("spin workload iterations must be >= 1")
        self._iterations = iterations
        self.last_result = 0

    def __call__(self) -> None:
        total = 0
        for value in range(self._iterations):
            total += value * value
        self.last_result = total


WORKLOADS: dict[str, Callable[..., Callable[[], None]]] = {
    "sleep": SleepWorkload,
    "spin": SpinWorkload,
}


@dataclass(frozen=True)
class WorkloadSpec:
    kind: str
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind not in WORKLOADS:
            known = ", ".join(sorted(WORKLOADS))
            raise ConfigurationError(f"unknown workload {self.kind!r} (known: {known})")

    def build(self) -> Callable[[], None]:
        try:
            return WORKLOADS[self.kind](**dict(self.options))
        except TypeError as exc:
            raise ConfigurationError(f"invalid options for {self.kind} workload: {exc}") from exc

    def describe(self) -> str:
        options = ", ".join(f"{key}={value}" for key, value in sorted(self.options.items()))
        return f"{self.kind}({options})"

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> WorkloadSpec:
        options = dict(mapping)
        try:
            kind = options.pop("kind")
        except KeyError:
            raise ConfigurationError("workload requires a 'kind'") from None
        return cls(kind=kind, options=options)


__all__ = ["SleepWorkload", "SpinWorkload", "WORKLOADS", "WorkloadError", "WorkloadSpec"]
