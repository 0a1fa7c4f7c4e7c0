"""Scenario definition and the global scenario registry."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ledgerload._internal.errors import ConfigError, ScenarioError
from ledgerload.metrics.thresholds import Threshold, parse_thresholds

if TYPE_CHECKING:
    from ledgerload._internal.types import ThresholdSpec
    from ledgerload.dsl.payload import RequestTemplate


class ExecutionMode(Enum):
    """Traffic shape of a scenario."""

    CONSTANT_ARRIVAL_RATE = "constant-arrival-rate"
    CLOSED_WORKLOAD = "closed-workload"


def _coerce_thresholds(
    thresholds: ThresholdSpec | Iterable[Threshold] | None,
) -> tuple[Threshold, ...]:
    if thresholds is None:
        return ()
    if isinstance(thresholds, Mapping):
        return parse_thresholds(thresholds)
    return tuple(thresholds)


@dataclass(frozen=True)
class Scenario:
    """Immutable, eagerly validated traffic-generation configuration.

    Prefer the :meth:`constant_arrival_rate` and :meth:`closed_workload`
    constructors, which only expose the options that apply to each mode.

    Attributes:
        name: Unique scenario name.
        mode: Traffic shape.
        template: Request sent on every iteration.
        accepted_statuses: HTTP statuses counted as accepted.
        duration: Wall-clock run length in seconds, or None when bounded by
            iterations only.
        rate: Arrivals per ``time_unit`` (rate mode).
        time_unit: Length of the rate's time unit in seconds (rate mode).
        pre_allocated_vus: Virtual users created at warm-up (rate mode).
        max_vus: Hard virtual-user ceiling; arrivals beyond it are dropped
            (rate mode).
        max_iterations: Total iteration budget (rate mode).
        vus: Fixed concurrency (closed mode).
        pacing: Sleep in seconds between a VU's iterations (closed mode).
        iterations_per_vu: Iteration budget of every VU (closed mode).
        thresholds: Pass/fail criteria evaluated at run end.
        graceful_stop: Seconds in-flight iterations may take to finish after
            the stop signal before they are cancelled.
    """

    name: str
    mode: ExecutionMode
    template: RequestTemplate
    accepted_statuses: frozenset[int]
    duration: float | None = None
    rate: float | None = None
    time_unit: float = 1.0
    pre_allocated_vus: int = 0
    max_vus: int | None = None
    max_iterations: int | None = None
    vus: int | None = None
    pacing: float = 0.0
    iterations_per_vu: int | None = None
    thresholds: tuple[Threshold, ...] = field(default_factory=tuple)
    graceful_stop: float = 30.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "accepted_statuses", frozenset(self.accepted_statuses))
        object.__setattr__(self, "thresholds", tuple(self.thresholds))

        if not self.name:
            msg = "Scenario name must not be empty"
            raise ConfigError(msg)
        if not self.accepted_statuses:
            msg = f"Scenario {self.name!r} must accept at least one status code"
            raise ConfigError(msg)
        for status in self.accepted_statuses:
            if not 100 <= status <= 599:
                msg = f"Scenario {self.name!r} has invalid accepted status {status}"
                raise ConfigError(msg)
        if self.duration is not None and self.duration <= 0:
            msg = f"duration must be positive, got {self.duration}"
            raise ConfigError(msg)
        if self.graceful_stop < 0:
            msg = f"graceful_stop must be non-negative, got {self.graceful_stop}"
            raise ConfigError(msg)
        for threshold in self.thresholds:
            if not isinstance(threshold, Threshold):
                msg = f"thresholds must contain Threshold objects, got {threshold!r}"
                raise ConfigError(msg)

        if self.mode is ExecutionMode.CONSTANT_ARRIVAL_RATE:
            self._validate_rate_mode()
        else:
            self._validate_closed_mode()

    def _validate_rate_mode(self) -> None:
        if self.rate is None or self.rate <= 0:
            msg = f"rate must be positive, got {self.rate}"
            raise ConfigError(msg)
        if self.time_unit <= 0:
            msg = f"time_unit must be positive, got {self.time_unit}"
            raise ConfigError(msg)
        if self.pre_allocated_vus < 0:
            msg = f"pre_allocated_vus must be non-negative, got {self.pre_allocated_vus}"
            raise ConfigError(msg)
        if self.max_vus is None or self.max_vus < 1:
            msg = f"max_vus must be >= 1, got {self.max_vus}"
            raise ConfigError(msg)
        if self.pre_allocated_vus > self.max_vus:
            msg = (
                f"pre_allocated_vus ({self.pre_allocated_vus}) must not exceed "
                f"max_vus ({self.max_vus})"
            )
            raise ConfigError(msg)
        if self.max_iterations is not None and self.max_iterations < 1:
            msg = f"max_iterations must be >= 1, got {self.max_iterations}"
            raise ConfigError(msg)
        if self.duration is None and self.max_iterations is None:
            msg = f"Scenario {self.name!r} needs a duration or max_iterations"
            raise ConfigError(msg)
        if self.vus is not None or self.iterations_per_vu is not None or self.pacing:
            msg = "vus, pacing and iterations_per_vu only apply to closed-workload scenarios"
            raise ConfigError(msg)

    def _validate_closed_mode(self) -> None:
        if self.vus is None or self.vus < 1:
            msg = f"vus must be >= 1, got {self.vus}"
            raise ConfigError(msg)
        if self.pacing < 0:
            msg = f"pacing must be non-negative, got {self.pacing}"
            raise ConfigError(msg)
        if self.iterations_per_vu is not None and self.iterations_per_vu < 1:
            msg = f"iterations_per_vu must be >= 1, got {self.iterations_per_vu}"
            raise ConfigError(msg)
        if self.duration is None and self.iterations_per_vu is None:
            msg = f"Scenario {self.name!r} needs a duration or iterations_per_vu"
            raise ConfigError(msg)
        if self.rate is not None or self.max_vus is not None or self.max_iterations is not None:
            msg = "rate, max_vus and max_iterations only apply to constant-arrival-rate scenarios"
            raise ConfigError(msg)
        if self.pre_allocated_vus:
            msg = "pre_allocated_vus only applies to constant-arrival-rate scenarios"
            raise ConfigError(msg)

    @classmethod
    def constant_arrival_rate(
        cls,
        *,
        name: str,
        template: RequestTemplate,
        accepted_statuses: Iterable[int],
        rate: float,
        pre_allocated_vus: int,
        max_vus: int | None = None,
        duration: float | None = None,
        time_unit: float = 1.0,
        max_iterations: int | None = None,
        thresholds: ThresholdSpec | Iterable[Threshold] | None = None,
        graceful_stop: float = 30.0,
    ) -> Scenario:
        """Build an open-workload scenario.

        ``max_vus`` defaults to ``pre_allocated_vus``.
        """
        return cls(
            name=name,
            mode=ExecutionMode.CONSTANT_ARRIVAL_RATE,
            template=template,
            accepted_statuses=frozenset(accepted_statuses),
            duration=duration,
            rate=rate,
            time_unit=time_unit,
            pre_allocated_vus=pre_allocated_vus,
            max_vus=max_vus if max_vus is not None else pre_allocated_vus,
            max_iterations=max_iterations,
            thresholds=_coerce_thresholds(thresholds),
            graceful_stop=graceful_stop,
        )

    @classmethod
    def closed_workload(
        cls,
        *,
        name: str,
        template: RequestTemplate,
        accepted_statuses: Iterable[int],
        vus: int,
        duration: float | None = None,
        pacing: float = 0.0,
        iterations_per_vu: int | None = None,
        thresholds: ThresholdSpec | Iterable[Threshold] | None = None,
        graceful_stop: float = 30.0,
    ) -> Scenario:
        """Build a fixed-concurrency scenario."""
        return cls(
            name=name,
            mode=ExecutionMode.CLOSED_WORKLOAD,
            template=template,
            accepted_statuses=frozenset(accepted_statuses),
            duration=duration,
            vus=vus,
            pacing=pacing,
            iterations_per_vu=iterations_per_vu,
            thresholds=_coerce_thresholds(thresholds),
            graceful_stop=graceful_stop,
        )

    @property
    def vu_ceiling(self) -> int:
        """Largest number of virtual users the scenario may ever run."""
        if self.mode is ExecutionMode.CONSTANT_ARRIVAL_RATE:
            assert self.max_vus is not None
            return self.max_vus
        assert self.vus is not None
        return self.vus

    @property
    def arrival_interval(self) -> float:
        """Seconds between two arrivals (rate mode)."""
        assert self.rate is not None
        return self.time_unit / self.rate

    def replace(self, **changes: Any) -> Scenario:
        """Return a copy with ``changes`` applied, validated again."""
        return dataclasses.replace(self, **changes)

    def describe(self) -> str:
        """Return a one-line human-readable description."""
        if self.mode is ExecutionMode.CONSTANT_ARRIVAL_RATE:
            shape = (
                f"{self.rate:g}/{self.time_unit:g}s, "
                f"{self.pre_allocated_vus}-{self.max_vus} VUs"
            )
        else:
            shape = f"{self.vus} VUs, pacing {self.pacing:g}s"
        bound = []
        if self.duration is not None:
            bound.append(f"{self.duration:g}s")
        if self.max_iterations is not None:
            bound.append(f"{self.max_iterations} iterations")
        if self.iterations_per_vu is not None:
            bound.append(f"{self.iterations_per_vu} iterations/VU")
        return (
            f"{self.mode.value}: {shape}, {' or '.join(bound)}, "
            f"{self.template.method} {self.template.path}"
        )


class ScenarioRegistry:
    """Registry of named scenarios.

    The canonical scenarios register themselves on import of
    :mod:`ledgerload.dsl.catalog`. The registry is a module-level singleton.
    """

    def __init__(self) -> None:
        self._scenarios: dict[str, Scenario] = {}

    def register(self, scenario: Scenario) -> Scenario:
        """Register ``scenario`` and return it.

        Raises:
            ScenarioError: If the name is already registered.
        """
        if scenario.name in self._scenarios:
            msg = f"Scenario {scenario.name!r} is already registered"
            raise ScenarioError(msg)
        self._scenarios[scenario.name] = scenario
        return scenario

    def get(self, name: str) -> Scenario | None:
        return self._scenarios.get(name)

    def require(self, name: str) -> Scenario:
        """Look up a scenario, raising ScenarioError if it is unknown."""
        scenario = self._scenarios.get(name)
        if scenario is None:
            known = ", ".join(sorted(self._scenarios)) or "none"
            msg = f"Unknown scenario {name!r}. Registered: {known}"
            raise ScenarioError(msg)
        return scenario

    def get_all(self) -> list[Scenario]:
        return list(self._scenarios.values())

    def clear(self) -> None:
        """Remove all registered scenarios. Primarily for testing."""
        self._scenarios.clear()

    def __len__(self) -> int:
        return len(self._scenarios)


# Global singleton registry.
registry = ScenarioRegistry()
