"""Threshold expressions such as ``rate<0.01`` or ``p(99)<200``.

A threshold binds a predicate to one aggregation of one built-in metric.
Expressions use the k6 grammar::

    <aggregation> <operator> <number>

    aggregation := avg | min | max | med | count | rate | p(<percentile>)
    operator    := < | <= | > | >= | == | !=
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ledgerload._internal.errors import ConfigError
from ledgerload.metrics.models import BUILTIN_METRICS, MetricKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from ledgerload._internal.types import ThresholdSpec

_EXPRESSION = re.compile(
    r"^\s*(?P<agg>avg|min|max|med|count|rate|p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*(?P<bound>-?\d+(?:\.\d+)?)\s*$"
)

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_AGGREGATIONS_BY_KIND: dict[MetricKind, frozenset[str]] = {
    MetricKind.TREND: frozenset({"avg", "min", "max", "med", "count", "p"}),
    MetricKind.RATE: frozenset({"rate"}),
    MetricKind.COUNTER: frozenset({"count", "rate"}),
}


@dataclass(frozen=True)
class Threshold:
    """A pass/fail predicate over one aggregated metric.

    Attributes:
        metric: Built-in metric name, e.g. ``http_req_failed``.
        aggregation: ``avg``, ``min``, ``max``, ``med``, ``count``, ``rate``
            or ``p(N)``.
        op: Comparison operator symbol.
        bound: Right-hand side of the comparison.
        abort_on_fail: Stop the run as soon as an interval evaluation fails.
    """

    metric: str
    aggregation: str
    op: str
    bound: float
    abort_on_fail: bool = False

    @classmethod
    def parse(cls, metric: str, expression: str, *, abort_on_fail: bool = False) -> Threshold:
        """Parse ``expression`` for ``metric``.

        Raises:
            ConfigError: If the metric is unknown, the expression is
                malformed, or the aggregation does not apply to the metric.
        """
        kind = BUILTIN_METRICS.get(metric)
        if kind is None:
            known = ", ".join(sorted(BUILTIN_METRICS))
            msg = f"Unknown threshold metric {metric!r}. Choose from: {known}"
            raise ConfigError(msg)

        match = _EXPRESSION.match(expression)
        if match is None:
            msg = f"Invalid threshold expression for {metric}: {expression!r}"
            raise ConfigError(msg)

        pct = match.group("pct")
        if pct is not None:
            percentile = float(pct)
            if not 0.0 <= percentile <= 100.0:
                msg = f"Percentile must be within 0-100, got {percentile}"
                raise ConfigError(msg)
            aggregation = f"p({pct})"
            family = "p"
        else:
            aggregation = family = match.group("agg")

        if family not in _AGGREGATIONS_BY_KIND[kind]:
            msg = f"Aggregation {aggregation!r} is not valid for {kind.value} metric {metric}"
            raise ConfigError(msg)

        return cls(
            metric=metric,
            aggregation=aggregation,
            op=match.group("op"),
            bound=float(match.group("bound")),
            abort_on_fail=abort_on_fail,
        )

    @property
    def expression(self) -> str:
        return f"{self.aggregation}{self.op}{self.bound:g}"

    @property
    def threshold_id(self) -> str:
        return f"{self.metric}: {self.expression}"

    @property
    def percentile(self) -> float | None:
        """Percentile for ``p(N)`` aggregations, otherwise None."""
        if self.aggregation.startswith("p("):
            return float(self.aggregation[2:-1])
        return None

    def check(self, observed: float) -> bool:
        """Return True if ``observed`` satisfies the predicate."""
        return _OPERATORS[self.op](observed, self.bound)


def parse_thresholds(
    spec: ThresholdSpec,
    *,
    abort_on_fail: bool = False,
) -> tuple[Threshold, ...]:
    """Parse a k6-style ``{"metric": ["expr", ...]}`` mapping.

    Metrics are processed in sorted order so that the resulting tuple is
    stable regardless of mapping order. A bare string is accepted in place
    of a one-element list.
    """
    thresholds: list[Threshold] = []
    for metric in sorted(spec):
        expressions = spec[metric]
        if isinstance(expressions, str):
            expressions = [expressions]
        thresholds.extend(
            Threshold.parse(metric, expression, abort_on_fail=abort_on_fail)
            for expression in expressions
        )
    return tuple(thresholds)


def parse_threshold_option(value: str) -> Threshold:
    """Parse the CLI form ``metric:expression``, e.g. ``http_req_failed:rate<0.01``."""
    metric, sep, expression = value.partition(":")
    if not sep:
        msg = f"Threshold must look like METRIC:EXPRESSION, got {value!r}"
        raise ConfigError(msg)
    return Threshold.parse(metric.strip(), expression)
