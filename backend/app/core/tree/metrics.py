"""Derived node metrics.

Readiness is bottleneck-limited: a composite is only as ready as its least
ready active child, unless the node pins a value explicitly. Each metric is
resolved independently, so a node can pin one metric and derive another.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .node import READINESS_LEVEL, TARGET_READINESS_LEVEL, Metrics, TreeNode, UpdateMetrics


@dataclass(frozen=True)
class CalculatableMetric:
    name: str
    default: Optional[int] = None
    aggregates_children: bool = True
    follows_reference: bool = True

    def calculate(
        self,
        set_value: Optional[int],
        child_values: Sequence[Optional[int]],
        referenced_value: Optional[int] = None,
    ) -> Optional[int]:
        if set_value is not None:
            return set_value
        if self.follows_reference and referenced_value is not None:
            return referenced_value
        if self.aggregates_children:
            present = [value for value in child_values if value is not None]
            if present:
                return min(present)
        return self.default


CALCULATABLE_METRICS: Dict[str, CalculatableMetric] = {
    READINESS_LEVEL: CalculatableMetric(READINESS_LEVEL, default=0),
    TARGET_READINESS_LEVEL: CalculatableMetric(
        TARGET_READINESS_LEVEL, aggregates_children=False, follows_reference=False
    ),
}

METRIC_NAMES: List[str] = list(CALCULATABLE_METRICS)


def calculate_metric(
    name: str,
    set_metrics: Optional[Mapping[str, Optional[int]]],
    child_values: Sequence[Optional[int]],
    referenced_value: Optional[int] = None,
) -> Optional[int]:
    try:
        calculator = CALCULATABLE_METRICS[name]
    except KeyError:
        raise ValueError(f"Unknown metric: {name}") from None
    set_value = (set_metrics or {}).get(name)
    return calculator.calculate(set_value, child_values, referenced_value)


def calculate_all_metrics(
    set_metrics: Optional[Mapping[str, Optional[int]]],
    children_metrics: Iterable[Mapping[str, int]],
    referenced_metrics: Optional[Mapping[str, int]] = None,
) -> Metrics:
    children_metrics = list(children_metrics)
    result: Metrics = {}
    for name in METRIC_NAMES:
        value = calculate_metric(
            name,
            set_metrics,
            [child.get(name) for child in children_metrics],
            (referenced_metrics or {}).get(name),
        )
        if value is not None:
            result[name] = value
    return result


def calculate_node_metrics(
    node: TreeNode,
    active_children: Iterable[TreeNode],
    referenced_node: Optional[TreeNode] = None,
) -> Metrics:
    return calculate_all_metrics(
        node.set_metrics,
        [child.calculated_metrics for child in active_children],
        referenced_node.calculated_metrics if referenced_node is not None else None,
    )


def merge_metrics(
    existing: Optional[Mapping[str, Optional[int]]],
    patch: Optional[Mapping[str, Optional[int]]],
) -> UpdateMetrics:
    """Merge ``patch`` over ``existing``.

    A key present with ``None`` erases the value; an absent key keeps it.
    Names that are not calculatable metrics are dropped.
    The result can still hold ``None`` entries; see ``compact_metrics``.
    """
    merged: UpdateMetrics = {name: value for name, value in (existing or {}).items() if name in CALCULATABLE_METRICS}
    for name, value in (patch or {}).items():
        if name in CALCULATABLE_METRICS:
            merged[name] = value
    return merged


def compact_metrics(metrics: Optional[Mapping[str, Optional[int]]]) -> Metrics:
    return {
        name: value
        for name, value in (metrics or {}).items()
        if value is not None and name in CALCULATABLE_METRICS
    }


def compact_merge_metrics(
    existing: Optional[Mapping[str, Optional[int]]],
    patch: Optional[Mapping[str, Optional[int]]],
) -> Metrics:
    return compact_metrics(merge_metrics(existing, patch))


def metrics_are_same(a: Optional[Mapping[str, int]], b: Optional[Mapping[str, int]]) -> bool:
    return dict(a or {}) == dict(b or {})
