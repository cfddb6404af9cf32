# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Ordering of plan phases by their dependencies."""

import heapq

from ..types.plan_types import Phase


class DependencyError(ValueError):
    """The phase graph cannot be ordered."""


def resolve_order(phases: list[Phase]) -> list[Phase]:
    """
    Topologically sort phases (Kahn's algorithm). Among phases that are ready
    at the same time, the lower index goes first, so a plan without
    dependencies runs in its declared order.

    Raises DependencyError on an unknown dependency or a cycle.
    """
    by_id = {p.id: p for p in phases}
    if len(by_id) != len(phases):
        raise DependencyError("Duplicate phase ids in plan")

    in_degree = {p.id: 0 for p in phases}
    dependents: dict[str, list[str]] = {p.id: [] for p in phases}
    for phase in phases:
        for dep in phase.depends_on:
            if dep not in by_id:
                raise DependencyError(f"Phase {phase.id} depends on non-existent phase {dep}")
            in_degree[phase.id] += 1
            dependents[dep].append(phase.id)

    ready = [(p.index, p.id) for p in phases if in_degree[p.id] == 0]
    heapq.heapify(ready)

    ordered: list[Phase] = []
    while ready:
        _, phase_id = heapq.heappop(ready)
        ordered.append(by_id[phase_id])
        for dependent in dependents[phase_id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, (by_id[dependent].index, dependent))

    if len(ordered) != len(phases):
        stuck = sorted(pid for pid, degree in in_degree.items() if degree > 0)
        raise DependencyError(f"Circular dependency detected between phases: {', '.join(stuck)}")

    return ordered
