# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import pytest

from agent_loop.planning import DependencyError, resolve_order
from agent_loop.types.plan_types import Phase


def phase(id: str, index: int, *depends_on: str) -> Phase:
    return Phase(id=id, index=index, name=id.title(), depends_on=set(depends_on))


class TestResolveOrder:
    def test_declared_order_without_dependencies(self):
        phases = [phase("b", 1), phase("a", 0), phase("c", 2)]
        assert [p.id for p in resolve_order(phases)] == ["a", "b", "c"]

    def test_dependencies_first(self):
        phases = [phase("deploy", 0, "test"), phase("build", 1), phase("test", 2, "build")]
        assert [p.id for p in resolve_order(phases)] == ["build", "test", "deploy"]

    def test_diamond(self):
        phases = [
            phase("setup", 0),
            phase("left", 1, "setup"),
            phase("right", 2, "setup"),
            phase("merge", 3, "left", "right"),
        ]
        assert [p.id for p in resolve_order(phases)] == ["setup", "left", "right", "merge"]

    def test_unknown_dependency(self):
        with pytest.raises(DependencyError, match="Phase a depends on non-existent phase z"):
            resolve_order([phase("a", 0, "z")])

    def test_cycle(self):
        phases = [phase("a", 0, "c"), phase("b", 1, "a"), phase("c", 2, "b"), phase("d", 3)]
        with pytest.raises(DependencyError, match="Circular dependency detected between phases: a, b, c"):
            resolve_order(phases)

    def test_duplicate_ids(self):
        with pytest.raises(DependencyError, match="Duplicate"):
            resolve_order([phase("a", 0), phase("a", 1)])

    def test_empty(self):
        assert resolve_order([]) == []
