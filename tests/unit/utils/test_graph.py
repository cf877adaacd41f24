"""Tests for modweave.utils.graph module."""

from modweave.utils.graph import find_cycles, kahn_order, strongly_connected_components


class TestKahnOrder:
    """Tests for kahn_order()."""

    def test_dependencies_come_first(self):
        """Edge targets are ordered before their sources."""
        order, residual = kahn_order({"app": {"lib"}, "lib": {"core"}})
        assert order == ["core", "lib", "app"]
        assert residual == set()

    def test_ties_broken_by_id(self):
        """Independent nodes are ordered by id."""
        order, _ = kahn_order({"c": set(), "a": set(), "b": set()})
        assert order == ["a", "b", "c"]

    def test_cycle_leaves_residual(self):
        """Nodes on a cycle are reported as residual."""
        order, residual = kahn_order({"a": {"b"}, "b": {"a"}, "c": set()})
        assert order == ["c"]
        assert residual == {"a", "b"}


class TestCycles:
    """Tests for cycle detection."""

    def test_components(self):
        """Strongly connected components are sorted lists."""
        graph = {"a": {"b"}, "b": {"c"}, "c": {"a"}, "d": {"a"}}
        assert strongly_connected_components(graph) == [["a", "b", "c"], ["d"]]

    def test_find_cycles(self):
        """Only components containing a cycle are returned."""
        graph = {"a": {"b"}, "b": {"a"}, "c": {"c"}, "d": set()}
        assert find_cycles(graph) == [["a", "b"], ["c"]]

    def test_acyclic_graph(self):
        """An acyclic graph has no cycles."""
        assert find_cycles({"a": {"b"}, "b": set()}) == []
