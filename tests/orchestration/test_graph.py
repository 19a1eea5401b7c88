"""Tests for Graph — declaration, validation, ordering, traversal."""

from __future__ import annotations

import pytest

from reprocache.core.errors import CycleError, MalformedUnitError
from reprocache.orchestration import ComputationUnit, Graph, topological_order


def _graph(*specs: tuple[str, list[str]]) -> Graph:
    graph = Graph()
    for unit_id, upstream in specs:
        graph.add_unit(unit_id, "0", upstream=upstream)
    return graph


class TestDeclaration:
    def test_add_and_lookup(self):
        graph = _graph(("a", []), ("b", ["a"]))
        assert len(graph) == 2
        assert "a" in graph
        assert graph["b"].upstream == frozenset({"a"})
        assert graph.ids() == ["a", "b"]
        assert [u.unit_id for u in graph] == ["a", "b"]
        assert graph.get("zzz") is None

    def test_duplicate_id(self):
        graph = _graph(("a", []))
        with pytest.raises(MalformedUnitError, match="duplicate"):
            graph.add_unit("a", "1")

    def test_decorator(self):
        graph = Graph()

        @graph.unit(params={"k": 2})
        def load():
            """Load the dataset.

            Longer text.
            """
            return [1, 2]

        @graph.unit("model", upstream="load")
        def fit_model(load, k=None):
            return load

        assert graph["load"].description == "Load the dataset."
        assert graph["model"].upstream == frozenset({"load"})
        assert fit_model([1]) == [1]

    def test_constructor_validates(self):
        with pytest.raises(MalformedUnitError):
            Graph([ComputationUnit("b", "a", upstream=["a"])])


class TestValidate:
    def test_missing_upstream(self):
        graph = _graph(("b", ["a"]))
        with pytest.raises(MalformedUnitError) as exc:
            graph.validate()
        assert exc.value.unit_id == "b"
        assert "a" in exc.value.message

    def test_self_reference_is_cycle(self):
        graph = _graph(("a", ["a"]))
        with pytest.raises(CycleError) as exc:
            graph.validate()
        assert exc.value.cycle == ["a", "a"]

    def test_cycle_path_reported(self):
        graph = _graph(("root", []), ("a", ["root", "c"]), ("b", ["a"]), ("c", ["b"]))
        with pytest.raises(CycleError) as exc:
            graph.validate()
        cycle = exc.value.cycle
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}
        # Each hop follows a real upstream -> downstream edge.
        for up, down in zip(cycle, cycle[1:]):
            assert up in graph[down].upstream

    def test_valid_graph(self):
        _graph(("a", []), ("b", ["a"])).validate()


class TestTopologicalOrder:
    def test_respects_dependencies(self):
        graph = _graph(("c", ["b"]), ("b", ["a"]), ("a", []))
        assert graph.topological_order() == ["a", "b", "c"]

    def test_stable_by_declaration_order(self):
        graph = _graph(("root", []), ("z", ["root"]), ("m", ["root"]), ("a", ["root"]))
        assert graph.topological_order() == ["root", "z", "m", "a"]

    def test_diamond(self, diamond):
        order = diamond.topological_order()
        assert order[0] == "data"
        assert order[-1] == "summary"
        assert set(order[1:3]) == {"scaled", "total"}

    def test_module_function(self, diamond):
        assert topological_order(diamond) == diamond.topological_order()

    def test_cycle_raises(self):
        with pytest.raises(CycleError):
            _graph(("a", ["b"]), ("b", ["a"])).topological_order()

    def test_empty(self):
        assert Graph().topological_order() == []


class TestTraversal:
    def test_downstream(self, diamond):
        assert diamond.downstream("data") == {"scaled", "total", "summary"}
        assert diamond.downstream("total") == {"summary"}
        assert diamond.downstream("summary") == set()

    def test_downstream_unknown(self, diamond):
        with pytest.raises(KeyError):
            diamond.downstream("nope")

    def test_upstream_closure(self, diamond):
        assert diamond.upstream_closure(["scaled"]) == {"scaled", "data"}

    def test_subgraph(self, diamond):
        sub = diamond.subgraph(["total"])
        assert sub.ids() == ["data", "total"]
        assert sub.name == diamond.name
        assert sub["total"] is diamond["total"]

    def test_subgraph_unknown_target(self, diamond):
        with pytest.raises(KeyError):
            diamond.subgraph(["nope"])
