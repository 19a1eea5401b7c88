"""Tests for the reprocache CLI."""

from __future__ import annotations

import json
import logging
import os
import sys
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from reprocache import __version__
from reprocache.cli.app import app
from reprocache.cli.utils import load_pipeline, resolve_pipeline
from reprocache.core.logging import get_context

pytestmark = pytest.mark.integration

runner = CliRunner()

PIPELINE = """
    from reprocache import Graph

    graph = Graph(name="cli-demo")
    graph.add_unit("data", "[1, 2, 3]")
    graph.add_unit("total", "sum(data)", upstream=["data"])
    graph.add_unit("scaled", "[x * factor for x in data]", upstream=["data"], params={"factor": FACTOR})


    def build():
        return graph


    not_a_graph = 42
"""

FAILING = """
    from reprocache import Graph

    graph = Graph(name="failing")
    graph.add_unit("data", "[1, 2, 3]")
    graph.add_unit("broken", "data[10]", upstream=["data"])
    graph.add_unit("after", "broken + 1", upstream=["broken"])
"""

CYCLIC = """
    from reprocache import Graph

    graph = Graph(name="cyclic")
    graph.add_unit("a", "b", upstream=["b"])
    graph.add_unit("b", "a", upstream=["a"])
"""


def _write(tmp_path: Path, content: str, name: str = "pipeline.py", **subs: str) -> str:
    text = textwrap.dedent(content)
    for key, value in subs.items():
        text = text.replace(key, value)
    path = tmp_path / name
    path.write_text(text)
    return str(path)


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch):
    """Keep stdout parseable; drop handlers bound to CliRunner's streams afterwards."""
    monkeypatch.setenv("REPRO_LOG_LEVEL", "ERROR")
    yield
    logging.getLogger().handlers.clear()


@pytest.fixture
def store_dir(tmp_path: Path) -> str:
    return str(tmp_path / "store")


@pytest.fixture
def pipeline(tmp_path: Path) -> str:
    return _write(tmp_path, PIPELINE, FACTOR="2") + ":graph"


def _json(result) -> dict:
    return json.loads(result.stdout)


# ── version ──────────────────────────────────────────────────────────


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"reprocache {__version__}" in result.output


# ── run ──────────────────────────────────────────────────────────────


class TestRunCommand:
    def test_run_then_rerun_is_cached(self, pipeline, store_dir):
        first = runner.invoke(app, ["run", pipeline, "--store", store_dir])
        assert first.exit_code == 0, first.output
        assert "SUCCESS" in first.output

        second = runner.invoke(app, ["run", pipeline, "--store", store_dir, "--json"])
        assert second.exit_code == 0
        data = _json(second)
        assert data["status"] == "success"
        assert data["executed"] == []
        assert data["cache_hits"] == ["data", "total", "scaled"]

    def test_targets(self, pipeline, store_dir):
        result = runner.invoke(app, ["run", pipeline, "--store", store_dir, "-t", "total", "--json"])
        assert result.exit_code == 0
        assert [u["unit_id"] for u in _json(result)["units"]] == ["data", "total"]

    def test_parallel_workers(self, pipeline, store_dir):
        result = runner.invoke(app, ["run", pipeline, "--store", store_dir, "--workers", "3", "--json"])
        assert result.exit_code == 0
        assert _json(result)["status"] == "success"

    def test_force(self, pipeline, store_dir):
        runner.invoke(app, ["run", pipeline, "--store", store_dir])
        result = runner.invoke(app, ["run", pipeline, "--store", store_dir, "--force", "--json"])
        assert _json(result)["executed"] == ["data", "total", "scaled"]

    def test_callable_reference(self, tmp_path, store_dir):
        ref = _write(tmp_path, PIPELINE, FACTOR="2") + ":build"
        result = runner.invoke(app, ["run", ref, "--store", store_dir])
        assert result.exit_code == 0

    def test_store_dir_from_environment(self, pipeline, tmp_path, monkeypatch):
        monkeypatch.setenv("REPRO_STORE_DIR", str(tmp_path / "env-store"))
        result = runner.invoke(app, ["run", pipeline])
        assert result.exit_code == 0
        assert (tmp_path / "env-store" / "artifacts").is_dir()

    def test_failed_unit_exits_1(self, tmp_path, store_dir):
        ref = _write(tmp_path, FAILING, name="failing.py") + ":graph"
        result = runner.invoke(app, ["run", ref, "--store", store_dir])
        assert result.exit_code == 1
        assert "PARTIAL" in result.output
        assert "IndexError" in result.output

    def test_cycle_exits_2(self, tmp_path, store_dir):
        ref = _write(tmp_path, CYCLIC, name="cyclic.py") + ":graph"
        result = runner.invoke(app, ["run", ref, "--store", store_dir])
        assert result.exit_code == 2
        assert "CycleError" in result.output

    @pytest.mark.parametrize(
        "ref",
        ["no_such_module_xyz:graph", "missing_colon", "PIPELINE_FILE:nope", "PIPELINE_FILE:not_a_graph"],
    )
    def test_bad_reference_exits_2(self, ref, pipeline, store_dir):
        ref = ref.replace("PIPELINE_FILE", pipeline.rsplit(":", 1)[0])
        result = runner.invoke(app, ["run", ref, "--store", store_dir])
        assert result.exit_code == 2
        assert "ConfigError" in result.output

    def test_unknown_target_exits_2(self, pipeline, store_dir):
        result = runner.invoke(app, ["run", pipeline, "--store", store_dir, "-t", "nope"])
        assert result.exit_code == 2


# ── outdated / graph ─────────────────────────────────────────────────


class TestOutdatedCommand:
    def test_before_and_after_run(self, pipeline, store_dir):
        before = runner.invoke(app, ["outdated", pipeline, "--store", store_dir])
        assert before.exit_code == 0
        assert "no artifact" in before.output

        runner.invoke(app, ["run", pipeline, "--store", store_dir])
        after = runner.invoke(app, ["outdated", pipeline, "--store", store_dir, "--json"])
        assert _json(after)["outdated"] == []

    def test_param_change_is_outdated(self, tmp_path, store_dir):
        runner.invoke(app, ["run", _write(tmp_path, PIPELINE, FACTOR="2") + ":graph", "--store", store_dir])
        changed = _write(tmp_path, PIPELINE, name="changed.py", FACTOR="3") + ":graph"
        result = runner.invoke(app, ["outdated", changed, "--store", store_dir, "--json"])
        assert _json(result)["outdated"] == ["scaled"]


class TestGraphCommand:
    def test_mermaid(self, pipeline):
        result = runner.invoke(app, ["graph", pipeline])
        assert result.exit_code == 0
        assert result.stdout.startswith("graph LR")
        assert "data --> total" in result.stdout

    def test_status_colours(self, pipeline, store_dir):
        runner.invoke(app, ["run", pipeline, "--store", store_dir, "-t", "data"])
        result = runner.invoke(app, ["graph", pipeline, "--store", store_dir, "--status"])
        assert "style data" in result.stdout
        assert "style total" in result.stdout


# ── store ────────────────────────────────────────────────────────────


class TestStoreCommands:
    def test_list(self, pipeline, store_dir):
        empty = runner.invoke(app, ["store", "list", "--store", store_dir])
        assert "No artifacts" in empty.output

        runner.invoke(app, ["run", pipeline, "--store", store_dir])
        listed = runner.invoke(app, ["store", "list", "--store", store_dir, "--json"])
        assert {a["unit_id"] for a in _json(listed)} == {"data", "total", "scaled"}

        one = runner.invoke(app, ["store", "list", "--store", store_dir, "--unit", "total", "--json"])
        assert [a["unit_id"] for a in _json(one)] == ["total"]

        table = runner.invoke(app, ["store", "list", "--store", store_dir])
        assert "Artifacts" in table.output

    def test_invalidate(self, pipeline, store_dir):
        run = _json(runner.invoke(app, ["run", pipeline, "--store", store_dir, "--json"]))
        fp = next(u["fingerprint"] for u in run["units"] if u["unit_id"] == "total")

        result = runner.invoke(app, ["store", "invalidate", fp, "--store", store_dir])
        assert result.exit_code == 0
        plan = _json(runner.invoke(app, ["outdated", pipeline, "--store", store_dir, "--json"]))
        assert plan["outdated"] == ["total"]

        again = runner.invoke(app, ["store", "invalidate", fp, "--store", store_dir])
        assert again.exit_code == 1

    def test_invalidate_malformed_fingerprint(self, store_dir):
        result = runner.invoke(app, ["store", "invalidate", "../etc", "--store", store_dir])
        assert result.exit_code == 2

    def test_prune(self, tmp_path, store_dir):
        old = _write(tmp_path, PIPELINE, FACTOR="2") + ":graph"
        new = _write(tmp_path, PIPELINE, name="new.py", FACTOR="3") + ":graph"
        runner.invoke(app, ["run", old, "--store", store_dir])
        runner.invoke(app, ["run", new, "--store", store_dir])

        declined = runner.invoke(app, ["store", "prune", new, "--store", store_dir], input="n\n")
        assert declined.exit_code == 1
        assert len(_json(runner.invoke(app, ["store", "list", "--store", store_dir, "--json"]))) == 4

        pruned = runner.invoke(app, ["store", "prune", new, "--store", store_dir, "--yes"])
        assert pruned.exit_code == 0
        assert "Pruned 1" in pruned.output
        remaining = _json(runner.invoke(app, ["store", "list", "--store", store_dir, "--json"]))
        assert len(remaining) == 3

        nothing = runner.invoke(app, ["store", "prune", new, "--store", store_dir, "--yes"])
        assert "Nothing to prune" in nothing.output


# ── pipeline loading ─────────────────────────────────────────────────


class TestPipelineLoading:
    def test_same_file_name_in_different_directories(self, tmp_path):
        (tmp_path / "one").mkdir()
        (tmp_path / "two").mkdir()
        first_path = _write(tmp_path / "one", PIPELINE, FACTOR="2")
        second_path = _write(tmp_path / "two", FAILING)

        assert resolve_pipeline(f"{first_path}:graph").name == "cli-demo"
        assert resolve_pipeline(f"{second_path}:graph").name == "failing"

        loaded = {
            os.fspath(module.__file__): name
            for name, module in list(sys.modules.items())
            if name.startswith("_reprocache_pipeline_pipeline_")
        }
        assert loaded[first_path] != loaded[second_path]

    def test_loaded_pipeline_is_bound_to_log_context(self, pipeline):
        load_pipeline(pipeline)
        assert get_context().pipeline == "cli-demo"
