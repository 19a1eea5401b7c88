#!/usr/bin/env python3
"""Regression Pipeline - Incremental re-execution.

A small linear-regression pipeline declared with the ``Graph.unit``
decorator. Running it twice shows every unit served from the store; changing
the ``noise`` param re-executes only the units downstream of it.

Run:  python examples/regression_pipeline.py
CLI:  reprocache run examples/regression_pipeline.py:graph --store .reprocache
      reprocache graph examples/regression_pipeline.py:build --status
"""
import random
import statistics

from reprocache import Graph, InMemoryArtifactStore, PipelineRunner, load, outdated


def build(noise: float = 0.5) -> Graph:
    graph = Graph(name="regression")

    @graph.unit(params={"n": 200, "seed": 7, "noise": noise})
    def data(n, seed, noise):
        """Synthetic y = 3x + 1 with gaussian noise."""
        rng = random.Random(seed)
        xs = [rng.uniform(0, 10) for _ in range(n)]
        return [(x, 3 * x + 1 + rng.gauss(0, noise)) for x in xs]

    @graph.unit(upstream=["data"])
    def fit(data):
        """Ordinary least squares fit."""
        xs, ys = zip(*data)
        slope, intercept = statistics.linear_regression(xs, ys)
        return {"slope": slope, "intercept": intercept}

    graph.add_unit("n_points", "len(data)", upstream=["data"])

    @graph.unit(upstream=["data", "fit"])
    def residuals(data, fit):
        """Residual standard deviation."""
        errors = [y - (fit["slope"] * x + fit["intercept"]) for x, y in data]
        return statistics.stdev(errors)

    return graph


graph = build()


def main():
    print("=" * 60)
    print("Regression Pipeline")
    print("=" * 60)

    store = InMemoryArtifactStore()
    runner = PipelineRunner(store)

    # === 1. First run executes everything ===
    print("\n[1] First run")
    report = runner.run(graph)
    print(f"  Status:   {report.status.value}")
    print(f"  Executed: {report.executed}")
    print(f"  Fit:      {load(report, store, 'fit')}")

    # === 2. Second run is served from the store ===
    print("\n[2] Second run")
    report = runner.run(graph)
    print(f"  Executed:   {report.executed}")
    print(f"  Cache hits: {report.cache_hits}")

    # === 3. Change a param and plan the next run ===
    print("\n[3] Outdated after changing noise")
    noisier = build(noise=2.0)
    print(outdated(noisier, store).summary())

    report = runner.run(noisier)
    print(f"  Residual stdev: {load(report, store, 'residuals'):.3f}")

    print("\n" + "=" * 60)
    print("[OK] Regression pipeline complete!")


if __name__ == "__main__":
    main()
