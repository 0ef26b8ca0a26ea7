#!/usr/bin/env python3
"""
Performance benchmark for the 2-D Barnes-Hut solver.

Compares the quadtree traversal at several opening thresholds against exact
NumPy direct summation, reporting time per force evaluation and the largest
relative force error.

Usage:
    python -m particle_sim2d.utils.benchmark [--particles 1000] [--iterations 10]
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import time

import numpy as np

from particle_sim2d.params import Sim2DParams
from particle_sim2d.physics.forces import ForceSolver, compute_forces_direct
from particle_sim2d.physics.particles import ParticleStore
from particle_sim2d.utils.logging_config import setup_logging


logger = logging.getLogger(__name__)


def generate_particles(n: int, params: Sim2DParams, seed: int = 42) -> ParticleStore:
    """Uniform random particles inside the world rectangle."""
    rng = np.random.default_rng(seed)
    box = params.world_box()
    xs = rng.uniform(box.left, box.right, n)
    ys = rng.uniform(box.top, box.bottom, n)
    masses = rng.uniform(0.5, 1.5, n)
    zeros = np.zeros(n)
    return ParticleStore.from_arrays(xs, ys, zeros, zeros, masses)


def _mean_std_ms(times: list[float]) -> tuple[float, float]:
    mean = sum(times) / len(times)
    std = (sum((t - mean) ** 2 for t in times) / len(times)) ** 0.5
    return mean * 1000.0, std * 1000.0


def benchmark_barnes_hut(
    store: ParticleStore, params: Sim2DParams, theta: float, iterations: int = 10
) -> tuple[float, float, ForceSolver]:
    """Time tree build + traversal; forces of the last run stay in ``store``."""
    solver = ForceSolver.from_params(dataclasses.replace(params, theta=theta))

    times = []
    for _ in range(iterations):
        t0 = time.perf_counter()
        tree = solver.build_tree(store)
        solver.accumulate_forces(tree, store)
        times.append(time.perf_counter() - t0)

    mean_ms, std_ms = _mean_std_ms(times)
    return mean_ms, std_ms, solver


def benchmark_direct(store: ParticleStore, params: Sim2DParams, iterations: int = 10) -> tuple[float, float, tuple]:
    times = []
    result = None
    eps2 = params.softening * params.softening
    for _ in range(iterations):
        t0 = time.perf_counter()
        result = compute_forces_direct(
            store.pos_x, store.pos_y, store.mass, params.gravity, eps2, params.softened_direction
        )
        times.append(time.perf_counter() - t0)
    mean_ms, std_ms = _mean_std_ms(times)
    return mean_ms, std_ms, result


def max_relative_error(store: ParticleStore, reference: tuple[np.ndarray, np.ndarray]) -> float:
    ref_x, ref_y = reference
    ref_norm = np.hypot(ref_x, ref_y)
    err = np.hypot(store.force_x - ref_x, store.force_y - ref_y)
    scale = np.where(ref_norm > 0.0, ref_norm, 1.0)
    return float(np.max(err / scale)) if err.size else 0.0


def run_benchmark(
    n_particles: int,
    iterations: int,
    thetas: tuple[float, ...] = (0.3, 0.5, 0.7),
    params: Sim2DParams | None = None,
) -> dict:
    """Run the full benchmark suite."""
    print(f"\n{'='*60}")
    print(f"Benchmark: {n_particles} particles, {iterations} iterations")
    print(f"{'='*60}")

    if params is None:
        params = Sim2DParams(world_width=1000.0, world_height=1000.0, softening=1.0).clamp()
    store = generate_particles(n_particles, params)

    results: dict[str, float] = {}

    print("Direct (NumPy)...", end=" ", flush=True)
    direct_ms, direct_std, reference = benchmark_direct(store, params, iterations=iterations)
    print(f"{direct_ms:.2f} ± {direct_std:.2f} ms")
    results["direct"] = direct_ms

    for theta in thetas:
        print(f"Barnes-Hut (θ={theta})...", end=" ", flush=True)
        bh_ms, bh_std, solver = benchmark_barnes_hut(store, params, theta, iterations=iterations)
        err = max_relative_error(store, reference)
        print(f"{bh_ms:.2f} ± {bh_std:.2f} ms  (build {solver.last_build_time_ms:.2f} ms, max rel err {err:.2e})")
        results[f"barnes_hut_{theta}"] = bh_ms
        results[f"error_{theta}"] = err

    print(f"\n{'='*60}")
    print("Summary:")
    for theta in thetas:
        bh = results[f"barnes_hut_{theta}"]
        ratio = results["direct"] / bh if bh > 0.0 else float("inf")
        print(f"  Barnes-Hut (θ={theta}): {bh:.2f} ms ({ratio:.2f}x direct)")

    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Benchmark 2-D Barnes-Hut force calculations")
    parser.add_argument("--particles", "-n", type=int, default=1000, help="Number of particles")
    parser.add_argument("--iterations", "-i", type=int, default=10, help="Benchmark iterations")
    parser.add_argument("--sweep", action="store_true", help="Run sweep over particle counts")
    parser.add_argument("--params", type=str, default=None, help="JSON parameter file")
    parser.add_argument("--log-level", default=None, help="Logging level (overrides the parameter file)")
    args = parser.parse_args(argv)

    params = Sim2DParams.load(args.params) if args.params else None
    setup_logging(args.log_level or (params.log_level if params is not None else "WARNING"))
    if params is not None:
        for warning in params.validate():
            logger.warning("[bench] %s", warning)
    if args.particles < 1 or args.iterations < 1:
        logger.error("[bench] particles and iterations must be positive")
        return 2

    print("particle_sim2d Barnes-Hut Benchmark")
    print(f"Platform: {sys.platform}")
    print(f"NumPy: {np.__version__}")

    if args.sweep:
        for n in (100, 500, 1000, 2000, 5000):
            run_benchmark(n, args.iterations, params=params)
    else:
        run_benchmark(args.particles, args.iterations, params=params)
    return 0


if __name__ == "__main__":
    sys.exit(main())
