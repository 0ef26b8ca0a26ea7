"""
Gravitational force law and the per-step force solver.

This module provides:
- compute_force_pair: softened Newtonian attraction between two bodies
- compute_forces_direct: exact O(N^2) summation (reference for tests and
  benchmarks, not a simulation backend)
- ForceSolver: rebuilds the quadtree, accumulates Barnes-Hut forces and
  integrates, once per step

Example:
    >>> from particle_sim2d.physics.bounding_box import BoundingBox
    >>> from particle_sim2d.physics.particles import ParticleStore
    >>> store = ParticleStore.from_arrays([10.0, 20.0], [10.0, 10.0], [0.0, 0.0], [0.0, 0.0], [1.0, 1.0])
    >>> solver = ForceSolver(world=BoundingBox(0.0, 0.0, 100.0, 100.0))
    >>> tree = solver.step(store)
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

import numpy as np

from particle_sim2d.physics.bounding_box import BoundingBox
from particle_sim2d.physics.integrator import DEFAULT_BATCH_WIDTH

if TYPE_CHECKING:
    from particle_sim2d.physics.particles import ParticleStore
    from particle_sim2d.physics.quadtree import QuadTree


logger = logging.getLogger(__name__)


def compute_force_pair(
    dx: float,
    dy: float,
    mi: float,
    mj: float,
    g: float,
    eps2: float,
    softened_direction: bool = False,
) -> tuple[float, float]:
    """
    Compute the gravitational force on body i due to body j.

    Args:
        dx, dy: Displacement from body i to body j
        mi, mj: Masses of the two bodies
        g: Gravitational constant
        eps2: Softening length squared
        softened_direction: Normalize (dx, dy) by the softened distance
            instead of the plain Euclidean norm

    Returns:
        (fx, fy): Force on body i, pointing towards body j

    Note:
        The magnitude is G * mi * mj / (|d|² + ε²). A zero displacement has
        no direction and yields (0, 0).
    """
    d2 = dx * dx + dy * dy
    r2 = d2 + eps2
    if r2 <= 0.0:
        return 0.0, 0.0
    norm = math.sqrt(r2) if softened_direction else math.sqrt(d2)
    if norm <= 0.0:
        return 0.0, 0.0
    f = g * mi * mj / r2 / norm
    return dx * f, dy * f


def compute_forces_direct(
    pos_x: np.ndarray,
    pos_y: np.ndarray,
    mass: np.ndarray,
    g: float,
    eps2: float,
    softened_direction: bool = False,
    tile_size: int = 256,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Exact O(N²) forces using tiled NumPy summation.

    Uses the same force law as compute_force_pair. Self-interaction and
    zero-length displacements contribute nothing.

    Returns:
        (fx, fy) arrays of length N
    """
    px = np.asarray(pos_x, dtype=np.float64)
    py = np.asarray(pos_y, dtype=np.float64)
    m = np.asarray(mass, dtype=np.float64)
    n = int(px.shape[0])
    fx = np.zeros(n, dtype=np.float64)
    fy = np.zeros(n, dtype=np.float64)
    tile = max(1, int(tile_size))

    for i0 in range(0, n, tile):
        i1 = min(n, i0 + tile)
        for j0 in range(0, n, tile):
            j1 = min(n, j0 + tile)
            dx = px[None, j0:j1] - px[i0:i1, None]
            dy = py[None, j0:j1] - py[i0:i1, None]
            d2 = dx * dx + dy * dy
            r2 = d2 + eps2
            norm = np.sqrt(r2) if softened_direction else np.sqrt(d2)
            valid = (norm > 0.0) & (r2 > 0.0)
            if i0 == j0:
                diag = np.arange(min(i1 - i0, j1 - j0))
                valid[diag, diag] = False
            safe_r2 = np.where(valid, r2, 1.0)
            safe_norm = np.where(valid, norm, 1.0)
            f = np.where(valid, g * m[i0:i1, None] * m[None, j0:j1] / safe_r2 / safe_norm, 0.0)
            fx[i0:i1] += np.sum(dx * f, axis=1)
            fy[i0:i1] += np.sum(dy * f, axis=1)

    return fx, fy


class ForceSolver:
    """
    Barnes-Hut solver driving one simulation step.

    A step runs three phases in order: rebuild the quadtree from current
    positions, reset and accumulate forces, integrate. Each phase finishes
    before the next one starts; with ``workers > 1`` the traversal is split
    over a thread pool, each worker owning a disjoint range of slots.

    Attributes:
        world: Fixed world rectangle the tree is built over
        g, softening, theta, softened_direction, max_depth: Tree settings
        dt: Integration time step
        batch_width: Vector batch width for the integrator
        workers: Threads used for the force traversal
    """

    def __init__(
        self,
        world: BoundingBox,
        *,
        g: float = 1.0,
        softening: float = 0.01,
        theta: float = 0.5,
        softened_direction: bool = False,
        max_depth: int = 32,
        dt: float = 1.0,
        batch_width: int = DEFAULT_BATCH_WIDTH,
        workers: int = 1,
    ) -> None:
        self.world = world
        self.g = g
        self.softening = softening
        self.theta = theta
        self.softened_direction = softened_direction
        self.max_depth = max_depth
        self.dt = dt
        self.batch_width = batch_width
        self.workers = max(1, int(workers))
        self.last_build_time_ms: float | None = None
        self.last_traverse_time_ms: float | None = None
        self.last_integrate_time_ms: float | None = None

    @classmethod
    def from_params(cls, params) -> "ForceSolver":
        """Create a solver configured from a Sim2DParams instance."""
        return cls(
            params.world_box(),
            g=params.gravity,
            softening=params.softening,
            theta=params.theta,
            softened_direction=params.softened_direction,
            max_depth=params.max_depth,
            dt=params.time_step,
            batch_width=params.batch_width,
            workers=params.workers,
        )

    def build_tree(self, store: "ParticleStore") -> "QuadTree":
        from particle_sim2d.physics.quadtree import build_quadtree

        t0 = time.perf_counter()
        tree = build_quadtree(
            store,
            self.world,
            g=self.g,
            softening=self.softening,
            theta=self.theta,
            softened_direction=self.softened_direction,
            max_depth=self.max_depth,
        )
        self.last_build_time_ms = (time.perf_counter() - t0) * 1000.0
        return tree

    def accumulate_forces(self, tree: "QuadTree", store: "ParticleStore") -> None:
        """Reset every accumulator, then add the tree force on each particle."""
        t0 = time.perf_counter()
        store.reset_all_forces()
        n = store.count

        if self.workers == 1 or n < 2 * self.workers:
            for slot in range(n):
                tree.calculate_force(store, slot)
        else:
            def traverse(lo: int, hi: int) -> None:
                for slot in range(lo, hi):
                    tree.calculate_force(store, slot)

            bounds = np.linspace(0, n, self.workers + 1).astype(int)
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                futures = [
                    pool.submit(traverse, int(lo), int(hi))
                    for lo, hi in zip(bounds[:-1], bounds[1:])
                ]
                for fut in futures:
                    fut.result()

        self.last_traverse_time_ms = (time.perf_counter() - t0) * 1000.0

    def integrate(self, store: "ParticleStore") -> None:
        t0 = time.perf_counter()
        store.integrate(dt=self.dt, batch_width=self.batch_width)
        self.last_integrate_time_ms = (time.perf_counter() - t0) * 1000.0

    def step(self, store: "ParticleStore") -> "QuadTree":
        """Run rebuild, traversal and integration; return the tree used for forces."""
        tree = self.build_tree(store)
        self.accumulate_forces(tree, store)
        self.integrate(store)
        logger.debug(
            "[solver] n=%d nodes=%d build=%.2fms traverse=%.2fms integrate=%.2fms",
            store.count,
            tree.node_count,
            self.last_build_time_ms,
            self.last_traverse_time_ms,
            self.last_integrate_time_ms,
        )
        return tree
