from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass

import numpy as np

from particle_sim2d.params import Sim2DParams
from particle_sim2d.physics.bounding_box import BoundingBox
from particle_sim2d.physics.forces import ForceSolver
from particle_sim2d.physics.particles import MIN_MASS, ParticleStore
from particle_sim2d.physics.quadtree import QuadTree


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SimSnapshot:
    """Copies of the renderer-facing particle state after a completed step."""
    step: int
    pos_x: np.ndarray
    pos_y: np.ndarray
    vel_x: np.ndarray
    vel_y: np.ndarray
    mass: np.ndarray
    radius: np.ndarray
    ids: np.ndarray


class ParticleSim2D:
    """
    Simulation state: the particle store, the tree of the last step, and the solver.

    The host loop calls ``step()`` once per tick. Everything a renderer reads
    goes through methods that take the same lock as ``step()``, so readers
    only ever see the result of a completed step.
    """

    def __init__(self, params: Sim2DParams, store: ParticleStore | None = None) -> None:
        self.params = params
        self.store = store if store is not None else ParticleStore()
        self.solver = ForceSolver.from_params(params)
        self.tree: QuadTree | None = None
        self._tree_stale = False
        self.step_count = 0
        self.last_force_ms: float | None = None

        # Running averages of the gradient range (see sample_gradient)
        self.max_norm_avg = 0.0
        self.min_norm_avg = 0.0
        self.last_max_norm = 0.0
        self.last_min_norm = 0.0
        self._gradient_samples = 0

        self._lock = threading.RLock()

        if params.sort_by_mass_on_start:
            self.store.sort_by_mass()

    def configure(self, params: Sim2DParams) -> None:
        """Swap in new parameters; takes effect on the next step."""
        with self._lock:
            self.params = params
            self.solver = ForceSolver.from_params(params)

    def rebuild(self) -> QuadTree:
        """Rebuild the tree from current positions without advancing time."""
        with self._lock:
            self.tree = self.solver.build_tree(self.store)
            self._tree_stale = False
            return self.tree

    def step(self) -> None:
        """
        Advance the simulation by one unit time step.

        Rebuilds the quadtree, accumulates Barnes-Hut forces and integrates
        with semi-implicit Euler, all under the simulation lock.
        """
        with self._lock:
            if self.store.count == 0:
                return
            self.tree = self.solver.step(self.store)
            self._tree_stale = True
            s = self.solver
            self.last_force_ms = (s.last_build_time_ms or 0.0) + (s.last_traverse_time_ms or 0.0)
            if self.tree.excluded:
                logger.debug("[sim] step %d: %d particles outside the world", self.step_count, self.tree.excluded)
            if self.step_count % self.params.gradient_sample_interval == 0:
                self.sample_gradient()
            self.step_count += 1

    def sample_gradient(self) -> tuple[float, float]:
        """
        Fold the current min/max norm of the configured field into the running averages.

        Returns:
            (min_norm, max_norm) of this sample
        """
        with self._lock:
            field = self.params.gradient_field
            cur_max = self.store.max_norm(field)
            cur_min = self.store.min_norm(field)
            k = float(self._gradient_samples)
            self.max_norm_avg = (self.max_norm_avg * k + cur_max) / (k + 1.0)
            self.min_norm_avg = (self.min_norm_avg * k + cur_min) / (k + 1.0)
            self._gradient_samples += 1
            self.last_max_norm = cur_max
            self.last_min_norm = cur_min
            return cur_min, cur_max

    def gradient_range(self) -> tuple[float, float]:
        with self._lock:
            return self.min_norm_avg, self.max_norm_avg

    def query_visible(self, area: BoundingBox) -> list[int]:
        """
        Slots inside ``area`` at their current positions.

        The tree of a step is built before integration moves the particles,
        so a stale tree is rebuilt first. Particles outside the world are
        never in the tree and are not returned.
        """
        with self._lock:
            if self.tree is None:
                return []
            if self._tree_stale:
                self.rebuild()
            return self.tree.query(area, self.store)

    def node_boxes(self) -> list[BoundingBox]:
        with self._lock:
            if self.tree is None:
                return []
            return list(self.tree.node_boxes())

    def snapshot(self) -> SimSnapshot:
        with self._lock:
            st = self.store
            return SimSnapshot(
                step=self.step_count,
                pos_x=st.pos_x.copy(),
                pos_y=st.pos_y.copy(),
                vel_x=st.vel_x.copy(),
                vel_y=st.vel_y.copy(),
                mass=st.mass.copy(),
                radius=st.radius.copy(),
                ids=st.ids.copy(),
            )

    def validate_state(self) -> list[str]:
        issues: list[str] = []
        world = self.params.world_box()
        with self._lock:
            st = self.store
            for i in range(st.count):
                x, y = st.get_position(i)
                vx, vy = st.get_velocity(i)
                if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(vx) and math.isfinite(vy)):
                    issues.append(f"particle {i} has non-finite position/velocity")
                    continue
                if not float(st.mass[i]) >= MIN_MASS:
                    issues.append(f"particle {i} has non-positive mass")
                if not world.contains(x, y):
                    issues.append(f"particle {i} outside world bounds (no tree forces)")
        return issues
