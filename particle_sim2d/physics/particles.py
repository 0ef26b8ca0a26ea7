"""
Structure-of-arrays particle storage.

Every attribute lives in its own numpy array and a particle is the row at a
given storage slot across all of them. Slots are positions in the arrays and
change when the store is reordered; ``ids`` holds the stable identifier that
travels with each particle.

Example:
    >>> store = ParticleStore()
    >>> store.add_particle((1.0, 2.0), (0.0, 0.0), mass=2.0, radius=0.5, identifier=7)
    0
    >>> store.accumulate_force(0, (10.0, 0.0))
    >>> store.integrate()
    >>> store.get_velocity(0)
    (5.0, 0.0)
"""

from __future__ import annotations

import logging
import math

import numpy as np

from particle_sim2d.physics.integrator import DEFAULT_BATCH_WIDTH, integrate_chunked


logger = logging.getLogger(__name__)

MIN_MASS = 1e-9
INITIAL_CAPACITY = 64

NORM_FIELDS = ("velocity", "force")

_ARRAY_NAMES = (
    "pos_x",
    "pos_y",
    "vel_x",
    "vel_y",
    "force_x",
    "force_y",
    "mass",
    "radius",
    "ids",
)


def _clamp_masses(mass: np.ndarray) -> np.ndarray:
    bad = ~(mass >= MIN_MASS)
    if np.any(bad):
        logger.warning("[store] %d non-positive masses clamped to %g", int(np.count_nonzero(bad)), MIN_MASS)
        mass = np.where(bad, MIN_MASS, mass)
    return mass


class ParticleStore:
    """
    Parallel arrays for N point masses in two dimensions.

    The public array attributes (``pos_x``, ``vel_x``, ``mass`` ...) are views
    of length ``count`` into larger buffers, so appending is amortized O(1).
    Views are refreshed after every append or reorder; do not keep them
    across those calls.

    Masses below ``MIN_MASS`` (including zero, negative and NaN) are clamped
    when written, so the integrator never divides by a non-positive mass.
    """

    def __init__(self, capacity: int = INITIAL_CAPACITY) -> None:
        self.count = 0
        cap = max(1, int(capacity))
        self._buf: dict[str, np.ndarray] = {
            name: np.zeros(cap, dtype=np.int64 if name == "ids" else np.float64)
            for name in _ARRAY_NAMES
        }
        self._refresh_views()

    @classmethod
    def from_arrays(
        cls,
        pos_x,
        pos_y,
        vel_x,
        vel_y,
        mass,
        *,
        radius=None,
        ids=None,
    ) -> "ParticleStore":
        """Build a store from equal-length sequences. Forces start at zero."""
        px = np.asarray(pos_x, dtype=np.float64)
        n = int(px.shape[0])
        columns = {
            "pos_x": px,
            "pos_y": np.asarray(pos_y, dtype=np.float64),
            "vel_x": np.asarray(vel_x, dtype=np.float64),
            "vel_y": np.asarray(vel_y, dtype=np.float64),
            "mass": np.asarray(mass, dtype=np.float64),
            "radius": np.zeros(n) if radius is None else np.asarray(radius, dtype=np.float64),
            "ids": np.arange(n, dtype=np.int64) if ids is None else np.asarray(ids, dtype=np.int64),
        }
        for name, col in columns.items():
            if col.shape != (n,):
                raise ValueError(f"{name} has shape {col.shape}, expected ({n},)")
        columns["mass"] = _clamp_masses(columns["mass"])

        store = cls(capacity=max(n, INITIAL_CAPACITY))
        for name, col in columns.items():
            store._buf[name][:n] = col
        store.count = n
        store._refresh_views()
        return store

    def __len__(self) -> int:
        return self.count

    def _refresh_views(self) -> None:
        n = self.count
        b = self._buf
        self.pos_x = b["pos_x"][:n]
        self.pos_y = b["pos_y"][:n]
        self.vel_x = b["vel_x"][:n]
        self.vel_y = b["vel_y"][:n]
        self.force_x = b["force_x"][:n]
        self.force_y = b["force_y"][:n]
        self.mass = b["mass"][:n]
        self.radius = b["radius"][:n]
        self.ids = b["ids"][:n]

    def _grow(self, needed: int) -> None:
        cap = self._buf["mass"].shape[0]
        if needed <= cap:
            return
        new_cap = max(needed, cap * 2)
        for name, arr in self._buf.items():
            grown = np.zeros(new_cap, dtype=arr.dtype)
            grown[: self.count] = arr[: self.count]
            self._buf[name] = grown

    def add_particle(
        self,
        pos: tuple[float, float],
        vel: tuple[float, float],
        mass: float,
        radius: float = 0.0,
        identifier: int | None = None,
    ) -> int:
        """Append a particle and return its slot. The identifier defaults to the slot."""
        slot = self.count
        self._grow(slot + 1)
        m = float(mass)
        if not m >= MIN_MASS:
            logger.warning("[store] mass %r clamped to %g", m, MIN_MASS)
            m = MIN_MASS
        b = self._buf
        b["pos_x"][slot], b["pos_y"][slot] = pos
        b["vel_x"][slot], b["vel_y"][slot] = vel
        b["force_x"][slot] = 0.0
        b["force_y"][slot] = 0.0
        b["mass"][slot] = m
        b["radius"][slot] = float(radius)
        b["ids"][slot] = slot if identifier is None else int(identifier)
        self.count = slot + 1
        self._refresh_views()
        return slot

    def copy(self) -> "ParticleStore":
        dup = ParticleStore(capacity=max(self.count, 1))
        for name in _ARRAY_NAMES:
            dup._buf[name][: self.count] = getattr(self, name)
        dup.count = self.count
        dup._refresh_views()
        return dup

    def get_position(self, slot: int) -> tuple[float, float]:
        return float(self.pos_x[slot]), float(self.pos_y[slot])

    def set_position(self, slot: int, pos: tuple[float, float]) -> None:
        self.pos_x[slot], self.pos_y[slot] = pos

    def get_velocity(self, slot: int) -> tuple[float, float]:
        return float(self.vel_x[slot]), float(self.vel_y[slot])

    def set_velocity(self, slot: int, vel: tuple[float, float]) -> None:
        self.vel_x[slot], self.vel_y[slot] = vel

    def get_net_force(self, slot: int) -> tuple[float, float]:
        return float(self.force_x[slot]), float(self.force_y[slot])

    def set_net_force(self, slot: int, force: tuple[float, float]) -> None:
        self.force_x[slot], self.force_y[slot] = force

    def slot_of(self, identifier: int) -> int:
        """Return the current slot of the particle with the given identifier."""
        hits = np.flatnonzero(self.ids == identifier)
        if hits.size == 0:
            raise KeyError(identifier)
        return int(hits[0])

    def reset_all_forces(self) -> None:
        self.force_x[:] = 0.0
        self.force_y[:] = 0.0

    def accumulate_force(self, slot: int, force: tuple[float, float]) -> None:
        fx, fy = force
        self.force_x[slot] += fx
        self.force_y[slot] += fy

    def integrate(self, dt: float = 1.0, batch_width: int = DEFAULT_BATCH_WIDTH) -> None:
        """Semi-implicit Euler step for every particle, batched with a scalar tail."""
        integrate_chunked(
            self.pos_x,
            self.pos_y,
            self.vel_x,
            self.vel_y,
            self.force_x,
            self.force_y,
            self.mass,
            dt=dt,
            batch_width=batch_width,
        )

    def sort_by_mass(self) -> None:
        """
        Reorder slots by ascending mass, truncated to an integer key.

        Ties are left in whatever order the unstable sort produces. Every
        array is permuted with the same order so particles stay intact.
        """
        if self.count < 2:
            return
        order = np.argsort(self.mass.astype(np.int64), kind="quicksort")
        for name in _ARRAY_NAMES:
            view = getattr(self, name)
            view[:] = view[order]

    def _norms(self, field: str) -> np.ndarray:
        if field == "velocity":
            return np.hypot(self.vel_x, self.vel_y)
        if field == "force":
            return np.hypot(self.force_x, self.force_y)
        raise ValueError(f"unknown field {field!r}, expected one of {NORM_FIELDS}")

    def max_norm(self, field: str = "velocity") -> float:
        """Largest Euclidean norm of ``field`` over all particles, 0.0 when empty."""
        norms = self._norms(field)
        if norms.size == 0:
            return 0.0
        return float(norms.max())

    def min_norm(self, field: str = "velocity") -> float:
        norms = self._norms(field)
        if norms.size == 0:
            return 0.0
        return float(norms.min())

    def total_mass(self) -> float:
        return float(self.mass.sum())

    def center_of_mass(self) -> tuple[float, float] | None:
        total = self.total_mass()
        if self.count == 0 or not math.isfinite(total) or total <= 0.0:
            return None
        return (
            float(np.dot(self.pos_x, self.mass) / total),
            float(np.dot(self.pos_y, self.mass) / total),
        )
