"""
Semi-implicit Euler integration over structure-of-arrays particle data.

The update is written once per execution path and applied as a chunked
transform:

1. Full batches of ``batch_width`` particles go through ``euler_batch``, which
   works on numpy slice views in place.
2. The particles left over after the last full batch go through
   ``euler_scalar`` one at a time.

Both kernels compute

    a = F / m
    v += a * dt
    x += v * dt

so batched and scalar results agree to floating-point rounding.

Example:
    >>> import numpy as np
    >>> px, py = np.zeros(3), np.zeros(3)
    >>> vx, vy = np.zeros(3), np.zeros(3)
    >>> fx, fy = np.full(3, 10.0), np.zeros(3)
    >>> m = np.full(3, 2.0)
    >>> integrate_chunked(px, py, vx, vy, fx, fy, m, dt=1.0, batch_width=2)
    1
    >>> float(vx[2]), float(px[2])
    (5.0, 5.0)
"""

from __future__ import annotations

from typing import Callable

import numpy as np


DEFAULT_BATCH_WIDTH = 256

BatchKernel = Callable[..., None]
ScalarKernel = Callable[..., None]


def euler_batch(
    pos_x: np.ndarray,
    pos_y: np.ndarray,
    vel_x: np.ndarray,
    vel_y: np.ndarray,
    force_x: np.ndarray,
    force_y: np.ndarray,
    mass: np.ndarray,
    dt: float,
) -> None:
    """Advance every element of the given views by one step, in place."""
    vel_x += (force_x / mass) * dt
    vel_y += (force_y / mass) * dt
    pos_x += vel_x * dt
    pos_y += vel_y * dt


def euler_scalar(
    pos_x: np.ndarray,
    pos_y: np.ndarray,
    vel_x: np.ndarray,
    vel_y: np.ndarray,
    force_x: np.ndarray,
    force_y: np.ndarray,
    mass: np.ndarray,
    dt: float,
    i: int,
) -> None:
    """Advance element ``i`` by one step, in place."""
    m = float(mass[i])
    vx = float(vel_x[i]) + (float(force_x[i]) / m) * dt
    vy = float(vel_y[i]) + (float(force_y[i]) / m) * dt
    vel_x[i] = vx
    vel_y[i] = vy
    pos_x[i] = float(pos_x[i]) + vx * dt
    pos_y[i] = float(pos_y[i]) + vy * dt


def integrate_chunked(
    pos_x: np.ndarray,
    pos_y: np.ndarray,
    vel_x: np.ndarray,
    vel_y: np.ndarray,
    force_x: np.ndarray,
    force_y: np.ndarray,
    mass: np.ndarray,
    *,
    dt: float = 1.0,
    batch_width: int = DEFAULT_BATCH_WIDTH,
    batch: BatchKernel = euler_batch,
    scalar: ScalarKernel = euler_scalar,
) -> int:
    """
    Apply one integration step to all particles.

    Args:
        pos_x, pos_y, vel_x, vel_y: Updated in place
        force_x, force_y, mass: Read only
        dt: Time step (the simulation always uses one unit)
        batch_width: Number of particles per vectorized batch
        batch, scalar: Kernels, replaceable for testing

    Returns:
        Number of particles handled by the scalar remainder loop.
    """
    n = int(mass.shape[0])
    width = max(1, int(batch_width))
    full = n - (n % width)

    for i0 in range(0, full, width):
        i1 = i0 + width
        batch(
            pos_x[i0:i1],
            pos_y[i0:i1],
            vel_x[i0:i1],
            vel_y[i0:i1],
            force_x[i0:i1],
            force_y[i0:i1],
            mass[i0:i1],
            dt,
        )

    for i in range(full, n):
        scalar(pos_x, pos_y, vel_x, vel_y, force_x, force_y, mass, dt, i)

    return n - full


def integrate_scalar(
    pos_x: np.ndarray,
    pos_y: np.ndarray,
    vel_x: np.ndarray,
    vel_y: np.ndarray,
    force_x: np.ndarray,
    force_y: np.ndarray,
    mass: np.ndarray,
    *,
    dt: float = 1.0,
) -> None:
    """Reference path: every particle through the scalar kernel."""
    for i in range(int(mass.shape[0])):
        euler_scalar(pos_x, pos_y, vel_x, vel_y, force_x, force_y, mass, dt, i)
