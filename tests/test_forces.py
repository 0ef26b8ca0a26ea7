import math
import unittest

import numpy as np

from particle_sim2d.physics.bounding_box import BoundingBox
from particle_sim2d.physics.forces import ForceSolver, compute_force_pair, compute_forces_direct
from particle_sim2d.physics.particles import ParticleStore


def random_store(n: int, seed: int = 0, size: float = 100.0) -> ParticleStore:
    rng = np.random.default_rng(seed)
    return ParticleStore.from_arrays(
        rng.uniform(0.0, size, n),
        rng.uniform(0.0, size, n),
        np.zeros(n),
        np.zeros(n),
        rng.uniform(0.5, 2.0, n),
    )


class TestForcePair(unittest.TestCase):
    def test_inverse_square_magnitude(self) -> None:
        fx, fy = compute_force_pair(3.0, 4.0, 2.0, 5.0, 1.0, 0.0)
        self.assertAlmostEqual(math.hypot(fx, fy), 10.0 / 25.0, places=12)
        self.assertAlmostEqual(fx / fy, 0.75, places=12)

    def test_zero_displacement_is_zero(self) -> None:
        self.assertEqual(compute_force_pair(0.0, 0.0, 1.0, 1.0, 1.0, 0.01), (0.0, 0.0))
        self.assertEqual(compute_force_pair(0.0, 0.0, 1.0, 1.0, 1.0, 0.01, True), (0.0, 0.0))

    def test_softened_direction_is_weaker(self) -> None:
        eps2 = 1.0
        plain = compute_force_pair(1.0, 0.0, 1.0, 1.0, 1.0, eps2)
        soft = compute_force_pair(1.0, 0.0, 1.0, 1.0, 1.0, eps2, softened_direction=True)
        self.assertAlmostEqual(plain[0], 0.5, places=12)
        self.assertAlmostEqual(soft[0], 0.5 / math.sqrt(2.0), places=12)

    def test_newtons_third_law(self) -> None:
        f_ij = compute_force_pair(2.0, -1.0, 3.0, 4.0, 1.5, 0.01)
        f_ji = compute_force_pair(-2.0, 1.0, 4.0, 3.0, 1.5, 0.01)
        self.assertAlmostEqual(f_ij[0], -f_ji[0], places=12)
        self.assertAlmostEqual(f_ij[1], -f_ji[1], places=12)


class TestDirectSummation(unittest.TestCase):
    def test_momentum_conserved(self) -> None:
        store = random_store(40, seed=1)
        fx, fy = compute_forces_direct(store.pos_x, store.pos_y, store.mass, 1.0, 0.01, tile_size=16)
        self.assertAlmostEqual(float(fx.sum()), 0.0, places=9)
        self.assertAlmostEqual(float(fy.sum()), 0.0, places=9)

    def test_tiling_does_not_change_result(self) -> None:
        store = random_store(33, seed=2)
        a = compute_forces_direct(store.pos_x, store.pos_y, store.mass, 1.0, 0.01, tile_size=7)
        b = compute_forces_direct(store.pos_x, store.pos_y, store.mass, 1.0, 0.01, tile_size=256)
        np.testing.assert_allclose(a[0], b[0], rtol=1e-12, atol=1e-12)
        np.testing.assert_allclose(a[1], b[1], rtol=1e-12, atol=1e-12)

    def test_matches_pair_law(self) -> None:
        fx, fy = compute_forces_direct([0.0, 3.0], [0.0, 4.0], [2.0, 5.0], 1.0, 0.0)
        ex, ey = compute_force_pair(3.0, 4.0, 2.0, 5.0, 1.0, 0.0)
        self.assertAlmostEqual(float(fx[0]), ex, places=12)
        self.assertAlmostEqual(float(fy[0]), ey, places=12)

    def test_coincident_pair_contributes_nothing(self) -> None:
        fx, fy = compute_forces_direct([1.0, 1.0], [1.0, 1.0], [1.0, 1.0], 1.0, 0.01)
        self.assertEqual(fx.tolist(), [0.0, 0.0])
        self.assertEqual(fy.tolist(), [0.0, 0.0])


class TestForceSolver(unittest.TestCase):
    def test_three_body_reference(self) -> None:
        store = ParticleStore.from_arrays([0.0, 10.0, 0.0], [0.0, 0.0, 10.0], [0.0] * 3, [0.0] * 3, [100.0, 1.0, 1.0])
        solver = ForceSolver(BoundingBox(-50.0, -50.0, 100.0, 100.0), g=1.0, softening=0.01, theta=0.5)

        tree = solver.build_tree(store)
        solver.accumulate_forces(tree, store)

        fx, fy = store.get_net_force(1)
        self.assertAlmostEqual(fx, -1.0035345, delta=1e-6)
        self.assertAlmostEqual(fy, 0.0035355, delta=1e-6)

    def test_forces_reset_each_pass(self) -> None:
        store = random_store(20, seed=3)
        solver = ForceSolver(BoundingBox(0.0, 0.0, 100.0, 100.0))
        tree = solver.build_tree(store)
        solver.accumulate_forces(tree, store)
        first = (store.force_x.copy(), store.force_y.copy())
        solver.accumulate_forces(tree, store)
        np.testing.assert_array_equal(store.force_x, first[0])
        np.testing.assert_array_equal(store.force_y, first[1])

    def test_out_of_world_slot_keeps_zero_force(self) -> None:
        store = ParticleStore.from_arrays([50.0, 150.0], [50.0, 50.0], [0.0, 0.0], [0.0, 0.0], [1.0, 1.0])
        solver = ForceSolver(BoundingBox(0.0, 0.0, 100.0, 100.0), softening=0.1)
        solver.accumulate_forces(solver.build_tree(store), store)

        self.assertEqual(store.get_net_force(1), (0.0, 0.0))
        self.assertEqual(store.get_net_force(0), (0.0, 0.0))

    def test_parallel_matches_serial(self) -> None:
        world = BoundingBox(0.0, 0.0, 100.0, 100.0)
        serial_store = random_store(200, seed=4)
        parallel_store = serial_store.copy()

        serial = ForceSolver(world, workers=1)
        parallel = ForceSolver(world, workers=4)
        serial.accumulate_forces(serial.build_tree(serial_store), serial_store)
        parallel.accumulate_forces(parallel.build_tree(parallel_store), parallel_store)

        np.testing.assert_array_equal(parallel_store.force_x, serial_store.force_x)
        np.testing.assert_array_equal(parallel_store.force_y, serial_store.force_y)

    def test_small_theta_close_to_direct(self) -> None:
        store = random_store(80, seed=5)
        solver = ForceSolver(BoundingBox(0.0, 0.0, 100.0, 100.0), softening=0.5, theta=0.2)
        solver.accumulate_forces(solver.build_tree(store), store)
        ref_x, ref_y = compute_forces_direct(store.pos_x, store.pos_y, store.mass, 1.0, 0.25)

        err = np.hypot(store.force_x - ref_x, store.force_y - ref_y)
        scale = np.hypot(ref_x, ref_y)
        self.assertLess(float(np.median(err / scale)), 0.01)

    def test_step_integrates_and_records_timings(self) -> None:
        store = ParticleStore.from_arrays([10.0, 20.0], [10.0, 10.0], [0.0, 0.0], [0.0, 0.0], [1.0, 1.0])
        solver = ForceSolver(BoundingBox(0.0, 0.0, 100.0, 100.0))
        tree = solver.step(store)

        self.assertEqual(tree.particle_count, 2)
        vx0, _ = store.get_velocity(0)
        vx1, _ = store.get_velocity(1)
        self.assertGreater(vx0, 0.0)
        self.assertLess(vx1, 0.0)
        self.assertAlmostEqual(vx0, -vx1, places=12)
        for value in (solver.last_build_time_ms, solver.last_traverse_time_ms, solver.last_integrate_time_ms):
            self.assertIsNotNone(value)
            self.assertGreaterEqual(value, 0.0)

    def test_workers_floor(self) -> None:
        solver = ForceSolver(BoundingBox(0.0, 0.0, 1.0, 1.0), workers=0)
        self.assertEqual(solver.workers, 1)


if __name__ == "__main__":
    unittest.main()
