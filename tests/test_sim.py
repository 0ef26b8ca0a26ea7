import math
import threading
import unittest

import numpy as np

from particle_sim2d.core.sim import ParticleSim2D
from particle_sim2d.params import Sim2DParams
from particle_sim2d.physics.bounding_box import BoundingBox
from particle_sim2d.physics.particles import ParticleStore


def two_body_store() -> ParticleStore:
    return ParticleStore.from_arrays([40.0, 60.0], [50.0, 50.0], [0.0, 0.0], [0.0, 0.0], [1.0, 1.0])


def small_params(**overrides) -> Sim2DParams:
    values = dict(world_width=100.0, world_height=100.0, softening=0.1)
    values.update(overrides)
    return Sim2DParams(**values).clamp()


class TestSim(unittest.TestCase):
    def test_empty_step_is_noop(self) -> None:
        sim = ParticleSim2D(small_params())
        sim.step()
        self.assertEqual(sim.step_count, 0)
        self.assertIsNone(sim.tree)
        self.assertEqual(sim.query_visible(BoundingBox(0.0, 0.0, 100.0, 100.0)), [])
        self.assertEqual(sim.node_boxes(), [])

    def test_step_attracts_pair(self) -> None:
        sim = ParticleSim2D(small_params(), two_body_store())
        sim.step()

        self.assertEqual(sim.step_count, 1)
        self.assertIsNotNone(sim.tree)
        self.assertIsNotNone(sim.last_force_ms)
        x0, _ = sim.store.get_position(0)
        x1, _ = sim.store.get_position(1)
        self.assertGreater(x0, 40.0)
        self.assertLess(x1, 60.0)
        self.assertAlmostEqual(x0 - 40.0, 60.0 - x1, places=12)

    def test_lone_particle_at_rest_stays(self) -> None:
        store = ParticleStore.from_arrays([12.5], [70.0], [0.0], [0.0], [4.0])
        sim = ParticleSim2D(small_params(), store)
        for _ in range(10):
            sim.step()
        self.assertEqual(sim.store.get_position(0), (12.5, 70.0))
        self.assertEqual(sim.store.get_velocity(0), (0.0, 0.0))
        self.assertEqual(sim.gradient_range(), (0.0, 0.0))

    def test_mass_sort_on_start(self) -> None:
        store = ParticleStore.from_arrays([1.0, 2.0, 3.0], [1.0] * 3, [0.0] * 3, [0.0] * 3, [30.0, 10.0, 20.0])
        sim = ParticleSim2D(small_params(), store)
        self.assertEqual(sim.store.mass.tolist(), [10.0, 20.0, 30.0])
        self.assertEqual(sim.store.ids.tolist(), [1, 2, 0])

        unsorted = ParticleStore.from_arrays([1.0, 2.0], [1.0] * 2, [0.0] * 2, [0.0] * 2, [30.0, 10.0])
        sim = ParticleSim2D(small_params(sort_by_mass_on_start=False), unsorted)
        self.assertEqual(sim.store.mass.tolist(), [30.0, 10.0])

    def test_query_visible_uses_last_tree(self) -> None:
        sim = ParticleSim2D(small_params(), two_body_store())
        sim.rebuild()
        self.assertEqual(sim.step_count, 0)
        self.assertEqual(sorted(sim.query_visible(BoundingBox(0.0, 0.0, 100.0, 100.0))), [0, 1])
        self.assertEqual(sim.query_visible(BoundingBox(0.0, 0.0, 50.0, 100.0)), [0])
        self.assertEqual(len(sim.node_boxes()), 5)

    def test_query_visible_sees_moved_particle(self) -> None:
        store = ParticleStore.from_arrays([10.0, 90.0], [10.0, 90.0], [50.0, 0.0], [0.0, 0.0], [1.0, 1.0])
        sim = ParticleSim2D(small_params(gravity=0.0, sort_by_mass_on_start=False), store)
        sim.step()

        area = BoundingBox(55.0, 0.0, 10.0, 20.0)
        self.assertEqual(sim.store.get_position(0), (60.0, 10.0))
        self.assertEqual(sim.query_visible(area), [0])
        self.assertEqual(sim.query_visible(BoundingBox(0.0, 0.0, 50.0, 50.0)), [])

    def test_snapshot_is_a_copy(self) -> None:
        sim = ParticleSim2D(small_params(), two_body_store())
        sim.step()
        snap = sim.snapshot()

        self.assertEqual(snap.step, 1)
        np.testing.assert_array_equal(snap.pos_x, sim.store.pos_x)
        sim.step()
        self.assertFalse(np.array_equal(snap.pos_x, sim.store.pos_x))

    def test_gradient_running_average(self) -> None:
        store = ParticleStore.from_arrays([10.0, 90.0], [10.0, 90.0], [3.0, 0.0], [4.0, 0.0], [1.0, 1.0])
        sim = ParticleSim2D(small_params(gravity=0.0, sort_by_mass_on_start=False), store)

        self.assertEqual(sim.sample_gradient(), (0.0, 5.0))
        sim.store.set_velocity(1, (1.0, 0.0))
        sim.store.set_velocity(0, (0.0, 7.0))
        self.assertEqual(sim.sample_gradient(), (1.0, 7.0))

        lo, hi = sim.gradient_range()
        self.assertAlmostEqual(lo, 0.5, places=12)
        self.assertAlmostEqual(hi, 6.0, places=12)

    def test_gradient_force_field(self) -> None:
        sim = ParticleSim2D(small_params(gradient_field="force"), two_body_store())
        sim.step()
        fmin, fmax = sim.gradient_range()
        self.assertGreater(fmin, 0.0)
        self.assertAlmostEqual(fmin, fmax, places=12)

    def test_gradient_sample_interval(self) -> None:
        sim = ParticleSim2D(small_params(gradient_sample_interval=2), two_body_store())
        for _ in range(5):
            sim.step()
        # sampled on steps 0, 2 and 4
        self.assertEqual(sim._gradient_samples, 3)

    def test_configure_replaces_solver(self) -> None:
        sim = ParticleSim2D(small_params(), two_body_store())
        sim.configure(small_params(theta=0.9, workers=2))
        self.assertEqual(sim.solver.theta, 0.9)
        self.assertEqual(sim.solver.workers, 2)

    def test_validate_state_flags_nan(self) -> None:
        sim = ParticleSim2D(small_params(), two_body_store())
        self.assertEqual(sim.validate_state(), [])

        sim.store.set_position(0, (float("nan"), 1.0))
        issues = sim.validate_state()
        self.assertTrue(any("non-finite" in issue for issue in issues))

    def test_out_of_world_particle_still_moves(self) -> None:
        store = ParticleStore.from_arrays([50.0, 150.0], [50.0, 50.0], [0.0, 2.0], [0.0, 0.0], [1.0, 1.0])
        sim = ParticleSim2D(small_params(sort_by_mass_on_start=False), store)

        issues = sim.validate_state()
        self.assertEqual(len(issues), 1)
        self.assertIn("outside world bounds", issues[0])

        sim.step()
        self.assertEqual(sim.tree.excluded, 1)
        self.assertEqual(sim.store.get_position(1), (152.0, 50.0))
        # the excluded body exerts nothing on the one inside
        self.assertEqual(sim.store.get_position(0), (50.0, 50.0))
        self.assertTrue(all(math.isfinite(v) for v in sim.store.pos_x))

    def test_concurrent_readers(self) -> None:
        rng = np.random.default_rng(0)
        n = 100
        store = ParticleStore.from_arrays(
            rng.uniform(0.0, 100.0, n), rng.uniform(0.0, 100.0, n), np.zeros(n), np.zeros(n), np.ones(n)
        )
        sim = ParticleSim2D(small_params(softening=1.0), store)
        errors: list[Exception] = []

        def reader() -> None:
            try:
                for _ in range(20):
                    snap = sim.snapshot()
                    assert snap.pos_x.shape == (n,)
                    sim.query_visible(BoundingBox(0.0, 0.0, 50.0, 50.0))
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for _ in range(5):
            sim.step()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(sim.step_count, 5)


if __name__ == "__main__":
    unittest.main()
