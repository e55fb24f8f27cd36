import os
import tempfile
import unittest

import numpy as np

from common.models import Task
from sprint_simulator.coordinator import SprintCoordinator
from sprint_simulator.sprint_simulator import DataCenter
from sprint_simulator.thermal import ThermalConfig


def fixed_threshold(threshold):
    """A coordinator that never recomputes within a test run."""
    return SprintCoordinator(10_000, initial_threshold=threshold, threshold_floor=None, threshold_ceiling=None)


def random_tasks(rng, count, start_id=0):
    return [Task(start_id + i, int(rng.integers(1, 8)), utility=float(rng.random())) for i in range(count)]


class TestDataCenterConstruction(unittest.TestCase):
    def test_runner_partition(self):
        dc = DataCenter(2, 3, 13, verbose=False)
        runners = dc.get_runners()
        self.assertEqual([(r['server_id'], r['rack_id']) for r in runners[:7]],
                         [(0, 0), (0, 0), (1, 0), (1, 0), (2, 0), (2, 0), (3, 1)])
        self.assertEqual(runners[12]['server_id'], 6)
        self.assertEqual(runners[12]['rack_id'], 2)
        self.assertEqual([r.id for r in dc.runners_in_rack(1)], [6, 7, 8, 9, 10, 11])
        self.assertEqual([r.id for r in dc.runners_on_server(6)], [12])

    def test_invalid_layout(self):
        with self.assertRaises(ValueError):
            DataCenter(0, 1, 4, verbose=False)
        with self.assertRaises(ValueError):
            DataCenter(1, 0, 4, verbose=False)
        with self.assertRaises(ValueError):
            DataCenter(1, 1, -1, verbose=False)

    def test_initial_tasks_are_pending_until_first_epoch(self):
        dc = DataCenter(2, 2, 4, initial_tasks=[Task(i, 3, utility=0.1) for i in range(6)], verbose=False)
        self.assertEqual(dc.pending_task_count(), 6)
        dc.run_epoch()
        self.assertEqual(dc.pending_task_count(), 0)
        self.assertEqual(dc.get_stats()['assigned'], 6)

    def test_add_tasks_ignores_empty_input(self):
        dc = DataCenter(2, 2, 4, verbose=False)
        dc.add_task(None)
        dc.add_tasks(None)
        dc.add_tasks([])
        self.assertEqual(dc.pending_task_count(), 0)
        dc.add_tasks([Task(1, 1, utility=0.1), None])
        self.assertEqual(dc.pending_task_count(), 1)

    def test_out_of_range_accessors_return_zero(self):
        dc = DataCenter(2, 2, 4, verbose=False)
        self.assertEqual(dc.chip_temperature(4), 0.0)
        self.assertEqual(dc.chip_temperature(-1), 0.0)
        self.assertEqual(dc.hydrogel_level(99), 0.0)
        self.assertEqual(dc.server_temperature(50), 0.0)
        self.assertEqual(dc.server_hydrogel(50), 0.0)


class TestEpochLoop(unittest.TestCase):
    def test_dry_chip_overheats_after_four_sprints(self):
        dc = DataCenter(1, 1, 1, initial_tasks=[Task("hot", 100, utility=0.9)],
                        coordinator=fixed_threshold(0.1), verbose=False)
        dc.thermal.set_hydrogel(0, 0.0)

        for epoch in range(1, 4):
            dc.run_epoch()
            self.assertAlmostEqual(dc.chip_temperature(0), 0.25 * epoch)
            self.assertTrue(dc.runners[0].sprinting)
            self.assertEqual(dc.runners[0].epochs_in_recovery, 0)

        dc.run_epoch()
        runner = dc.runners[0]
        self.assertEqual(dc.chip_temperature(0), 1.0)
        self.assertEqual(dc.get_stats()['thermal_failures'], 1)
        self.assertFalse(runner.sprinting)
        # Set to 5 by the failure check, then aged once at the end of the same epoch
        self.assertEqual(runner.epochs_in_recovery, dc.thermal_config.cooling_recovery_epochs - 1)

        dc.run_epoch()
        self.assertFalse(runner.sprinting)
        self.assertAlmostEqual(dc.chip_temperature(0), 0.95)
        self.assertAlmostEqual(dc.hydrogel_level(0), 0.05)
        self.assertEqual(runner.epochs_in_recovery, 3)

    def test_rack_over_power_limit_recovers_every_member(self):
        # One rack of 8 runners, 7 of them get a high-utility task
        dc = DataCenter(8, 1, 8, initial_tasks=[Task(i, 20, utility=0.9) for i in range(7)],
                        coordinator=fixed_threshold(0.5), verbose=False)
        dc.run_epoch()
        self.assertEqual(dc.get_stats()['power_failures'], 1)
        for runner in dc.runners:
            self.assertFalse(runner.sprinting)
            self.assertEqual(runner.epochs_in_recovery, dc.thermal_config.power_recovery_epochs - 1)
        self.assertEqual(dc.rack_sprinter_counts(), {})

    def test_other_racks_unaffected_by_power_trip(self):
        config = ThermalConfig(rack_sprint_limit=2)
        tasks = [Task(i, 20, utility=0.9) for i in range(6)]
        # Two racks of 4, greedy placement gives runners 0-5 one task each
        dc = DataCenter(2, 2, 8, initial_tasks=tasks, thermal_config=config,
                        coordinator=fixed_threshold(0.5), verbose=False)
        dc.run_epoch()
        rack0 = [r.epochs_in_recovery for r in dc.runners_in_rack(0)]
        rack1 = dc.runners_in_rack(1)
        self.assertTrue(all(n > 0 for n in rack0))
        self.assertEqual([r.sprinting for r in rack1], [True, True, False, False])
        self.assertEqual(dc.rack_sprinter_counts(), {1: 2})

    def test_sprinting_doubles_progress(self):
        dc = DataCenter(1, 1, 2, initial_tasks=[Task("fast", 4, utility=0.9), Task("slow", 4, utility=0.1)],
                        coordinator=fixed_threshold(0.5), verbose=False)
        dc.run_epoch()
        self.assertEqual([r.total_work() for r in dc.runners], [2, 3])
        dc.run_epoch()
        self.assertEqual(dc.get_stats()['completed'], 1)
        self.assertEqual([r.total_work() for r in dc.runners], [0, 2])

    def test_tasks_added_between_epochs_wait_for_next_epoch(self):
        dc = DataCenter(1, 1, 1, coordinator=fixed_threshold(0.5), verbose=False)
        dc.run_epoch()
        dc.add_task(Task("late", 2, utility=0.1))
        self.assertEqual(dc.runners[0].total_work(), 0)
        self.assertEqual(dc.pending_task_count(), 1)
        dc.run_epoch()
        self.assertEqual(dc.pending_task_count(), 0)
        self.assertEqual(dc.runners[0].total_work(), 1)

    def test_threshold_comes_from_coordinator(self):
        dc = DataCenter(1, 1, 1, initial_tasks=[Task("t", 10, utility=0.6)],
                        coordinator=fixed_threshold(0.7), verbose=False)
        dc.run_epoch()
        self.assertFalse(dc.runners[0].sprinting)
        dc.coordinator.current_threshold = 0.5
        dc.run_epoch()
        self.assertTrue(dc.runners[0].sprinting)
        self.assertEqual(dc.current_threshold(), 0.5)

    def test_default_coordinator_recomputes_on_interval(self):
        rng = np.random.default_rng(3)
        dc = DataCenter(2, 5, 10, initial_tasks=random_tasks(rng, 30), recompute_interval=2, verbose=False)
        dc.coordinator.params = dc.coordinator.params.copy(grid_size=100)
        dc.coordinator.solver_options.update(max_outer=20, max_inner=500)
        self.assertEqual(dc.epochs_until_recompute(), 2)
        dc.run_epoch()
        self.assertEqual(dc.epochs_until_recompute(), 1)
        dc.run_epoch()
        self.assertEqual(dc.epochs_until_recompute(), 2)
        stats = dc.get_stats()
        self.assertEqual(stats['threshold_recomputes'] + stats['recomputes_skipped'], 1)


class TestSimulationProperties(unittest.TestCase):
    def setUp(self):
        # Aggressive policy so that thermal and power failures both happen
        self.config = ThermalConfig(hydrogel_depletion=0.5, sprint_heat=0.3, rack_sprint_limit=3)
        rng = np.random.default_rng(99)
        self.tasks = random_tasks(rng, 60)
        self.dc = DataCenter(2, 2, 12, initial_tasks=self.tasks, thermal_config=self.config,
                             coordinator=fixed_threshold(0.3), verbose=False)
        self.rng = rng

    def test_state_stays_consistent_over_many_epochs(self):
        dc = self.dc
        remaining = {t.id: t.remaining_effort for t in self.tasks}
        recovery = [0] * len(dc.runners)
        completed_seen = set()

        for epoch in range(80):
            if epoch % 10 == 5:
                new_tasks = random_tasks(self.rng, 10, start_id=1000 + epoch * 10)
                self.tasks.extend(new_tasks)
                remaining.update({t.id: t.remaining_effort for t in new_tasks})
                dc.add_tasks(new_tasks)
            dc.run_epoch()

            for task in self.tasks:
                self.assertLessEqual(task.remaining_effort, remaining[task.id])
                self.assertGreaterEqual(task.remaining_effort, 0)
                remaining[task.id] = task.remaining_effort
                if task.id in completed_seen:
                    self.assertTrue(task.is_completed())
                if task.is_completed():
                    self.assertEqual(task.remaining_effort, 0)
                    completed_seen.add(task.id)

            for i, runner in enumerate(dc.runners):
                self.assertGreaterEqual(dc.chip_temperature(i), 0.0)
                self.assertLessEqual(dc.chip_temperature(i), 1.0)
                self.assertGreaterEqual(dc.hydrogel_level(i), 0.0)
                self.assertLessEqual(dc.hydrogel_level(i), 1.0)
                if runner.epochs_in_recovery > 0:
                    self.assertFalse(runner.sprinting)
                # Either aged by exactly one or freshly forced into recovery
                if runner.epochs_in_recovery != max(recovery[i] - 1, 0):
                    self.assertGreaterEqual(runner.epochs_in_recovery,
                                            min(self.config.cooling_recovery_epochs, self.config.power_recovery_epochs) - 1)
                recovery[i] = runner.epochs_in_recovery
                self.assertFalse(any(t.is_completed() for t in runner.task_queue))

        stats = dc.get_stats()
        self.assertEqual(stats['completed'], len(completed_seen))
        self.assertGreater(stats['thermal_failures'] + stats['power_failures'], 0)

    def test_reads_do_not_mutate(self):
        dc = self.dc
        for _ in range(7):
            dc.run_epoch()
        first = (dc.get_current_state(), dc.get_stats(), dc.rack_sprinter_counts(),
                 [dc.server_temperature(s) for s in range(6)], [dc.server_hydrogel(s) for s in range(6)])
        second = (dc.get_current_state(), dc.get_stats(), dc.rack_sprinter_counts(),
                  [dc.server_temperature(s) for s in range(6)], [dc.server_hydrogel(s) for s in range(6)])
        self.assertEqual(first, second)
        self.assertEqual(dc.epoch, 7)


class TestLogging(unittest.TestCase):
    def test_log_file_receives_epoch_messages(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_file = os.path.join(tmp, "sim.log")
            dc = DataCenter(1, 1, 1, initial_tasks=[Task("t", 1, utility=0.1)],
                            coordinator=fixed_threshold(0.5), log_file=log_file, verbose=False)
            dc.run_epoch()
            with open(log_file) as f:
                lines = f.read().splitlines()
        self.assertEqual(lines[0], "--- Epoch 1 ---")
        self.assertTrue(any(line.startswith("[ASSIGN] Task t") for line in lines))
        self.assertTrue(any(line.startswith("[COMPLETE] Task t") for line in lines))


if __name__ == "__main__":
    unittest.main()
