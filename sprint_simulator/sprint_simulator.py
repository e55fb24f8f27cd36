from collections import deque

from sprint_simulator.coordinator import SprintCoordinator
from sprint_simulator.thermal import FailureDetector, ThermalConfig, ThermalModel


def locate_runner(runner_index, procs_per_server, servers_per_rack):
    """
    Maps a runner index to its (server_id, rack_id).
    Every procs_per_server consecutive runners share a server, and every
    servers_per_rack consecutive servers share a rack.
    """
    server_id = runner_index // procs_per_server
    return server_id, server_id // servers_per_rack


class Runner:
    """One compute unit: a FIFO queue of tasks plus its sprint and recovery state."""

    def __init__(self, id, server_id, rack_id):
        self.id = id
        self.server_id = server_id
        self.rack_id = rack_id
        self.task_queue = deque()
        self.sprinting = False
        self.epochs_in_recovery = 0  # 0 means Active

    def add_task(self, task):
        self.task_queue.append(task)

    def total_work(self):
        return sum(task.remaining_effort for task in self.task_queue)

    def current_utility(self):
        """Utility of sprinting right now, the head-of-queue task's utility. 0.0 when idle."""
        if not self.task_queue:
            return 0.0
        return self.task_queue[0].utility

    def can_sprint(self):
        return self.epochs_in_recovery == 0

    def evaluate_sprint(self, threshold):
        if not self.can_sprint():
            self.sprinting = False
            return False
        self.sprinting = bool(self.task_queue) and self.current_utility() > threshold
        return self.sprinting

    def force_recovery(self, epochs):
        # Never shortens a longer pending recovery
        self.epochs_in_recovery = max(self.epochs_in_recovery, epochs)
        self.sprinting = False

    def execute_epoch(self):
        """Advance the head-of-queue task. Returns the task if it completed this epoch."""
        if not self.task_queue:
            return None
        current = self.task_queue[0]
        current.execute_epoch(self.sprinting)
        if current.is_completed():
            return self.task_queue.popleft()
        return None

    def age_recovery(self):
        if self.epochs_in_recovery > 0:
            self.epochs_in_recovery -= 1

    def snapshot(self):
        return {
            'id': self.id,
            'server_id': self.server_id,
            'rack_id': self.rack_id,
            'sprinting': self.sprinting,
            'can_sprint': self.can_sprint(),
            'epochs_in_recovery': self.epochs_in_recovery,
            'queued_tasks': len(self.task_queue),
            'total_work': self.total_work(),
        }

    def __repr__(self):
        return f"Runner(id={self.id}, server={self.server_id}, rack={self.rack_id}, sprinting={self.sprinting}, recovery={self.epochs_in_recovery}, total_work={self.total_work()})"


class SchedulingStrategy:
    """Base class for choosing which runner receives a newly arrived task"""
    def select_runner(self, task, runners):
        raise NotImplementedError


class LeastLoadedScheduling(SchedulingStrategy):
    """
    Greedy load balancing: the runner with the least queued remaining effort.
    Ties go to the earliest runner in insertion order.
    """
    def select_runner(self, task, runners):
        if not runners:
            raise ValueError(f"Cannot schedule task {task.id}: no runners available")
        # min() keeps the first of equal keys
        return min(runners, key=lambda runner: runner.total_work())


class Scheduler:
    def __init__(self, runners, strategy=None, log=None):
        self.runners = runners
        self.strategy = strategy or LeastLoadedScheduling()
        self._log = log or (lambda message: None)

    def assign_task(self, task):
        runner = self.strategy.select_runner(task, self.runners)
        runner.add_task(task)
        self._log(f"[ASSIGN] Task {task.id} (effort {task.effort}, utility {task.utility:.3f}): runner {runner.id}")
        return runner


class DataCenter:
    def __init__(self, procs_per_server, servers_per_rack, num_runners, initial_tasks=None,
                 thermal_config=None, coordinator=None, scheduling_strategy=None,
                 recompute_interval=10, log_file=None, verbose=True):
        if procs_per_server <= 0 or servers_per_rack <= 0:
            raise ValueError(f"procs_per_server and servers_per_rack must be > 0, got {procs_per_server}, {servers_per_rack}")
        if num_runners < 0:
            raise ValueError(f"num_runners must be >= 0, got {num_runners}")

        self.procs_per_server = procs_per_server
        self.servers_per_rack = servers_per_rack
        self.log_file = log_file
        self.verbose = verbose
        self.epoch = 0

        self.runners = [Runner(i, *locate_runner(i, procs_per_server, servers_per_rack)) for i in range(num_runners)]
        self.backlog = deque()
        self.add_tasks(initial_tasks)

        self.thermal_config = thermal_config or ThermalConfig()
        self.thermal = ThermalModel(num_runners, self.thermal_config)
        self.failure_detector = FailureDetector(self.thermal_config)
        self.scheduler = Scheduler(self.runners, scheduling_strategy, log=self._log)
        if coordinator is None:
            coordinator = SprintCoordinator(
                recompute_interval,
                runners_per_rack=min(procs_per_server * servers_per_rack, max(num_runners, 1)),
                rack_sprint_limit=self.thermal_config.rack_sprint_limit,
            )
        if coordinator.log is None:
            coordinator.log = self._log
        self.coordinator = coordinator

        self.stats = {
            'assigned': 0,
            'completed': 0,
            'thermal_failures': 0,
            'power_failures': 0,
        }

    def _log(self, message):
        """Write message to log file and print to console"""
        if self.verbose:
            print(message)
        if self.log_file:
            with open(self.log_file, 'a') as f:
                f.write(message + "\n")

    def add_task(self, task):
        if task is not None:
            self.backlog.append(task)

    def add_tasks(self, tasks):
        if tasks:
            self.backlog.extend(task for task in tasks if task is not None)

    def run_epoch(self):
        """Advance the whole data center by exactly one epoch."""
        self.epoch += 1
        self._log(f"--- Epoch {self.epoch} ---")

        self.coordinator.on_epoch(self.runners)

        # Tasks added from here on wait for the next epoch
        for _ in range(len(self.backlog)):
            self.scheduler.assign_task(self.backlog.popleft())
            self.stats['assigned'] += 1

        threshold = self.coordinator.current_threshold
        for runner in self.runners:
            runner.evaluate_sprint(threshold)

        self.thermal.update([runner.sprinting for runner in self.runners])
        for runner in self.failure_detector.check_thermal(self.runners, self.thermal):
            self.stats['thermal_failures'] += 1
            self._log(f"[THERMAL FAILURE] Runner {runner.id} (server {runner.server_id}) overheated, recovering for {runner.epochs_in_recovery} epochs")

        for rack_id, sprinters in self.failure_detector.check_power(self.runners).items():
            self.stats['power_failures'] += 1
            self._log(f"[POWER FAILURE] Rack {rack_id}: {sprinters} sprinters exceed limit {self.thermal_config.rack_sprint_limit}, all runners recovering")

        for runner in self.runners:
            finished = runner.execute_epoch()
            if finished is not None:
                self.stats['completed'] += 1
                self._log(f"[COMPLETE] Task {finished.id} on runner {runner.id}")

        # Strictly after the failure checks that may have just set it
        for runner in self.runners:
            runner.age_recovery()

    def chip_temperature(self, runner_index):
        return self.thermal.temperature(runner_index)

    def hydrogel_level(self, runner_index):
        return self.thermal.hydrogel_level(runner_index)

    def runners_on_server(self, server_id):
        return [runner for runner in self.runners if runner.server_id == server_id]

    def runners_in_rack(self, rack_id):
        return [runner for runner in self.runners if runner.rack_id == rack_id]

    def server_temperature(self, server_id):
        """Mean chip temperature across the server's runners, 0.0 for an unknown server."""
        members = self.runners_on_server(server_id)
        if not members:
            return 0.0
        return sum(self.chip_temperature(runner.id) for runner in members) / len(members)

    def server_hydrogel(self, server_id):
        members = self.runners_on_server(server_id)
        if not members:
            return 0.0
        return sum(self.hydrogel_level(runner.id) for runner in members) / len(members)

    def rack_sprinter_counts(self):
        return self.failure_detector.rack_sprinter_counts(self.runners)

    def get_runners(self):
        return [runner.snapshot() for runner in self.runners]

    def pending_task_count(self):
        return len(self.backlog)

    def current_threshold(self):
        return self.coordinator.current_threshold

    def epochs_until_recompute(self):
        return self.coordinator.epochs_until_recompute()

    def get_stats(self):
        """Return simulation statistics"""
        stats = self.stats.copy()
        stats.update(self.coordinator.stats)
        return stats

    def get_current_state(self):
        """Return current data center state for external logging"""
        return {
            'epoch': self.epoch,
            'pending_tasks': self.pending_task_count(),
            'threshold': self.current_threshold(),
            'epochs_until_recompute': self.epochs_until_recompute(),
            'runners': [dict(runner, temperature=self.chip_temperature(runner['id']),
                             hydrogel=self.hydrogel_level(runner['id']))
                        for runner in self.get_runners()]
        }
