"""
Shared data models for the Sprint Simulator.

This module contains core data classes used across the simulation and data handling components.
"""

from enum import Enum

from common.distributions import DEFAULT_TASK_PROFILE


class TaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class TaskEvent:
    """Represents a task arriving at the data center at a given epoch."""

    def __init__(self, task, epoch):
        self.task = task
        self.epoch = epoch


class Task:
    """A divisible unit of work with a remaining-effort counter and a fixed utility."""

    def __init__(self, id, effort, utility=None, rng=None):
        if effort < 0:
            raise ValueError(f"Task {id}: effort must be >= 0, got {effort}")
        self.id = id
        self.effort = effort
        self.remaining_effort = effort
        self.state = TaskState.PENDING
        if utility is None:
            utility = float(DEFAULT_TASK_PROFILE.sample(rng)[0])
        # Utilities live on [0, 1]
        self.utility = min(1.0, max(0.0, float(utility)))

    def execute_epoch(self, sprinting):
        """Consume one epoch of work, two effort units when sprinting. Returns units consumed."""
        if self.state == TaskState.COMPLETED:
            return 0

        self.state = TaskState.RUNNING
        consumed = min(2 if sprinting else 1, self.remaining_effort)
        self.remaining_effort -= consumed
        if self.remaining_effort == 0:
            self.state = TaskState.COMPLETED
        return consumed

    def is_completed(self):
        return self.state == TaskState.COMPLETED

    def __repr__(self):
        return f"Task(id={self.id!r}, remaining={self.remaining_effort}/{self.effort}, utility={self.utility:.3f}, state={self.state.value})"
