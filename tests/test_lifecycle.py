"""Tests for lifecycle tables — proves transitions are fail-closed and monotonic."""

import pytest

from taskgraph.models.dispute import DisputeStatus
from taskgraph.models.task import MilestoneStage, TaskStatus
from taskgraph.projection.lifecycle import (
    DISPUTE_LIFECYCLE,
    MILESTONE_LIFECYCLE,
    TASK_LIFECYCLE,
    TASK_TRANSITIONS,
)


class TestTaskLifecycle:
    @pytest.mark.parametrize("current,target", [
        (TaskStatus.OPEN, TaskStatus.IN_PROGRESS),
        (TaskStatus.OPEN, TaskStatus.CANCELLED),
        (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
        (TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED),
        (TaskStatus.COMPLETED, TaskStatus.PAID),
    ])
    def test_legal(self, current: TaskStatus, target: TaskStatus) -> None:
        assert TASK_LIFECYCLE.validate_transition(current, target) == []

    @pytest.mark.parametrize("current,target", [
        (TaskStatus.OPEN, TaskStatus.COMPLETED),
        (TaskStatus.OPEN, TaskStatus.PAID),
        (TaskStatus.COMPLETED, TaskStatus.CANCELLED),
        (TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS),
        (TaskStatus.PAID, TaskStatus.OPEN),
        (TaskStatus.CANCELLED, TaskStatus.OPEN),
    ])
    def test_illegal(self, current: TaskStatus, target: TaskStatus) -> None:
        errors = TASK_LIFECYCLE.validate_transition(current, target)
        assert len(errors) == 1
        assert "Invalid task transition" in errors[0]

    def test_terminal_states(self) -> None:
        assert TASK_LIFECYCLE.is_terminal(TaskStatus.PAID)
        assert TASK_LIFECYCLE.is_terminal(TaskStatus.CANCELLED)
        assert not TASK_LIFECYCLE.is_terminal(TaskStatus.COMPLETED)

    def test_every_status_has_a_row(self) -> None:
        assert set(TASK_TRANSITIONS) == set(TaskStatus)

    def test_valid_transitions_is_a_copy(self) -> None:
        targets = TASK_LIFECYCLE.valid_transitions(TaskStatus.OPEN)
        targets.clear()
        assert TASK_LIFECYCLE.valid_transitions(TaskStatus.OPEN) == {
            TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED,
        }


class TestMilestoneLifecycle:
    def test_linear(self) -> None:
        order = [MilestoneStage.UNSUBMITTED, MilestoneStage.SUBMITTED,
                 MilestoneStage.APPROVED, MilestoneStage.PAID]
        for current, target in zip(order, order[1:]):
            assert MILESTONE_LIFECYCLE.validate_transition(current, target) == []

    def test_no_skipping_or_regression(self) -> None:
        assert MILESTONE_LIFECYCLE.validate_transition(
            MilestoneStage.SUBMITTED, MilestoneStage.PAID)
        assert MILESTONE_LIFECYCLE.validate_transition(
            MilestoneStage.PAID, MilestoneStage.APPROVED)


class TestDisputeLifecycle:
    def test_rejection_is_the_only_regression(self) -> None:
        assert DISPUTE_LIFECYCLE.validate_transition(
            DisputeStatus.RESOLVED, DisputeStatus.FILED) == []
        assert DISPUTE_LIFECYCLE.validate_transition(
            DisputeStatus.DISTRIBUTED, DisputeStatus.FILED)
        assert DISPUTE_LIFECYCLE.validate_transition(
            DisputeStatus.FILED, DisputeStatus.DISTRIBUTED)

    def test_distributed_is_terminal(self) -> None:
        assert DISPUTE_LIFECYCLE.is_terminal(DisputeStatus.DISTRIBUTED)
