"""Lifecycle tables — the legal transitions the projection will apply.

Task lifecycle:
    Open → InProgress → Completed → Paid
    Open / InProgress → Cancelled
Milestone lifecycle:
    unsubmitted → submitted → approved → paid
Dispute lifecycle:
    Filed → Resolved → Distributed
    Resolved → Filed   (proposal rejected)

Fail-closed: a transition not listed here is rejected. Re-applying the
current state is reported separately as a replay, so redelivered events
are recognised rather than flagged as regressions.
"""

from __future__ import annotations

import enum
from typing import TypeVar

from taskgraph.models.dispute import DisputeStatus
from taskgraph.models.task import MilestoneStage, TaskStatus

S = TypeVar("S", bound=enum.Enum)


# Valid transitions: {from_state: {allowed_to_states}}
TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.OPEN: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.CANCELLED},
    TaskStatus.COMPLETED: {TaskStatus.PAID},
    # Terminal states: no outgoing transitions
    TaskStatus.PAID: set(),
    TaskStatus.CANCELLED: set(),
}

MILESTONE_TRANSITIONS: dict[MilestoneStage, set[MilestoneStage]] = {
    MilestoneStage.UNSUBMITTED: {MilestoneStage.SUBMITTED},
    MilestoneStage.SUBMITTED: {MilestoneStage.APPROVED},
    MilestoneStage.APPROVED: {MilestoneStage.PAID},
    MilestoneStage.PAID: set(),
}

DISPUTE_TRANSITIONS: dict[DisputeStatus, set[DisputeStatus]] = {
    DisputeStatus.FILED: {DisputeStatus.RESOLVED},
    DisputeStatus.RESOLVED: {DisputeStatus.DISTRIBUTED, DisputeStatus.FILED},
    DisputeStatus.DISTRIBUTED: set(),
}


class Lifecycle:
    """Validates moves against one transition table.

    Pure computation: side effects (persistence, logging) belong to the
    projection handlers.
    """

    def __init__(self, name: str, transitions: dict) -> None:
        self._name = name
        self._transitions = transitions

    def validate_transition(self, current: S, target: S) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        allowed = self._transitions.get(current, set())
        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid {self._name} transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    def is_terminal(self, state: S) -> bool:
        """Check if a state is terminal (no further transitions)."""
        return not self._transitions.get(state)

    def valid_transitions(self, state: S) -> set:
        """Return the set of valid target states from the given state."""
        return set(self._transitions.get(state, set()))


TASK_LIFECYCLE = Lifecycle("task", TASK_TRANSITIONS)
MILESTONE_LIFECYCLE = Lifecycle("milestone", MILESTONE_TRANSITIONS)
DISPUTE_LIFECYCLE = Lifecycle("dispute", DISPUTE_TRANSITIONS)
