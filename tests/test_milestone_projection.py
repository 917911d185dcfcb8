"""Tests for the milestone projection — proves per-milestone flags never regress."""

import pytest

from taskgraph.errors import DuplicateCreationError, InvalidTransitionError, MissingParentError
from taskgraph.identity import IdentityResolver
from taskgraph.models.events import ContractKind, EventName
from taskgraph.models.task import MilestoneStage, TaskStatus, milestone_key
from taskgraph.persistence.entity_store import EntityKind, EntityStore
from taskgraph.projection.tasks import MilestoneTaskProjection


CREATOR = "0x" + "c0" * 20
WORKER = "0x" + "ab" * 20
K = ContractKind.MILESTONE_TASK


@pytest.fixture
def projection(store: EntityStore) -> MilestoneTaskProjection:
    return MilestoneTaskProjection(store, IdentityResolver(store))


@pytest.fixture
def started(projection, make_event) -> MilestoneTaskProjection:
    """Task 1 with milestones 0 and 1, worker assigned."""
    projection.handle_task_created(make_event(K, "TaskCreated", taskId=1, creator=CREATOR, title="App"))
    projection.handle_milestone_added(make_event(
        K, "MilestoneAdded", taskId=1, milestoneIndex=0, description="Design", reward=40))
    projection.handle_milestone_added(make_event(
        K, "MilestoneAdded", taskId=1, milestoneIndex=1, description="Build", reward=60))
    projection.handle_worker_added(make_event(K, "WorkerAdded", taskId=1, worker=WORKER, amount=100))
    return projection


def _milestone(store: EntityStore, index: int = 0):
    return store.get(EntityKind.MILESTONE, milestone_key("1", index))


def _flags(store: EntityStore, index: int = 0) -> tuple:
    m = _milestone(store, index)
    return (m.work_proof.submitted, m.work_proof.approved, m.paid)


class TestHandlers:
    def test_no_whole_task_payout(self, projection) -> None:
        handlers = projection.handlers()
        assert EventName.TASK_PAID not in handlers
        assert EventName.MILESTONE_PAID in handlers
        assert EventName.TASK_COMPLETED in handlers


class TestMilestoneAdded:
    def test_milestones_listed_once(self, started, store, make_event) -> None:
        task = store.get(EntityKind.TASK, "milestone:1")
        assert task.milestones == [milestone_key("1", 0), milestone_key("1", 1)]
        assert _milestone(store, 1).reward == 60
        assert _milestone(store, 1).stage == MilestoneStage.UNSUBMITTED

    def test_duplicate_index_rejected(self, started, store, make_event) -> None:
        with pytest.raises(DuplicateCreationError):
            started.handle_milestone_added(make_event(
                K, "MilestoneAdded", taskId=1, milestoneIndex=0, description="again", reward=1))
        assert _milestone(store, 0).description == "Design"

    def test_milestone_for_missing_task(self, projection, store, make_event) -> None:
        with pytest.raises(MissingParentError):
            projection.handle_milestone_added(make_event(
                K, "MilestoneAdded", taskId=5, milestoneIndex=0, reward=1))
        assert store.count(EntityKind.MILESTONE) == 0


class TestMilestoneLifecycle:
    def test_submit_approve_pay(self, started, store, make_event) -> None:
        started.handle_proof_submitted(make_event(
            K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=0, proof="figma"))
        assert _flags(store) == (True, False, False)
        started.handle_proof_approved(make_event(K, "MilestoneApproved", taskId=1, milestoneIndex=0))
        assert _flags(store) == (True, True, False)
        paid = make_event(K, "MilestonePaid", taskId=1, milestoneIndex=0, amount=40)
        started.handle_milestone_paid(paid)
        assert _flags(store) == (True, True, True)
        assert _milestone(store).completed_at == paid.block_timestamp
        assert _flags(store, 1) == (False, False, False)

    def test_resubmission_before_approval_replaces_proof(self, started, store, make_event) -> None:
        started.handle_proof_submitted(make_event(
            K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=0, proof="v1"))
        started.handle_proof_submitted(make_event(
            K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=0, proof="v2"))
        assert _milestone(store).work_proof.proof == "v2"

    def test_approving_paid_milestone_rejected(self, started, store, make_event) -> None:
        started.handle_proof_submitted(make_event(
            K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=0, proof="p"))
        started.handle_proof_approved(make_event(K, "MilestoneApproved", taskId=1, milestoneIndex=0))
        started.handle_milestone_paid(make_event(K, "MilestonePaid", taskId=1, milestoneIndex=0, amount=40))
        with pytest.raises(InvalidTransitionError):
            started.handle_proof_approved(make_event(K, "MilestoneApproved", taskId=1, milestoneIndex=0))
        assert _flags(store) == (True, True, True)

    def test_proof_after_approval_rejected(self, started, store, make_event) -> None:
        started.handle_proof_submitted(make_event(
            K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=0, proof="final"))
        started.handle_proof_approved(make_event(K, "MilestoneApproved", taskId=1, milestoneIndex=0))
        with pytest.raises(InvalidTransitionError):
            started.handle_proof_submitted(make_event(
                K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=0, proof="late"))
        assert _milestone(store).work_proof.proof == "final"

    def test_pay_without_approval_rejected(self, started, store, make_event) -> None:
        started.handle_proof_submitted(make_event(
            K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=0, proof="p"))
        with pytest.raises(InvalidTransitionError):
            started.handle_milestone_paid(make_event(K, "MilestonePaid", taskId=1, milestoneIndex=0, amount=1))
        assert _flags(store) == (True, False, False)

    def test_unknown_milestone(self, started, make_event) -> None:
        with pytest.raises(MissingParentError):
            started.handle_proof_approved(make_event(K, "MilestoneApproved", taskId=1, milestoneIndex=7))

    def test_proof_before_worker_rejected(self, projection, store, make_event) -> None:
        projection.handle_task_created(make_event(K, "TaskCreated", taskId=1, creator=CREATOR, title="App"))
        projection.handle_milestone_added(make_event(
            K, "MilestoneAdded", taskId=1, milestoneIndex=0, reward=10))
        with pytest.raises(InvalidTransitionError):
            projection.handle_proof_submitted(make_event(
                K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=0, proof="p"))
        assert _flags(store) == (False, False, False)


class TestTaskCompleted:
    def test_completion_then_last_payment(self, started, store, make_event) -> None:
        started.handle_proof_submitted(make_event(
            K, "MilestoneProofOfWorkSubmitted", taskId=1, milestoneIndex=1, proof="p"))
        started.handle_proof_approved(make_event(K, "MilestoneApproved", taskId=1, milestoneIndex=1))
        started.handle_task_completed(make_event(K, "TaskCompleted", taskId=1))
        started.handle_milestone_paid(make_event(K, "MilestonePaid", taskId=1, milestoneIndex=1, amount=60))
        assert store.get(EntityKind.TASK, "milestone:1").status == TaskStatus.COMPLETED
        assert _milestone(store, 1).paid is True
