"""Tests for the bidding-task projection — proves bid set semantics and lifecycle guards."""

import pytest

from taskgraph.errors import DuplicateCreationError, InvalidTransitionError, MissingParentError
from taskgraph.identity import IdentityResolver
from taskgraph.models.events import ContractKind
from taskgraph.models.task import TaskKind, TaskStatus, bid_key
from taskgraph.models.user import ZERO_ADDRESS
from taskgraph.persistence.entity_store import EntityKind, EntityStore
from taskgraph.projection.tasks import BiddingTaskProjection


CREATOR = "0x" + "c0" * 20
BIDDER_A = "0x" + "aa" * 20
BIDDER_B = "0x" + "bb" * 20
K = ContractKind.BIDDING_TASK


@pytest.fixture
def projection(store: EntityStore) -> BiddingTaskProjection:
    return BiddingTaskProjection(store, IdentityResolver(store))


def _task(store: EntityStore, task_id: str = "1"):
    return store.get(EntityKind.TASK, f"{TaskKind.BIDDING.value}:{task_id}")


def _create(projection, make_event, task_id: int = 1) -> None:
    projection.handle_task_created(make_event(
        K, "TaskCreated", taskId=task_id, creator=CREATOR,
        title="Logo", description="Design a logo", deadline=2_000_000_000,
    ))


def _bid(projection, make_event, bidder: str = BIDDER_A, amount: int = 100) -> None:
    projection.handle_bid_submitted(make_event(
        K, "BidSubmitted", taskId=1, bidder=bidder, amount=amount,
        estimatedTime=3600, description="I can do it",
    ))


class TestTaskCreated:
    def test_creates_open_task_with_sentinel_worker(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        task = _task(store)
        assert task.status == TaskStatus.OPEN
        assert task.worker == ZERO_ADDRESS
        assert task.reward == 0
        assert task.bids == []
        assert task.kind == TaskKind.BIDDING
        assert task.deadline == 2_000_000_000

    def test_creates_creator_and_zero_users(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        assert store.contains(EntityKind.USER, CREATOR)
        assert store.contains(EntityKind.USER, ZERO_ADDRESS)

    def test_duplicate_creation_keeps_progressed_task(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        _bid(projection, make_event)
        projection.handle_worker_added(make_event(K, "WorkerAdded", taskId=1, worker=BIDDER_A, amount=100))
        with pytest.raises(DuplicateCreationError):
            _create(projection, make_event)
        task = _task(store)
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.worker == BIDDER_A


class TestBidSubmitted:
    def test_bid_recorded_and_listed(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        _bid(projection, make_event)
        key = bid_key("1", BIDDER_A)
        bid = store.get(EntityKind.BID, key)
        assert bid.amount == 100
        assert bid.estimated_time == 3600
        assert _task(store).bids == [key]
        assert store.contains(EntityKind.USER, BIDDER_A)

    def test_rebid_overwrites_without_second_entry(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        _bid(projection, make_event, amount=100)
        _bid(projection, make_event, amount=150)
        assert _task(store).bids == [bid_key("1", BIDDER_A)]
        assert store.get(EntityKind.BID, bid_key("1", BIDDER_A)).amount == 150
        assert store.count(EntityKind.BID) == 1

    def test_bids_keep_arrival_order(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        _bid(projection, make_event, bidder=BIDDER_B)
        _bid(projection, make_event, bidder=BIDDER_A)
        _bid(projection, make_event, bidder=BIDDER_B, amount=90)
        assert _task(store).bids == [bid_key("1", BIDDER_B), bid_key("1", BIDDER_A)]

    def test_bid_on_unknown_task_stores_nothing(self, projection, store, make_event) -> None:
        with pytest.raises(MissingParentError):
            _bid(projection, make_event)
        assert store.count(EntityKind.BID) == 0
        assert store.count(EntityKind.TASK) == 0

    def test_bid_after_assignment_rejected(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        _bid(projection, make_event)
        projection.handle_worker_added(make_event(K, "WorkerAdded", taskId=1, worker=BIDDER_A, amount=100))
        with pytest.raises(InvalidTransitionError):
            _bid(projection, make_event, bidder=BIDDER_B)
        assert _task(store).bids == [bid_key("1", BIDDER_A)]


class TestWorkerAdded:
    def test_reward_comes_from_winning_bid(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        _bid(projection, make_event, amount=150)
        projection.handle_worker_added(make_event(K, "WorkerAdded", taskId=1, worker=BIDDER_A, amount=999))
        task = _task(store)
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.worker == BIDDER_A
        assert task.reward == 150

    def test_reward_falls_back_to_event_amount(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        projection.handle_worker_added(make_event(K, "WorkerAdded", taskId=1, worker=BIDDER_B, amount=80))
        assert _task(store).reward == 80

    def test_replay_is_noop(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        event = make_event(K, "WorkerAdded", taskId=1, worker=BIDDER_A, amount=100)
        projection.handle_worker_added(event)
        before = _task(store)
        projection.handle_worker_added(event)
        assert _task(store) == before

    def test_checksummed_worker_is_normalised(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        projection.handle_worker_added(make_event(
            K, "WorkerAdded", taskId=1, worker=BIDDER_A.upper().replace("0X", "0x"), amount=1,
        ))
        assert _task(store).worker == BIDDER_A


class TestCompletionAndPayment:
    def test_approval_before_assignment_is_rejected(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        with pytest.raises(InvalidTransitionError):
            projection.handle_proof_approved(make_event(K, "ProofOfWorkApproved", taskId=1))
        assert _task(store).status == TaskStatus.OPEN

    def test_proof_requires_in_progress(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        with pytest.raises(InvalidTransitionError):
            projection.handle_proof_submitted(make_event(K, "ProofOfWorkSubmitted", taskId=1, proof="x"))
        assert _task(store).proof_of_work == ""

    def test_paid_overwrites_reward(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        projection.handle_worker_added(make_event(K, "WorkerAdded", taskId=1, worker=BIDDER_A, amount=100))
        projection.handle_proof_submitted(make_event(K, "ProofOfWorkSubmitted", taskId=1, proof="ipfs://done"))
        projection.handle_proof_approved(make_event(K, "ProofOfWorkApproved", taskId=1))
        projection.handle_task_paid(make_event(K, "TaskPaid", taskId=1, amount=120))
        task = _task(store)
        assert task.status == TaskStatus.PAID
        assert task.reward == 120
        assert task.proof_of_work == "ipfs://done"

    def test_cancel_after_completion_rejected(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        projection.handle_worker_added(make_event(K, "WorkerAdded", taskId=1, worker=BIDDER_A, amount=100))
        projection.handle_proof_approved(make_event(K, "ProofOfWorkApproved", taskId=1))
        with pytest.raises(InvalidTransitionError):
            projection.handle_task_cancelled(make_event(K, "TaskCancelled", taskId=1))
        assert _task(store).status == TaskStatus.COMPLETED

    def test_cancel_open_task(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        projection.handle_task_cancelled(make_event(K, "TaskCancelled", taskId=1))
        assert _task(store).status == TaskStatus.CANCELLED


class TestRewardAndDeadline:
    def test_reward_increase_overwrites(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        event = make_event(K, "RewardIncreased", taskId=1, amount=500)
        projection.handle_reward_increased(event)
        projection.handle_reward_increased(event)
        assert _task(store).reward == 500

    def test_deadline_change(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        projection.handle_deadline_changed(make_event(K, "DeadlineChanged", taskId=1, newDeadline=42))
        assert _task(store).deadline == 42

    def test_no_changes_once_cancelled(self, projection, store, make_event) -> None:
        _create(projection, make_event)
        projection.handle_task_cancelled(make_event(K, "TaskCancelled", taskId=1))
        with pytest.raises(InvalidTransitionError):
            projection.handle_reward_increased(make_event(K, "RewardIncreased", taskId=1, amount=5))
        with pytest.raises(InvalidTransitionError):
            projection.handle_deadline_changed(make_event(K, "DeadlineChanged", taskId=1, newDeadline=5))
        assert _task(store).reward == 0
