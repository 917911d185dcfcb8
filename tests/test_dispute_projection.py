"""Tests for the dispute projection — proves vote rounds and the rejection reset."""

import pytest

from taskgraph.errors import DuplicateCreationError, InvalidTransitionError, MissingParentError
from taskgraph.identity import IdentityResolver
from taskgraph.models.dispute import DisputeStatus, vote_key
from taskgraph.models.events import ContractKind
from taskgraph.persistence.entity_store import EntityKind, EntityStore
from taskgraph.projection.disputes import DisputeProjection


WORKER = "0x" + "ab" * 20
CREATOR = "0x" + "c0" * 20
TASK_CONTRACT = "0x" + "b1" * 20
ADMINS = ["0x" + f"{n:02x}" * 20 for n in (0xa1, 0xa2, 0xa3)]
K = ContractKind.DISPUTE_RESOLVER


@pytest.fixture
def projection(store: EntityStore) -> DisputeProjection:
    return DisputeProjection(store, IdentityResolver(store))


@pytest.fixture
def filed(projection, make_event) -> DisputeProjection:
    projection.handle_dispute_filed(make_event(
        K, "DisputeFiled", disputeId=7, taskId=1, taskContract=TASK_CONTRACT.upper().replace("0X", "0x"),
        worker=WORKER, taskCreator=CREATOR, rewardAmount=100, proof="ipfs://proof",
    ))
    return projection


def _dispute(store: EntityStore):
    return store.get(EntityKind.DISPUTE, "7")


def _vote(projection, make_event, admin: str, share: int) -> None:
    projection.handle_admin_voted(make_event(K, "AdminVoted", disputeId=7, admin=admin, workerShare=share))


def _resolve(projection, make_event, share: int = 60) -> None:
    projection.handle_dispute_resolved(make_event(K, "DisputeResolved", disputeId=7, workerShare=share))


class TestDisputeFiled:
    def test_filed_state(self, filed, store) -> None:
        dispute = _dispute(store)
        assert dispute.status == DisputeStatus.FILED
        assert dispute.task_contract == TASK_CONTRACT
        assert dispute.reward_amount == 100
        assert dispute.votes == []
        assert dispute.worker_approved is False
        assert store.contains(EntityKind.USER, WORKER)
        assert store.contains(EntityKind.USER, CREATOR)

    def test_duplicate_filing_rejected(self, filed, store, make_event) -> None:
        _vote(filed, make_event, ADMINS[0], 50)
        with pytest.raises(DuplicateCreationError):
            filed.handle_dispute_filed(make_event(
                K, "DisputeFiled", disputeId=7, taskId=2, taskContract=TASK_CONTRACT,
                worker=WORKER, taskCreator=CREATOR, rewardAmount=1,
            ))
        assert _dispute(store).task_id == "1"
        assert len(_dispute(store).votes) == 1


class TestVoting:
    def test_votes_recorded_in_order(self, filed, store, make_event) -> None:
        for admin, share in zip(ADMINS, (60, 60, 70)):
            _vote(filed, make_event, admin, share)
        keys = [vote_key("7", admin) for admin in ADMINS]
        assert _dispute(store).votes == keys
        assert store.get(EntityKind.ADMIN_VOTE, keys[2]).worker_share == 70
        assert store.contains(EntityKind.ADMIN, ADMINS[0])

    def test_second_vote_same_round_skipped(self, filed, store, make_event) -> None:
        _vote(filed, make_event, ADMINS[0], 60)
        with pytest.raises(DuplicateCreationError):
            _vote(filed, make_event, ADMINS[0], 90)
        assert _dispute(store).votes == [vote_key("7", ADMINS[0])]
        assert store.get(EntityKind.ADMIN_VOTE, vote_key("7", ADMINS[0])).worker_share == 60

    def test_vote_on_unknown_dispute(self, projection, store, make_event) -> None:
        with pytest.raises(MissingParentError):
            _vote(projection, make_event, ADMINS[0], 60)
        assert store.count(EntityKind.ADMIN_VOTE) == 0

    def test_vote_after_resolution_rejected(self, filed, store, make_event) -> None:
        _resolve(filed, make_event)
        with pytest.raises(InvalidTransitionError):
            _vote(filed, make_event, ADMINS[0], 60)

    def test_revote_after_rejection_replaces_stale_vote(self, filed, store, make_event) -> None:
        _vote(filed, make_event, ADMINS[0], 60)
        _resolve(filed, make_event)
        filed.handle_proposal_rejected(make_event(K, "ProposalRejected", disputeId=7))
        _vote(filed, make_event, ADMINS[0], 80)
        assert _dispute(store).votes == [vote_key("7", ADMINS[0])]
        assert store.get(EntityKind.ADMIN_VOTE, vote_key("7", ADMINS[0])).worker_share == 80


class TestResolution:
    def test_resolve_sets_share(self, filed, store, make_event) -> None:
        event = make_event(K, "DisputeResolved", disputeId=7, workerShare=65)
        filed.handle_dispute_resolved(event)
        dispute = _dispute(store)
        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.worker_share == 65
        assert dispute.resolved_at == event.block_timestamp

    def test_approvals_need_resolution(self, filed, store, make_event) -> None:
        with pytest.raises(InvalidTransitionError):
            filed.handle_approved_by_worker(make_event(K, "ProposalApprovedByWorker", disputeId=7))
        assert _dispute(store).worker_approved is False

    def test_distribution(self, filed, store, make_event) -> None:
        _resolve(filed, make_event)
        filed.handle_approved_by_worker(make_event(K, "ProposalApprovedByWorker", disputeId=7))
        filed.handle_approved_by_creator(make_event(K, "ProposalApprovedByCreator", disputeId=7))
        filed.handle_funds_distributed(make_event(K, "FundsDistributed", disputeId=7))
        dispute = _dispute(store)
        assert dispute.status == DisputeStatus.DISTRIBUTED
        assert dispute.worker_approved and dispute.creator_approved
        assert dispute.distributed_at is not None

    def test_no_rejection_after_distribution(self, filed, store, make_event) -> None:
        _resolve(filed, make_event)
        filed.handle_funds_distributed(make_event(K, "FundsDistributed", disputeId=7))
        with pytest.raises(InvalidTransitionError):
            filed.handle_proposal_rejected(make_event(K, "ProposalRejected", disputeId=7))
        assert _dispute(store).status == DisputeStatus.DISTRIBUTED


class TestRejection:
    @pytest.mark.parametrize("vote_count", [0, 1, 3])
    def test_reset_regardless_of_vote_count(self, filed, store, make_event, vote_count: int) -> None:
        for admin in ADMINS[:vote_count]:
            _vote(filed, make_event, admin, 50)
        _resolve(filed, make_event)
        filed.handle_approved_by_worker(make_event(K, "ProposalApprovedByWorker", disputeId=7))
        filed.handle_approved_by_creator(make_event(K, "ProposalApprovedByCreator", disputeId=7))
        filed.handle_proposal_rejected(make_event(K, "ProposalRejected", disputeId=7))
        dispute = _dispute(store)
        assert dispute.status == DisputeStatus.FILED
        assert dispute.worker_approved is False
        assert dispute.creator_approved is False
        assert dispute.votes == []

    def test_rejection_replay_skipped(self, filed, store, make_event) -> None:
        _resolve(filed, make_event)
        rejection = make_event(K, "ProposalRejected", disputeId=7)
        filed.handle_proposal_rejected(rejection)
        _vote(filed, make_event, ADMINS[0], 10)
        with pytest.raises(InvalidTransitionError):
            filed.handle_proposal_rejected(rejection)
        assert _dispute(store).votes == [vote_key("7", ADMINS[0])]

    def test_second_round_can_resolve_again(self, filed, store, make_event) -> None:
        _resolve(filed, make_event, 60)
        filed.handle_proposal_rejected(make_event(K, "ProposalRejected", disputeId=7))
        _resolve(filed, make_event, 75)
        assert _dispute(store).status == DisputeStatus.RESOLVED
        assert _dispute(store).worker_share == 75


class TestAdminStake:
    def test_stake_and_withdraw(self, projection, store, make_event) -> None:
        projection.handle_admin_staked(make_event(K, "AdminStaked", admin=ADMINS[0], amount=1000))
        admin = store.get(EntityKind.ADMIN, ADMINS[0])
        assert admin.is_active and admin.stake_amount == 1000

        projection.handle_admin_withdrawn(make_event(K, "AdminWithdrawn", admin=ADMINS[0], amount=1000))
        admin = store.get(EntityKind.ADMIN, ADMINS[0])
        assert admin.is_active is False
        assert admin.stake_amount == 0

    def test_restake_overwrites(self, projection, store, make_event) -> None:
        event = make_event(K, "AdminStaked", admin=ADMINS[0], amount=500)
        projection.handle_admin_staked(event)
        projection.handle_admin_staked(event)
        assert store.get(EntityKind.ADMIN, ADMINS[0]).stake_amount == 500

    def test_withdraw_unknown_admin(self, projection, store, make_event) -> None:
        with pytest.raises(MissingParentError):
            projection.handle_admin_withdrawn(make_event(K, "AdminWithdrawn", admin=ADMINS[1], amount=1))
        assert store.count(EntityKind.ADMIN) == 0

    def test_voting_admin_created_inactive(self, filed, store, make_event) -> None:
        _vote(filed, make_event, ADMINS[2], 50)
        admin = store.get(EntityKind.ADMIN, ADMINS[2])
        assert admin.is_active is False
