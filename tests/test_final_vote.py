"""Tests for the final confirmation round."""

import pytest

from stakeit.errors import DuplicateVote, InvalidState, NotVoting, SelfVote
from stakeit.models.goal import FinalVoteStatus, GoalStatus, VerificationType
from stakeit.services.final_vote import cast_final_vote
from stakeit.services.lifecycle import activate_goal, create_goal, get_frozen_balance
from stakeit.services.settlement import settle_period
from stakeit.services.verification import submit_vote
from stakeit.store.memory import InMemoryGoalStore
from tests.factories import final_ballot, goal_request, seeded_referees, vote
from tests.stores import FlakyStore


@pytest.fixture
def voting_goal(store, make_active_goal):
    """Manual goal with two referees, all three periods decided (2 pass, 1 fail)."""

    async def _make(**overrides):
        params = {"duration": 3, "referees": seeded_referees("alice", "bob")}
        params.update(overrides)
        goal = await make_active_goal(**params)
        for week, passed in [(1, True), (2, False), (3, True)]:
            await submit_vote(store, goal.id, vote("alice", week, passed))
            await submit_vote(store, goal.id, vote("bob", week, passed))
        return await store.get_goal(goal.id)

    return _make


class TestCastFinalVote:
    async def test_periods_lead_to_voting(self, voting_goal):
        goal = await voting_goal()

        assert goal.weeks_passed == 2
        assert goal.weeks_failed == 1
        assert goal.final_vote_status == FinalVoteStatus.VOTING
        assert goal.status == GoalStatus.ACTIVE

    async def test_majority_pass_completes_goal(self, store, notifier, voting_goal):
        goal = await voting_goal()

        first = await cast_final_vote(store, goal.id, final_ballot("alice"), notifier)
        assert first.finalized is False
        assert first.yes_votes == 1

        second = await cast_final_vote(store, goal.id, final_ballot("bob"), notifier)

        assert second.finalized is True
        assert second.passed is True
        assert second.refund_approved is True
        assert second.penalty_applied is None

        stored = await store.get_goal(goal.id)
        assert stored.status == GoalStatus.COMPLETED
        assert stored.final_vote_status == FinalVoteStatus.FINALIZED
        assert await store.list_final_ballots(goal.id) == {}

    async def test_majority_fail_applies_penalty(self, store, voting_goal):
        goal = await voting_goal(penalty_type="charity_donation", charity_choice="Red Cross")

        await cast_final_vote(store, goal.id, final_ballot("alice", False))
        result = await cast_final_vote(store, goal.id, final_ballot("bob", False))

        assert result.finalized is True
        assert result.passed is False
        assert result.refund_approved is False
        assert result.penalty_applied == "฿1,000 will be donated to Red Cross"
        assert (await store.get_goal(goal.id)).status == GoalStatus.FAILED

    async def test_delayed_refund_freezes_stake(self, store, voting_goal):
        goal = await voting_goal(penalty_type="delayed_refund", hold_months=3)

        await cast_final_vote(store, goal.id, final_ballot("alice", False))
        await cast_final_vote(store, goal.id, final_ballot("bob", False))

        stored = await store.get_goal(goal.id)
        assert stored.status == GoalStatus.FAILED
        assert stored.frozen_until is not None

    async def test_split_ballots_stay_open(self, store, voting_goal):
        goal = await voting_goal()

        await cast_final_vote(store, goal.id, final_ballot("alice", True))
        result = await cast_final_vote(store, goal.id, final_ballot("bob", False))

        assert result.finalized is False
        assert (await store.get_goal(goal.id)).final_vote_status == FinalVoteStatus.VOTING

    async def test_duplicate_ballot(self, store, voting_goal):
        goal = await voting_goal()
        await cast_final_vote(store, goal.id, final_ballot("alice"))

        with pytest.raises(DuplicateVote):
            await cast_final_vote(store, goal.id, final_ballot("alice", False))

        assert await store.list_final_ballots(goal.id) != {}

    async def test_owner_cannot_vote(self, store, voting_goal):
        goal = await voting_goal()

        with pytest.raises(SelfVote):
            await cast_final_vote(store, goal.id, final_ballot("owner"))

    async def test_not_voting_before_periods_done(self, store, make_active_goal):
        goal = await make_active_goal(referees=seeded_referees("alice"))

        with pytest.raises(NotVoting):
            await cast_final_vote(store, goal.id, final_ballot("alice"))

    async def test_not_voting_after_finalized(self, store, voting_goal):
        goal = await voting_goal()
        await cast_final_vote(store, goal.id, final_ballot("alice"))
        await cast_final_vote(store, goal.id, final_ballot("bob"))

        with pytest.raises(NotVoting):
            await cast_final_vote(store, goal.id, final_ballot("carol"))

    async def test_automatic_goal_has_no_final_vote(self, store, make_active_goal):
        goal = await make_active_goal(
            goal_name="Github streak", duration=1,
            verification_type=VerificationType.ZKTLS,
        )
        await settle_period(store, goal.id, 1, True)

        with pytest.raises(InvalidState):
            await cast_final_vote(store, goal.id, final_ballot("alice"))


class RoundClosingStore(InMemoryGoalStore):
    """Another ballot finalizes the round right before ours is inserted."""

    close_on_insert = False

    async def insert_final_ballot(self, goal_id, referee_id, vote):
        if self.close_on_insert:
            await self.update_goal(goal_id, {
                "status": GoalStatus.COMPLETED,
                "final_vote_status": FinalVoteStatus.FINALIZED,
            })
        await super().insert_final_ballot(goal_id, referee_id, vote)


async def open_final_round(store, gateway, **overrides):
    params = {"duration": 1, "referees": seeded_referees("alice", "bob")}
    params.update(overrides)
    created = await create_goal(store, gateway, goal_request(**params))
    await activate_goal(store, created.id)
    await settle_period(store, created.id, 1, True)
    return created.id


class TestFinalRoundRaces:
    async def test_ballot_after_round_closed_is_cleared(self, gateway):
        store = RoundClosingStore()
        goal_id = await open_final_round(store, gateway)
        store.close_on_insert = True

        with pytest.raises(NotVoting):
            await cast_final_vote(store, goal_id, final_ballot("alice"))

        assert await store.list_final_ballots(goal_id) == {}
        assert (await store.get_goal(goal_id)).status == GoalStatus.COMPLETED

    async def test_frozen_until_lands_with_failed_status(self, gateway):
        store = FlakyStore()
        goal_id = await open_final_round(
            store, gateway, penalty_type="delayed_refund", hold_months=3
        )
        store.fail_updates = True

        await cast_final_vote(store, goal_id, final_ballot("alice", False))
        result = await cast_final_vote(store, goal_id, final_ballot("bob", False))

        assert result.finalized is True
        stored = await store.get_goal(goal_id)
        assert stored.status == GoalStatus.FAILED
        assert stored.frozen_until is not None
        assert (await get_frozen_balance(store, "owner")).total_frozen == 1000
