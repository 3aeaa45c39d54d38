"""Tests for referee votes on manually verified goals."""

import asyncio

import pytest

from stakeit.errors import (
    ConcurrencyConflict, DuplicateVote, GoalNotActive, InvalidState, NotFound,
    SelfVote, ValidationError
)
from stakeit.models.goal import FinalVoteStatus, GoalStatus, VerificationType
from stakeit.services.lifecycle import activate_goal, create_goal
from stakeit.services.verification import submit_vote
from tests.factories import goal_request, seeded_referees, vote
from tests.stores import FlakyStore


class TestSubmitVote:
    async def test_two_referee_majority(self, store, notifier, make_active_goal):
        goal = await make_active_goal(duration=3, referees=seeded_referees("alice", "bob"))

        first = await submit_vote(store, goal.id, vote("alice", 1), notifier)

        assert first.resolved is False
        assert first.week_status.yes_votes == 1
        assert first.week_status.total_referees == 2
        assert first.week_status.passed is None
        assert (await store.get_goal(goal.id)).weeks_passed == 0

        second = await submit_vote(store, goal.id, vote("bob", 1), notifier)

        assert second.resolved is True
        assert second.week_status.passed is True
        stored = await store.get_goal(goal.id)
        assert stored.weeks_passed == 1
        assert stored.current_week == 2

        weekly = await store.get_weekly_result(goal.id, 1)
        assert weekly.passed is True
        assert weekly.yes_votes == 2
        assert weekly.finalized_at is not None

    async def test_no_majority_fails_period(self, store, make_active_goal):
        goal = await make_active_goal(referees=seeded_referees("alice", "bob", "carol"))

        await submit_vote(store, goal.id, vote("alice", 1, False))
        result = await submit_vote(store, goal.id, vote("bob", 1, False))

        assert result.resolved is True
        assert result.week_status.passed is False
        assert (await store.get_goal(goal.id)).weeks_failed == 1

    async def test_duplicate_vote_leaves_counts(self, store, make_active_goal):
        goal = await make_active_goal(referees=seeded_referees("alice", "bob", "carol"))
        await submit_vote(store, goal.id, vote("alice", 1))
        before = await store.get_weekly_result(goal.id, 1)

        with pytest.raises(DuplicateVote):
            await submit_vote(store, goal.id, vote("alice", 1, False))

        after = await store.get_weekly_result(goal.id, 1)
        assert (after.yes_votes, after.no_votes) == (before.yes_votes, before.no_votes)
        assert len(await store.list_votes(goal.id, 1)) == 1

    async def test_same_referee_may_vote_each_week(self, store, make_active_goal):
        goal = await make_active_goal(referees=seeded_referees("alice", "bob", "carol"))

        await submit_vote(store, goal.id, vote("alice", 1))
        await submit_vote(store, goal.id, vote("alice", 2))

        assert len(await store.list_votes(goal.id)) == 2

    async def test_owner_cannot_vote(self, store, make_active_goal):
        goal = await make_active_goal()

        with pytest.raises(SelfVote):
            await submit_vote(store, goal.id, vote("owner", 1))

    async def test_goal_must_be_active(self, store, gateway):
        created = await create_goal(store, gateway, goal_request())

        with pytest.raises(GoalNotActive):
            await submit_vote(store, created.id, vote("alice", 1))

    async def test_unknown_goal(self, store):
        with pytest.raises(NotFound):
            await submit_vote(store, "missing", vote("alice", 1))

    async def test_week_out_of_range(self, store, make_active_goal):
        goal = await make_active_goal(duration=2)

        with pytest.raises(ValidationError):
            await submit_vote(store, goal.id, vote("alice", 3))

    async def test_automatic_goal_rejects_votes(self, store, make_active_goal):
        goal = await make_active_goal(
            goal_name="Duolingo Spanish", verification_type=VerificationType.ZKTLS
        )

        with pytest.raises(InvalidState):
            await submit_vote(store, goal.id, vote("alice", 1))

    async def test_voter_becomes_referee(self, store, make_active_goal):
        goal = await make_active_goal(referees=seeded_referees("alice"))

        await submit_vote(store, goal.id, vote("bob", 1))

        user_ids = {r.user_id for r in await store.list_referees(goal.id)}
        assert user_ids == {"alice", "bob"}

    async def test_zero_referees_first_vote_decides(self, store, make_active_goal):
        # Kept deliberately: a goal without referees has no quorum floor
        goal = await make_active_goal(duration=2)

        result = await submit_vote(store, goal.id, vote("alice", 1))

        assert result.resolved is True
        assert result.week_status.total_referees == 1
        assert (await store.get_goal(goal.id)).weeks_passed == 1

    async def test_late_vote_does_not_resettle(self, store, make_active_goal):
        goal = await make_active_goal(referees=seeded_referees("alice", "bob", "carol"))
        await submit_vote(store, goal.id, vote("alice", 1))
        await submit_vote(store, goal.id, vote("bob", 1))

        late = await submit_vote(store, goal.id, vote("carol", 1))

        assert late.resolved is False
        assert late.week_status.yes_votes == 3
        stored = await store.get_goal(goal.id)
        assert stored.weeks_passed == 1
        assert stored.weeks_failed == 0

    async def test_concurrent_deciding_votes_settle_once(self, store, make_active_goal):
        goal = await make_active_goal(referees=seeded_referees("alice", "bob", "carol"))

        await asyncio.gather(
            submit_vote(store, goal.id, vote("alice", 1)),
            submit_vote(store, goal.id, vote("bob", 1)),
            submit_vote(store, goal.id, vote("carol", 1)),
        )

        stored = await store.get_goal(goal.id)
        assert stored.periods_done == 1
        assert stored.weeks_passed == 1

    async def test_last_period_opens_final_vote(self, store, make_active_goal):
        goal = await make_active_goal(duration=1, referees=seeded_referees("alice"))

        await submit_vote(store, goal.id, vote("alice", 1))

        stored = await store.get_goal(goal.id)
        assert stored.status == GoalStatus.ACTIVE
        assert stored.final_vote_status == FinalVoteStatus.VOTING


class TestFailedSettlement:
    async def test_period_reopens_when_goal_update_fails(self, gateway, test_settings):
        store = FlakyStore()
        created = await create_goal(
            store, gateway, goal_request(referees=seeded_referees("alice", "bob", "carol"))
        )
        await activate_goal(store, created.id)
        await submit_vote(store, created.id, vote("alice", 1))
        store.lost_swaps = test_settings.settlement_max_retries

        with pytest.raises(ConcurrencyConflict):
            await submit_vote(store, created.id, vote("bob", 1))

        weekly = await store.get_weekly_result(created.id, 1)
        assert weekly.finalized_at is None
        assert weekly.passed is None

        result = await submit_vote(store, created.id, vote("carol", 1))

        assert result.resolved is True
        stored = await store.get_goal(created.id)
        assert stored.weeks_passed == 1
        assert stored.weeks_failed == 0
        assert stored.current_week == 2
