"""Tests for period settlement and optimistic goal updates."""

import asyncio

import pytest

from stakeit.config import get_settings
from stakeit.errors import ConcurrencyConflict, GoalNotActive, InvalidState, ValidationError
from stakeit.models.goal import FinalVoteStatus, GoalStatus, VerificationType
from stakeit.services.lifecycle import activate_goal, create_goal, get_frozen_balance
from stakeit.services.settlement import apply_goal_update, settle_period
from stakeit.store.memory import InMemoryGoalStore
from tests.factories import goal_request
from tests.stores import FlakyStore


class ConflictingStore(InMemoryGoalStore):
    """Lets another writer bump the goal right before our next CAS."""

    def __init__(self, conflicts: int):
        super().__init__()
        self.conflicts = conflicts
        self.cas_attempts = 0

    async def update_goal_if_version(self, goal_id, expected_version, updates):
        self.cas_attempts += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            current = await self.get_goal(goal_id)
            await super().update_goal_if_version(
                goal_id, current.version, {"weeks_passed": current.weeks_passed + 1}
            )
        return await super().update_goal_if_version(goal_id, expected_version, updates)


class TestSettlePeriod:
    async def test_passed_period_advances(self, store, notifier, make_active_goal):
        goal = await make_active_goal(duration=3)

        outcome = await settle_period(store, goal.id, 1, True, notifier)

        assert outcome.run_complete is False
        assert outcome.goal.weeks_passed == 1
        assert outcome.goal.weeks_failed == 0
        assert outcome.goal.current_week == 2
        assert outcome.goal.status == GoalStatus.ACTIVE

    async def test_current_week_never_exceeds_duration(self, store, make_active_goal):
        goal = await make_active_goal(duration=3)

        outcome = await settle_period(store, goal.id, 3, False)

        assert outcome.goal.current_week == 3
        assert outcome.goal.weeks_failed == 1

    async def test_counters_are_monotonic(self, store, make_active_goal):
        goal = await make_active_goal(duration=4)
        seen = []

        for week, passed in [(1, True), (2, False), (3, True)]:
            outcome = await settle_period(store, goal.id, week, passed)
            seen.append((outcome.goal.weeks_passed, outcome.goal.weeks_failed))

        assert seen == [(1, 0), (1, 1), (2, 1)]

    async def test_manual_goal_opens_final_vote(self, store, notifier, make_active_goal):
        goal = await make_active_goal(duration=2)

        await settle_period(store, goal.id, 1, True, notifier)
        outcome = await settle_period(store, goal.id, 2, False, notifier)

        assert outcome.run_complete is True
        assert outcome.final_vote_opened is True
        assert outcome.disposition is None
        assert outcome.goal.status == GoalStatus.ACTIVE
        assert outcome.goal.final_vote_status == FinalVoteStatus.VOTING

    async def test_automatic_goal_completes_on_majority(self, store, notifier, make_active_goal):
        goal = await make_active_goal(
            goal_name="Duolingo daily", duration=3,
            verification_type=VerificationType.ZKTLS,
        )

        for week, passed in [(1, True), (2, False), (3, True)]:
            outcome = await settle_period(store, goal.id, week, passed, notifier)

        assert outcome.goal.status == GoalStatus.COMPLETED
        assert outcome.goal.final_vote_status == FinalVoteStatus.FINALIZED
        assert outcome.disposition.refund_approved is True

    async def test_automatic_goal_fails_without_majority(self, store, make_active_goal):
        goal = await make_active_goal(
            goal_name="Github commits", duration=2,
            verification_type=VerificationType.ZKTLS,
            penalty_type="delayed_refund", hold_months=3,
        )

        await settle_period(store, goal.id, 1, True)
        outcome = await settle_period(store, goal.id, 2, False)

        assert outcome.goal.status == GoalStatus.FAILED
        assert outcome.disposition.refund_approved is False
        stored = await store.get_goal(goal.id)
        assert stored.frozen_until is not None

    async def test_rejects_inactive_goal(self, store, gateway):
        created = await create_goal(store, gateway, goal_request())

        with pytest.raises(GoalNotActive):
            await settle_period(store, created.id, 1, True)

    async def test_rejects_week_out_of_range(self, store, make_active_goal):
        goal = await make_active_goal(duration=2)

        with pytest.raises(ValidationError):
            await settle_period(store, goal.id, 3, True)
        with pytest.raises(ValidationError):
            await settle_period(store, goal.id, 0, True)

    async def test_rejects_when_all_periods_decided(self, store, make_active_goal):
        goal = await make_active_goal(duration=1)
        await settle_period(store, goal.id, 1, True)

        with pytest.raises(InvalidState):
            await settle_period(store, goal.id, 1, True)

    async def test_publishes_events(self, store, notifier, make_active_goal):
        goal = await make_active_goal(duration=1)

        await settle_period(store, goal.id, 1, True, notifier)

        kinds = []
        while notifier.pending:
            kinds.append(notifier._queue.get_nowait().kind)
        assert kinds == ["period_settled", "final_vote_opened"]

    async def test_concurrent_settlements_sum(self, store, make_active_goal):
        goal = await make_active_goal(duration=5)

        await asyncio.gather(
            settle_period(store, goal.id, 1, True),
            settle_period(store, goal.id, 2, True),
            settle_period(store, goal.id, 3, False),
        )

        stored = await store.get_goal(goal.id)
        assert stored.weeks_passed == 2
        assert stored.weeks_failed == 1


class TestApplyGoalUpdate:
    async def test_retries_after_conflict(self, gateway):
        store = ConflictingStore(conflicts=0)
        created = await create_goal(store, gateway, goal_request(duration=5))
        await activate_goal(store, created.id)
        store.conflicts = 2
        store.cas_attempts = 0

        outcome = await settle_period(store, created.id, 1, False)

        # Two interleaved writers each added a pass; our failure still lands
        assert store.cas_attempts == 3
        assert outcome.goal.weeks_passed == 2
        assert outcome.goal.weeks_failed == 1

    async def test_gives_up_after_max_retries(self, gateway):
        store = ConflictingStore(conflicts=0)
        created = await create_goal(store, gateway, goal_request(duration=10))
        await activate_goal(store, created.id)
        store.conflicts = get_settings().settlement_max_retries

        with pytest.raises(ConcurrencyConflict):
            await settle_period(store, created.id, 1, True)

    async def test_no_change_skips_write(self, store, make_active_goal):
        goal = await make_active_goal()

        result, changed = await apply_goal_update(store, goal.id, lambda g: None)

        assert changed is False
        assert result.version == goal.version

    async def test_failed_credit_reopens_period(self, gateway):
        store = FlakyStore()
        created = await create_goal(store, gateway, goal_request(duration=3))
        await activate_goal(store, created.id)
        await store.get_or_create_weekly_result(created.id, 1, 0)
        assert await store.resolve_weekly_result(created.id, 1, True) is True
        store.lost_swaps = get_settings().settlement_max_retries

        with pytest.raises(ConcurrencyConflict):
            await settle_period(store, created.id, 1, True)

        weekly = await store.get_weekly_result(created.id, 1)
        assert weekly.finalized_at is None
        assert weekly.passed is None
        assert (await store.get_goal(created.id)).weeks_passed == 0
        assert await store.resolve_weekly_result(created.id, 1, True) is True


class TestTerminalWrite:
    async def test_frozen_until_lands_with_failed_status(self, gateway):
        store = FlakyStore()
        created = await create_goal(store, gateway, goal_request(
            goal_name="Duolingo daily", duration=1,
            verification_type=VerificationType.ZKTLS,
            penalty_type="delayed_refund", hold_months=3,
        ))
        await activate_goal(store, created.id)
        store.fail_updates = True

        outcome = await settle_period(store, created.id, 1, False)

        assert outcome.goal.status == GoalStatus.FAILED
        stored = await store.get_goal(created.id)
        assert stored.status == GoalStatus.FAILED
        assert stored.frozen_until is not None
        assert (await get_frozen_balance(store, "owner")).total_frozen == 1000
