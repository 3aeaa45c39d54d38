"""Goal lifecycle: creation, activation, dev simulation and queries."""

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from stakeit.config import get_settings
from stakeit.errors import (
    Forbidden, GoalNotActive, InvalidState, NotFound, SelfVote,
    UpstreamFailure, ValidationError
)
from stakeit.logging_config import get_logger
from stakeit.models.goal import (
    FrozenBalance, Goal, GoalCreate, GoalCreated, GoalStatus, Platform,
    ProgressUpdate, ProgressUpdateCreate, Referee, VerificationType
)
from stakeit.models.payment import ChargeEvent
from stakeit.models.simulation import (
    CountPlan, OutcomePlan, SimulatedOutcome, SimulationPlan,
    SimulationResult, SimulationStep, WeekListPlan
)
from stakeit.models.vote import GoalWithDetails, RefereeCreate
from stakeit.services.notifier import Notifier
from stakeit.services.payments import PaymentGateway
from stakeit.services.proofs import find_provider_for_goal
from stakeit.services.settlement import apply_goal_update, settle_period
from stakeit.services.tally import majority_of
from stakeit.store.base import GoalStore

logger = get_logger(__name__)


_DURATION_RE = re.compile(
    r"^(\d+)\s*(d|day|days|w|week|weeks|mon|month|months)?$", re.IGNORECASE
)


def parse_duration(value: Union[int, str]) -> tuple[int, str]:
    """
    Convert a duration into a number of weekly periods.

    Bare numbers are weeks (max 52); days round up to whole weeks
    (max 365 days); months count as four weeks each (max 12).

    Returns: (weeks, label)
    """
    match = _DURATION_RE.match(str(value).strip())
    if not match:
        raise ValidationError(
            "Duration must look like '4', '10 days', '3 weeks' or '2 months'",
            fields={"duration": value},
        )

    amount = int(match.group(1))
    unit = (match.group(2) or "w").lower()
    if amount <= 0:
        raise ValidationError("Duration must be positive", fields={"duration": value})

    plural = "" if amount == 1 else "s"
    if unit in ("d", "day", "days"):
        if amount > 365:
            raise ValidationError("Duration cannot exceed 365 days", fields={"duration": value})
        return max(1, math.ceil(amount / 7)), f"{amount} day{plural}"
    if unit in ("w", "week", "weeks"):
        if amount > 52:
            raise ValidationError("Duration cannot exceed 52 weeks", fields={"duration": value})
        return amount, f"{amount} week{plural}"
    if amount > 12:
        raise ValidationError("Duration cannot exceed 12 months", fields={"duration": value})
    return amount * 4, f"{amount} month{plural}"


async def _claim_frozen_balance(store: GoalStore, user_id: str, new_goal_id: str) -> list[Goal]:
    """Mark released frozen stakes as restaked on ``new_goal_id``."""
    now = datetime.now(timezone.utc)
    claimed = []
    for frozen in await store.list_frozen_goals(user_id):
        if frozen.frozen_until is None or frozen.frozen_until > now:
            continue

        def claim(g: Goal) -> Optional[dict]:
            if g.frozen_consumed_by is not None:
                return None
            return {"frozen_consumed_by": new_goal_id}

        goal, changed = await apply_goal_update(store, frozen.id, claim)
        if changed:
            claimed.append(goal)
    return claimed


async def _release_frozen_balance(store: GoalStore, claimed: list[Goal]) -> None:
    for goal in claimed:
        await store.update_goal(goal.id, {"frozen_consumed_by": None})


async def create_goal(
    store: GoalStore,
    gateway: PaymentGateway,
    data: GoalCreate,
) -> GoalCreated:
    """
    Create a goal awaiting payment and open a charge for its stake.

    A released frozen balance from an earlier delayed-refund goal is
    merged into the stake; only the new money is charged. If the gateway
    fails the goal is deleted and the frozen balance handed back.
    """
    settings = get_settings()
    weeks, label = parse_duration(data.duration)

    if any(ref.user_id == data.user_id for ref in data.referees):
        raise SelfVote("Goal owner cannot be a referee")

    row = {
        "user_id": data.user_id,
        "user_name": data.user_name,
        "platform": data.platform,
        "group_id": data.group_id,
        "group_name": data.group_name,
        "goal_name": data.goal_name,
        "description": data.description,
        "stake_amount": data.stake_amount,
        "duration_weeks": weeks,
        "duration_label": label,
        "penalty_type": data.penalty_type,
        "charity_choice": data.charity_choice,
        "hold_months": data.hold_months,
        "verification_type": data.verification_type,
        "status": GoalStatus.PENDING_PAYMENT,
    }

    if data.verification_type == VerificationType.ZKTLS:
        provider = None
        if not data.reclaim_provider_id:
            provider = find_provider_for_goal(data.goal_name)
            if provider is None:
                raise ValidationError("No ZKTLS provider available for this goal type")
        row["reclaim_provider_id"] = data.reclaim_provider_id or provider.id
        row["reclaim_provider_name"] = data.reclaim_provider_name or (
            provider.name if provider else None
        )
        row["zk_threshold_value"] = (
            data.zk_threshold_value
            if data.zk_threshold_value is not None
            else (provider.default_threshold if provider else None)
        )

    referees = [ref.model_dump() for ref in data.referees]
    goal = await store.create_goal_within_limit(
        row, referees, settings.max_active_goals_per_group
    )
    logger.info("goal_created", goal_id=goal.id, user_id=goal.user_id, weeks=weeks)

    claimed = await _claim_frozen_balance(store, data.user_id, goal.id)
    if claimed:
        frozen_total = sum(g.stake_amount for g in claimed)
        goal = await store.update_goal(goal.id, {
            "stake_amount": data.stake_amount + frozen_total,
            "frozen_balance_applied": frozen_total,
        })
        logger.info("frozen_balance_restaked", goal_id=goal.id, amount=frozen_total)

    try:
        charge = await gateway.create_charge(
            data.stake_amount, goal.id, data.user_id, f"StakeIt: {data.goal_name}"
        )
    except Exception as e:
        logger.error("charge_failed_deleting_goal", goal_id=goal.id, error=str(e))
        await _release_frozen_balance(store, claimed)
        await store.delete_goal(goal.id)
        if isinstance(e, UpstreamFailure):
            raise
        raise UpstreamFailure("Failed to create payment charge") from e

    await store.create_payment(goal.id, data.stake_amount, charge.qr_code_url, charge.charge_id)

    return GoalCreated(
        id=goal.id,
        status=goal.status,
        payment_qr_url=charge.qr_code_url,
        stake_amount=goal.stake_amount,
        frozen_balance_applied=goal.frozen_balance_applied,
    )


async def activate_goal(
    store: GoalStore,
    goal_id: str,
    notifier: Optional[Notifier] = None,
) -> Goal:
    """Start a paid goal. Repeated activations leave it untouched."""
    settings = get_settings()

    def activate(goal: Goal) -> Optional[dict]:
        if goal.status != GoalStatus.PENDING_PAYMENT:
            return None
        now = datetime.now(timezone.utc)
        days = goal.duration_weeks * settings.period_length_days
        return {
            "status": GoalStatus.ACTIVE,
            "start_date": now,
            "end_date": now + timedelta(days=days),
            "current_week": 1,
        }

    goal, changed = await apply_goal_update(store, goal_id, activate)
    if changed:
        logger.info("goal_activated", goal_id=goal_id, end_date=goal.end_date)
        if notifier is not None:
            notifier.publish("goal_activated", goal_id)
    else:
        logger.info("goal_activation_skipped", goal_id=goal_id, status=goal.status.value)
    return goal


async def handle_charge_event(
    store: GoalStore,
    event: ChargeEvent,
    notifier: Optional[Notifier] = None,
) -> Optional[Goal]:
    """Activate the goal behind a completed charge, if there is one."""
    if not event.is_charge_complete:
        return None

    goal_id = event.data.metadata.goal_id
    if not goal_id:
        logger.warning("charge_without_goal", charge_id=event.data.id)
        return None

    payment = await store.get_payment_by_charge(event.data.id)
    if payment is None:
        logger.warning("unknown_charge", charge_id=event.data.id, goal_id=goal_id)
        return None
    if payment.goal_id != goal_id:
        logger.warning(
            "charge_goal_mismatch",
            charge_id=event.data.id,
            goal_id=goal_id,
            payment_goal_id=payment.goal_id,
        )
        return None

    await store.complete_payment(event.data.id)
    return await activate_goal(store, goal_id, notifier)


def plan_steps(goal: Goal, plan: SimulationPlan) -> list[tuple[int, bool]]:
    """Expand a simulation plan into (period, passed) steps."""
    already_done = goal.periods_done
    remaining = goal.periods_remaining

    if isinstance(plan, OutcomePlan):
        if plan.outcome == SimulatedOutcome.PASS:
            return [(already_done + i + 1, True) for i in range(remaining)]
        # Pass just short of a majority, fail the rest
        pass_count = max(0, majority_of(goal.duration_weeks) - 1 - goal.weeks_passed)
        pass_count = min(pass_count, remaining)
        steps = [(already_done + i + 1, True) for i in range(pass_count)]
        steps += [
            (already_done + pass_count + i + 1, False)
            for i in range(remaining - pass_count)
        ]
        return steps

    if isinstance(plan, CountPlan):
        requested = plan.pass_count + plan.fail_count
        if requested > remaining:
            raise ValidationError(
                f"Requested {requested} periods but only {remaining} remaining "
                f"({already_done} already done out of {goal.duration_weeks})"
            )
        steps = [(already_done + i + 1, True) for i in range(plan.pass_count)]
        steps += [
            (already_done + plan.pass_count + i + 1, False)
            for i in range(plan.fail_count)
        ]
        return steps

    if isinstance(plan, WeekListPlan):
        for week in plan.weeks:
            if not 1 <= week <= goal.duration_weeks:
                raise ValidationError(
                    f"Week {week} is outside 1..{goal.duration_weeks}",
                    fields={"weeks": plan.weeks},
                )
        if len(set(plan.weeks)) != len(plan.weeks):
            raise ValidationError("Weeks must not repeat", fields={"weeks": plan.weeks})
        return [(week, plan.vote) for week in plan.weeks]

    raise ValidationError("Unknown simulation plan")


async def simulate(
    store: GoalStore,
    goal_id: str,
    plan: SimulationPlan,
    notifier: Optional[Notifier] = None,
) -> SimulationResult:
    """
    DEV-ONLY: decide periods without waiting for votes or proofs.

    Every step is resolved and settled through the same store guards and
    settlement engine as real adjudication, so decided periods, inactive
    goals and out-of-range weeks are rejected exactly as they would be.
    """
    settings = get_settings()
    if settings.is_production:
        raise Forbidden("Not available in production")

    goal = await store.get_goal(goal_id)
    if goal is None:
        raise NotFound("Goal not found")
    if goal.status != GoalStatus.ACTIVE:
        raise GoalNotActive(f"Goal status is '{goal.status.value}', cannot verify")

    steps = plan_steps(goal, plan)
    if not steps:
        raise ValidationError(
            f"No periods to simulate. Goal has {goal.duration_weeks} total periods, "
            f"{goal.periods_done} already done."
        )

    for period, _ in steps:
        existing = await store.get_weekly_result(goal_id, period)
        if existing is not None and existing.finalized_at is not None:
            raise InvalidState(f"Period {period} is already decided")

    results = []
    for period, passed in steps:
        await store.get_or_create_weekly_result(goal_id, period, 0)
        if not await store.resolve_weekly_result(goal_id, period, passed):
            raise InvalidState(f"Period {period} is already decided")
        await store.update_weekly_counts(
            goal_id, period, 1 if passed else 0, 0 if passed else 1, 0
        )
        await settle_period(store, goal_id, period, passed, notifier)
        results.append(SimulationStep(period=period, passed=passed))

    final = await store.get_goal(goal_id)
    logger.info("simulation_applied", goal_id=goal_id, steps=len(results), status=final.status.value)
    return SimulationResult(
        total_periods=final.duration_weeks,
        results=results,
        status=final.status.value,
        weeks_passed=final.weeks_passed,
        weeks_failed=final.weeks_failed,
        current_week=final.current_week,
        final_vote_status=final.final_vote_status.value,
    )


async def get_goal_details(store: GoalStore, goal_id: str) -> GoalWithDetails:
    goal = await store.get_goal(goal_id)
    if goal is None:
        raise NotFound("Goal not found")

    return GoalWithDetails(
        **goal.model_dump(),
        referees=await store.list_referees(goal_id),
        weekly_results=await store.list_weekly_results(goal_id),
        votes=await store.list_votes(goal_id),
        progress_updates=await store.list_progress_updates(goal_id),
    )


async def list_goals(
    store: GoalStore,
    user_id: Optional[str] = None,
    platform: Optional[Platform] = None,
    group_id: Optional[str] = None,
) -> list[Goal]:
    if user_id:
        return await store.list_goals_by_user(user_id)
    if platform and group_id:
        return await store.list_goals_by_group(Platform(platform).value, group_id)
    raise ValidationError("Must provide user_id or platform+group_id")


async def add_referee(store: GoalStore, goal_id: str, data: RefereeCreate) -> Referee:
    goal = await store.get_goal(goal_id)
    if goal is None:
        raise NotFound("Goal not found")
    if goal.status not in (GoalStatus.PENDING_PAYMENT, GoalStatus.ACTIVE):
        raise InvalidState("Referees can only join open goals")
    if data.user_id == goal.user_id:
        raise SelfVote("Goal owner cannot be a referee")
    return await store.get_or_create_referee(goal_id, data.user_id, data.user_name, data.platform)


async def add_progress_update(
    store: GoalStore, goal_id: str, data: ProgressUpdateCreate
) -> ProgressUpdate:
    """Owner-submitted evidence for referees; does not decide anything."""
    goal = await store.get_goal(goal_id)
    if goal is None:
        raise NotFound("Goal not found")
    if goal.status != GoalStatus.ACTIVE:
        raise GoalNotActive("Goal is not active")
    if data.user_id != goal.user_id:
        raise Forbidden("Only the goal owner can submit progress updates")
    return await store.create_progress_update(goal_id, data.model_dump())


async def list_progress_updates(store: GoalStore, goal_id: str) -> list[ProgressUpdate]:
    if await store.get_goal(goal_id) is None:
        raise NotFound("Goal not found")
    return await store.list_progress_updates(goal_id)


async def get_frozen_balance(store: GoalStore, user_id: str) -> FrozenBalance:
    """Frozen stakes not yet restaked, and how much of it is released."""
    now = datetime.now(timezone.utc)
    frozen = await store.list_frozen_goals(user_id)
    pending = [g.frozen_until for g in frozen if g.frozen_until and g.frozen_until > now]

    return FrozenBalance(
        user_id=user_id,
        total_frozen=sum(g.stake_amount for g in frozen),
        releasable=sum(
            g.stake_amount for g in frozen
            if g.frozen_until and g.frozen_until <= now
        ),
        next_release_at=min(pending) if pending else None,
    )
