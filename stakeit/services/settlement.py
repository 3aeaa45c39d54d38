"""Period settlement: advances goal counters once a period is decided."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from stakeit.config import get_settings
from stakeit.errors import ConcurrencyConflict, GoalNotActive, InvalidState, NotFound, ValidationError
from stakeit.logging_config import get_logger
from stakeit.models.goal import FinalVoteStatus, Goal, GoalStatus
from stakeit.services.notifier import Notifier
from stakeit.services.penalty import PenaltyDisposition, disposition_for
from stakeit.services.tally import majority_of
from stakeit.store.base import GoalStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class SettlementOutcome:
    goal: Goal
    run_complete: bool
    final_vote_opened: bool = False
    disposition: Optional[PenaltyDisposition] = None


async def apply_goal_update(
    store: GoalStore,
    goal_id: str,
    mutate: Callable[[Goal], Optional[dict[str, Any]]],
) -> tuple[Goal, bool]:
    """
    Optimistic read-modify-write of one goal row.

    ``mutate`` sees the freshest goal and returns the fields to change, or
    None to leave it untouched. On a version conflict the goal is re-read
    and ``mutate`` runs again, so concurrent writers never lose updates.

    Returns: (goal, changed)
    """
    retries = get_settings().settlement_max_retries

    for attempt in range(1, retries + 1):
        goal = await store.get_goal(goal_id)
        if goal is None:
            raise NotFound("Goal not found")

        updates = mutate(goal)
        if updates is None:
            return goal, False

        updated = await store.update_goal_if_version(goal_id, goal.version, updates)
        if updated is not None:
            return updated, True

        logger.info("goal_update_conflict", goal_id=goal_id, attempt=attempt)

    raise ConcurrencyConflict(f"Goal {goal_id} is being updated concurrently, try again")


def terminal_updates(goal: Goal, passed: bool) -> dict[str, Any]:
    """Fields that close a goal, written in the same versioned update."""
    updates: dict[str, Any] = {
        "status": GoalStatus.COMPLETED if passed else GoalStatus.FAILED,
        "final_vote_status": FinalVoteStatus.FINALIZED,
    }
    if not passed:
        disposition = disposition_for(goal, False, now=datetime.now(timezone.utc))
        frozen_until = disposition.side_effects.frozen_until
        if frozen_until is not None:
            updates["frozen_until"] = frozen_until
    return updates


def _period_updates(goal: Goal, week: int, passed: bool) -> dict[str, Any]:
    if goal.status != GoalStatus.ACTIVE:
        raise GoalNotActive("Goal is not active")
    if not 1 <= week <= goal.duration_weeks:
        raise ValidationError(
            f"Week must be between 1 and {goal.duration_weeks}",
            fields={"week": week},
        )
    if goal.periods_done >= goal.duration_weeks:
        raise InvalidState("All periods of this goal are already decided")

    weeks_passed = goal.weeks_passed + (1 if passed else 0)
    weeks_failed = goal.weeks_failed + (0 if passed else 1)
    updates: dict[str, Any] = {
        "weeks_passed": weeks_passed,
        "weeks_failed": weeks_failed,
    }

    if weeks_passed + weeks_failed < goal.duration_weeks:
        updates["current_week"] = min(week + 1, goal.duration_weeks)
    elif goal.is_automatic:
        completed = weeks_passed >= majority_of(goal.duration_weeks)
        updates.update(terminal_updates(goal, completed))
    else:
        updates["final_vote_status"] = FinalVoteStatus.VOTING

    return updates


async def apply_disposition(
    store: GoalStore,
    goal: Goal,
    notifier: Optional[Notifier] = None,
) -> PenaltyDisposition:
    """Resolve the outcome of a goal that just turned terminal and announce it.

    Persisted side effects (``frozen_until``) are already on ``goal``; they
    are written together with the terminal status.
    """
    settings = get_settings()
    passed = goal.status == GoalStatus.COMPLETED
    referees = await store.list_referees(goal.id)

    disposition = disposition_for(
        goal,
        passed,
        referee_count=len(referees),
        now=datetime.now(timezone.utc),
        currency_symbol=settings.currency_symbol,
    )

    logger.info(
        "goal_settled",
        goal_id=goal.id,
        status=goal.status.value,
        weeks_passed=goal.weeks_passed,
        weeks_failed=goal.weeks_failed,
        refund_approved=disposition.refund_approved,
    )
    if notifier is not None:
        notifier.publish(
            "goal_completed",
            goal.id,
            status=goal.status.value,
            description=disposition.description,
            refund_approved=disposition.refund_approved,
        )
    return disposition


async def settle_period(
    store: GoalStore,
    goal_id: str,
    week: int,
    passed: bool,
    notifier: Optional[Notifier] = None,
) -> SettlementOutcome:
    """
    Credit one decided period to the goal.

    Automatic goals reach completed/failed in the same call as their last
    period; manual goals open the final confirmation round instead.

    Callers resolve the period in the store first. If the goal cannot be
    credited the period is reopened, so a later vote, proof or simulation
    can resolve and settle it again.
    """
    try:
        goal, _ = await apply_goal_update(
            store, goal_id, lambda g: _period_updates(g, week, passed)
        )
    except Exception as e:
        logger.warning("period_reopened", goal_id=goal_id, week=week, error=str(e))
        await store.reopen_weekly_result(goal_id, week)
        raise

    logger.info(
        "period_settled",
        goal_id=goal_id,
        week=week,
        passed=passed,
        weeks_passed=goal.weeks_passed,
        weeks_failed=goal.weeks_failed,
    )
    if notifier is not None:
        notifier.publish("period_settled", goal_id, week=week, passed=passed)

    run_complete = goal.periods_done >= goal.duration_weeks
    if not run_complete:
        return SettlementOutcome(goal=goal, run_complete=False)

    if goal.final_vote_status == FinalVoteStatus.VOTING:
        logger.info("final_vote_opened", goal_id=goal_id)
        if notifier is not None:
            notifier.publish("final_vote_opened", goal_id)
        return SettlementOutcome(goal=goal, run_complete=True, final_vote_opened=True)

    disposition = await apply_disposition(store, goal, notifier)
    return SettlementOutcome(goal=goal, run_complete=True, disposition=disposition)
