"""Final confirmation round for manually verified goals."""

from typing import Optional

from stakeit.errors import InvalidState, NotFound, NotVoting, SelfVote
from stakeit.logging_config import get_logger
from stakeit.models.goal import FinalVoteStatus, Goal, GoalStatus
from stakeit.models.vote import FinalVoteCreate, FinalVoteResult
from stakeit.services.notifier import Notifier
from stakeit.services.settlement import (
    apply_disposition, apply_goal_update, terminal_updates
)
from stakeit.services.tally import tally
from stakeit.store.base import GoalStore

logger = get_logger(__name__)


def _finalize_updates(goal: Goal, passed: bool) -> Optional[dict]:
    if goal.final_vote_status != FinalVoteStatus.VOTING:
        return None
    return terminal_updates(goal, passed)


async def cast_final_vote(
    store: GoalStore,
    goal_id: str,
    data: FinalVoteCreate,
    notifier: Optional[Notifier] = None,
) -> FinalVoteResult:
    """
    Record one referee's final ballot and close the round on a majority.

    The majority is taken over the referees registered now, not the
    count at goal creation. If two ballots resolve the round at once,
    only the first finalization is applied; the other caller gets the
    already-finalized outcome back.
    """
    goal = await store.get_goal(goal_id)
    if goal is None:
        raise NotFound("Goal not found")
    if goal.is_automatic:
        raise InvalidState("This goal uses automatic zkTLS verification")
    if goal.final_vote_status != FinalVoteStatus.VOTING:
        raise NotVoting("Final voting is not active for this goal")
    if data.referee_user_id == goal.user_id:
        raise SelfVote("Cannot vote on your own goal")

    referee = await store.get_or_create_referee(
        goal_id,
        data.referee_user_id,
        data.referee_user_name or data.referee_user_id,
        data.referee_platform,
    )
    await store.insert_final_ballot(goal_id, referee.id, data.vote)

    # The round may have closed between the status check and the insert
    current = await store.get_goal(goal_id)
    if current is None or current.final_vote_status != FinalVoteStatus.VOTING:
        await store.clear_final_ballots(goal_id)
        raise NotVoting("Final voting is not active for this goal")

    ballots = await store.list_final_ballots(goal_id)
    referees = await store.list_referees(goal_id)
    result = tally(ballots.values(), len(referees))
    logger.info(
        "final_vote_recorded",
        goal_id=goal_id,
        referee_id=referee.id,
        yes=result.yes,
        no=result.no,
        total_referees=result.total_referees,
    )

    if not result.resolved:
        return FinalVoteResult(
            finalized=False,
            yes_votes=result.yes,
            no_votes=result.no,
            total_referees=result.total_referees,
        )

    goal, changed = await apply_goal_update(
        store, goal_id, lambda g: _finalize_updates(g, result.passed)
    )
    passed = goal.status == GoalStatus.COMPLETED

    if not changed:
        await store.clear_final_ballots(goal_id)
        return FinalVoteResult(
            finalized=True,
            passed=passed,
            yes_votes=result.yes,
            no_votes=result.no,
            total_referees=result.total_referees,
            refund_approved=passed,
        )

    await store.clear_final_ballots(goal_id)
    disposition = await apply_disposition(store, goal, notifier)

    return FinalVoteResult(
        finalized=True,
        passed=passed,
        yes_votes=result.yes,
        no_votes=result.no,
        total_referees=result.total_referees,
        penalty_applied=None if passed else disposition.description,
        refund_approved=disposition.refund_approved,
    )
