"""Verification adapter.

Turns referee votes (manual goals) and verified proofs (automatic goals)
into "period P passed/failed" decisions for the settlement engine.
"""

from datetime import datetime, timezone
from typing import Optional

from stakeit.errors import (
    GoalNotActive, InvalidState, NotFound, SelfVote, ValidationError
)
from stakeit.logging_config import get_logger
from stakeit.models.goal import AutomaticVerification, Goal, GoalStatus
from stakeit.models.verification import (
    ProofCallbackResult, ProofPayload, ProofRequest, ZkStatus
)
from stakeit.models.vote import VoteCreate, VoteResponse, WeekStatus
from stakeit.services.notifier import Notifier
from stakeit.services.proofs import ProofVerifier, find_provider_for_goal, proof_context
from stakeit.services.settlement import settle_period
from stakeit.services.tally import tally
from stakeit.store.base import GoalStore

logger = get_logger(__name__)


async def _require_goal(store: GoalStore, goal_id: str) -> Goal:
    goal = await store.get_goal(goal_id)
    if goal is None:
        raise NotFound("Goal not found")
    return goal


def _check_week(goal: Goal, week: int) -> None:
    if not 1 <= week <= goal.duration_weeks:
        raise ValidationError(
            f"Week must be between 1 and {goal.duration_weeks}",
            fields={"week": week},
        )


async def submit_vote(
    store: GoalStore,
    goal_id: str,
    data: VoteCreate,
    notifier: Optional[Notifier] = None,
) -> VoteResponse:
    """
    Record a referee's vote for one period and settle it once a majority
    is reached.

    Votes arriving after the period resolved are still counted in the
    weekly tally but never settle the period a second time.
    """
    goal = await _require_goal(store, goal_id)

    if goal.status != GoalStatus.ACTIVE:
        raise GoalNotActive("Goal is not active")
    if goal.is_automatic:
        raise InvalidState("This goal uses automatic zkTLS verification")
    if data.referee_user_id == goal.user_id:
        raise SelfVote("Cannot vote on your own goal")
    _check_week(goal, data.week)

    referee = await store.get_or_create_referee(
        goal_id,
        data.referee_user_id,
        data.referee_user_name or data.referee_user_id,
        data.referee_platform,
    )
    await store.insert_vote(goal_id, referee.id, data.week, data.vote)

    referees = await store.list_referees(goal_id)
    await store.get_or_create_weekly_result(goal_id, data.week, len(referees))
    votes = await store.list_votes(goal_id, data.week)
    result = tally((v.vote for v in votes), len(referees))

    await store.update_weekly_counts(
        goal_id, data.week, result.yes, result.no, result.total_referees
    )
    logger.info(
        "vote_recorded",
        goal_id=goal_id,
        week=data.week,
        referee_id=referee.id,
        yes=result.yes,
        no=result.no,
        total_referees=result.total_referees,
    )

    resolved = False
    if result.resolved:
        resolved = await store.resolve_weekly_result(goal_id, data.week, result.passed)
        if resolved:
            await settle_period(store, goal_id, data.week, result.passed, notifier)

    return VoteResponse(
        week_status=WeekStatus(
            yes_votes=result.yes,
            no_votes=result.no,
            total_referees=result.total_referees,
            passed=result.passed,
        ),
        resolved=resolved,
    )


async def submit_proof(
    store: GoalStore,
    verifier: ProofVerifier,
    payload: ProofPayload,
    notifier: Optional[Notifier] = None,
) -> ProofCallbackResult:
    """
    Apply a proof callback to its goal and period.

    A proof that fails verification or misses the threshold is recorded
    and leaves the period open. Only a passing proof settles a period, so
    automatic goals never fail a period from a bad or missing proof.
    """
    goal_id, week = proof_context(payload)
    goal = await _require_goal(store, goal_id)
    verification = goal.verification
    if not isinstance(verification, AutomaticVerification):
        raise InvalidState("This goal uses manual referee verification")
    _check_week(goal, week)

    verdict = await verifier.verify(payload)
    proof_data = payload.model_dump(by_alias=True)

    if not verdict.valid:
        await store.upsert_zk_verification(goal_id, week, {
            "status": ZkStatus.FAILED,
            "proof_data": proof_data,
        })
        logger.warning("proof_rejected", goal_id=goal_id, week=week, error=verdict.error)
        return ProofCallbackResult(success=False, error=verdict.error)

    extracted_value = verdict.extracted_value or "0"
    passed = verification.threshold.is_met(extracted_value)

    await store.upsert_zk_verification(goal_id, week, {
        "status": ZkStatus.VERIFIED if passed else ZkStatus.FAILED,
        "provider_id": verification.provider_id,
        "provider_name": verification.provider_name,
        "proof_hash": payload.signatures[0] if payload.signatures else None,
        "proof_data": proof_data,
        "extracted_value": verdict.extracted_value,
        "extracted_parameters": verdict.extracted_parameters,
        "verified_at": datetime.now(timezone.utc),
    })
    logger.info(
        "proof_verified",
        goal_id=goal_id,
        week=week,
        extracted_value=verdict.extracted_value,
        threshold=verification.threshold.value,
        passed=passed,
    )

    if passed and goal.status == GoalStatus.ACTIVE:
        await store.get_or_create_weekly_result(goal_id, week, 0)
        if await store.resolve_weekly_result(goal_id, week, True):
            await store.update_weekly_counts(goal_id, week, 1, 0, 0)
            await settle_period(store, goal_id, week, True, notifier)
            if notifier is not None:
                notifier.publish(
                    "proof_verified", goal_id, week=week, value=verdict.extracted_value
                )

    return ProofCallbackResult(
        success=True,
        verified=passed,
        extracted_value=verdict.extracted_value,
    )


async def request_proof(
    store: GoalStore,
    verifier: ProofVerifier,
    goal_id: str,
    week: int,
) -> ProofRequest:
    """Open a proof request for one period of an automatic goal."""
    goal = await _require_goal(store, goal_id)
    _check_week(goal, week)

    provider_id = goal.reclaim_provider_id
    provider_name = goal.reclaim_provider_name
    if not provider_id:
        provider = find_provider_for_goal(goal.goal_name)
        if provider is None:
            raise ValidationError("No ZKTLS provider available for this goal type")
        provider_id = provider.id
        provider_name = provider.name

    request_url, session_id = await verifier.create_request(goal_id, week, provider_id)
    await store.upsert_zk_verification(goal_id, week, {
        "provider_id": provider_id,
        "provider_name": provider_name or "Unknown Provider",
        "status": ZkStatus.PENDING,
    })
    logger.info("proof_requested", goal_id=goal_id, week=week, provider_id=provider_id)
    return ProofRequest(request_url=request_url, session_id=session_id)
