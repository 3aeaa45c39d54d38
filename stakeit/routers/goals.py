"""Goals router: creation, adjudication and progress."""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional

from stakeit.config import get_settings
from stakeit.database import get_store
from stakeit.dependencies import get_gateway, get_notifier
from stakeit.models.goal import (
    FrozenBalance, Goal, GoalCreate, GoalCreated, Platform,
    ProgressUpdate, ProgressUpdateCreate, Referee
)
from stakeit.models.simulation import SimulationPlan, SimulationResult
from stakeit.models.vote import (
    FinalVoteCreate, FinalVoteResult, GoalWithDetails, RefereeCreate,
    VoteCreate, VoteResponse
)
from stakeit.services import lifecycle
from stakeit.services.final_vote import cast_final_vote
from stakeit.services.notifier import Notifier
from stakeit.services.payments import PaymentGateway
from stakeit.services.verification import submit_vote
from stakeit.store.base import GoalStore

router = APIRouter(prefix="/goals", tags=["Goals"])


@router.post("", response_model=GoalCreated, status_code=201)
async def create_goal(
    data: GoalCreate,
    store: GoalStore = Depends(get_store),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Create a goal and open the payment charge for its stake."""
    return await lifecycle.create_goal(store, gateway, data)


@router.get("", response_model=List[Goal])
async def list_goals(
    user_id: Optional[str] = None,
    platform: Optional[Platform] = None,
    group_id: Optional[str] = None,
    store: GoalStore = Depends(get_store),
):
    """List goals of a user, or of a chat group on a platform."""
    return await lifecycle.list_goals(store, user_id, platform, group_id)


@router.get("/frozen-balance", response_model=FrozenBalance)
async def get_frozen_balance(
    user_id: str = Query(min_length=1),
    store: GoalStore = Depends(get_store),
):
    """Stake frozen by delayed-refund penalties, awaiting restake."""
    return await lifecycle.get_frozen_balance(store, user_id)


@router.get("/{goal_id}", response_model=GoalWithDetails)
async def get_goal(goal_id: str, store: GoalStore = Depends(get_store)):
    """Get a goal with referees, weekly results, votes and progress."""
    return await lifecycle.get_goal_details(store, goal_id)


@router.post("/{goal_id}/referees", response_model=Referee, status_code=201)
async def add_referee(
    goal_id: str,
    data: RefereeCreate,
    store: GoalStore = Depends(get_store),
):
    """Nominate a referee for an open goal."""
    return await lifecycle.add_referee(store, goal_id, data)


@router.post("/{goal_id}/vote", response_model=VoteResponse)
async def vote(
    goal_id: str,
    data: VoteCreate,
    store: GoalStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    """Cast a referee vote for one period."""
    return await submit_vote(store, goal_id, data, notifier)


@router.post("/{goal_id}/final-vote", response_model=FinalVoteResult)
async def final_vote(
    goal_id: str,
    data: FinalVoteCreate,
    store: GoalStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    """Cast a ballot in the final confirmation round."""
    return await cast_final_vote(store, goal_id, data, notifier)


@router.post("/{goal_id}/progress", response_model=ProgressUpdate, status_code=201)
async def add_progress(
    goal_id: str,
    data: ProgressUpdateCreate,
    store: GoalStore = Depends(get_store),
):
    """Submit owner progress evidence for the current period."""
    return await lifecycle.add_progress_update(store, goal_id, data)


@router.get("/{goal_id}/progress", response_model=List[ProgressUpdate])
async def list_progress(goal_id: str, store: GoalStore = Depends(get_store)):
    return await lifecycle.list_progress_updates(store, goal_id)


@router.post("/{goal_id}/simulate-verify", response_model=SimulationResult)
async def simulate_verify(
    goal_id: str,
    plan: SimulationPlan,
    store: GoalStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
):
    """
    DEV-ONLY: decide periods without real votes or proofs.

    Accepts ``{"outcome": "pass"|"fail"}``, ``{"pass": N, "fail": M}`` or
    ``{"weeks": [1, 2], "vote": true}``.
    """
    if get_settings().is_production:
        raise HTTPException(status_code=403, detail="Not available in production")
    
    return await lifecycle.simulate(store, goal_id, plan, notifier)
