"""Vote, weekly result and final vote models."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from stakeit.models.goal import Goal, Platform, Referee, ProgressUpdate


class VoteCreate(BaseModel):
    """Payload for a referee's vote on one period."""
    referee_user_id: str = Field(min_length=1)
    referee_user_name: Optional[str] = None
    referee_platform: Platform
    week: int = Field(gt=0)
    vote: bool


class FinalVoteCreate(BaseModel):
    """Payload for a referee's ballot in the final confirmation round."""
    referee_user_id: str = Field(min_length=1)
    referee_user_name: Optional[str] = None
    referee_platform: Platform
    vote: bool


class RefereeCreate(BaseModel):
    """Payload to nominate a referee after creation."""
    user_id: str = Field(min_length=1)
    user_name: str
    platform: Platform


class Vote(BaseModel):
    """Vote record."""
    id: str
    goal_id: str
    referee_id: str
    week_number: int
    vote: bool
    voted_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True


class WeeklyResult(BaseModel):
    """Per-period outcome record."""
    goal_id: str
    week_number: int
    yes_votes: int = 0
    no_votes: int = 0
    total_referees: int = 0
    passed: Optional[bool] = None
    verification_sent_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True


class WeekStatus(BaseModel):
    """Live tally for one period."""
    yes_votes: int
    no_votes: int
    total_referees: int
    passed: Optional[bool] = None


class VoteResponse(BaseModel):
    success: bool = True
    week_status: WeekStatus
    resolved: bool = False


class FinalVoteResult(BaseModel):
    """Outcome of casting a final ballot."""
    success: bool = True
    finalized: bool
    passed: Optional[bool] = None
    yes_votes: int
    no_votes: int
    total_referees: int
    penalty_applied: Optional[str] = None
    refund_approved: Optional[bool] = None


class GoalWithDetails(Goal):
    """Goal with related data for display."""
    referees: List[Referee] = []
    weekly_results: List[WeeklyResult] = []
    votes: List[Vote] = []
    progress_updates: List[ProgressUpdate] = []
