"""Goal, referee and progress models."""

from enum import Enum
from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import Literal, Optional, List, Union


class Platform(str, Enum):
    """Where a participant talks to StakeIt."""
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"
    WEB = "web"


class GoalStatus(str, Enum):
    """Goal lifecycle status."""
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


OPEN_STATUSES = (GoalStatus.PENDING_PAYMENT, GoalStatus.ACTIVE)


class FinalVoteStatus(str, Enum):
    """Confirmation round sub-state."""
    NOT_STARTED = "not_started"
    VOTING = "voting"
    FINALIZED = "finalized"


class PenaltyType(str, Enum):
    """What happens to the stake when the goal fails."""
    FORFEITED = "forfeited"
    DELAYED_REFUND = "delayed_refund"
    SPLIT_TO_GROUP = "split_to_group"
    CHARITY_DONATION = "charity_donation"


class VerificationType(str, Enum):
    MANUAL = "manual"
    ZKTLS = "zktls"


class ThresholdType(str, Enum):
    MINIMUM = "minimum"


class ThresholdConfig(BaseModel):
    """Pass condition for automatically verified periods."""
    value: Optional[int] = None
    threshold_type: ThresholdType = ThresholdType.MINIMUM

    def is_met(self, extracted_value: Optional[str]) -> bool:
        """Compare an extracted proof value against the threshold.

        No threshold always passes; a non-numeric value never does.
        """
        if not self.value:
            return True
        try:
            value = int(str(extracted_value).strip())
        except (TypeError, ValueError):
            return False
        return value >= self.value


class ManualVerification(BaseModel):
    """Periods decided by referee majority vote."""
    kind: Literal["manual"] = "manual"


class AutomaticVerification(BaseModel):
    """Periods decided by a verified proof of an external metric."""
    kind: Literal["automatic"] = "automatic"
    threshold: ThresholdConfig = ThresholdConfig()
    provider_id: Optional[str] = None
    provider_name: Optional[str] = None


VerificationMode = Union[ManualVerification, AutomaticVerification]


class RefereeSeed(BaseModel):
    """Referee nominated at goal creation."""
    user_id: str = Field(min_length=1)
    user_name: str
    platform: Platform


class GoalCreate(BaseModel):
    """Payload to create a new goal."""
    goal_name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    stake_amount: int = Field(gt=0)
    duration: Union[int, str] = 1  # bare number = weeks, or "10d" / "3 months"
    platform: Platform
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    user_id: str = Field(min_length=1)
    user_name: str = Field(min_length=1)
    penalty_type: PenaltyType = PenaltyType.FORFEITED
    charity_choice: Optional[str] = None
    hold_months: Optional[int] = Field(default=None, ge=1, le=12)
    verification_type: VerificationType = VerificationType.MANUAL
    reclaim_provider_id: Optional[str] = None
    reclaim_provider_name: Optional[str] = None
    zk_threshold_value: Optional[int] = Field(default=None, ge=0)
    referees: List[RefereeSeed] = []

    @model_validator(mode="after")
    def check_penalty_options(self) -> "GoalCreate":
        if self.penalty_type == PenaltyType.DELAYED_REFUND and self.hold_months is None:
            raise ValueError("hold_months is required for delayed_refund")
        if self.penalty_type != PenaltyType.DELAYED_REFUND and self.hold_months is not None:
            raise ValueError("hold_months is only allowed for delayed_refund")
        if self.penalty_type == PenaltyType.CHARITY_DONATION and not self.charity_choice:
            raise ValueError("charity_choice is required for charity_donation")
        return self


class Goal(BaseModel):
    """Full goal model."""
    id: str
    user_id: str
    user_name: str
    platform: Platform
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    goal_name: str
    description: Optional[str] = None
    stake_amount: int
    frozen_balance_applied: int = 0
    duration_weeks: int
    duration_label: Optional[str] = None
    penalty_type: PenaltyType = PenaltyType.FORFEITED
    charity_choice: Optional[str] = None
    hold_months: Optional[int] = None
    verification_type: VerificationType = VerificationType.MANUAL
    reclaim_provider_id: Optional[str] = None
    reclaim_provider_name: Optional[str] = None
    zk_threshold_value: Optional[int] = None
    zk_threshold_type: ThresholdType = ThresholdType.MINIMUM
    status: GoalStatus = GoalStatus.PENDING_PAYMENT
    final_vote_status: FinalVoteStatus = FinalVoteStatus.NOT_STARTED
    current_week: int = 1
    weeks_passed: int = 0
    weeks_failed: int = 0
    frozen_until: Optional[datetime] = None
    frozen_consumed_by: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    payment_id: Optional[str] = None
    payment_qr_url: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True

    @property
    def verification(self) -> VerificationMode:
        if self.verification_type == VerificationType.ZKTLS:
            return AutomaticVerification(
                threshold=ThresholdConfig(
                    value=self.zk_threshold_value,
                    threshold_type=self.zk_threshold_type,
                ),
                provider_id=self.reclaim_provider_id,
                provider_name=self.reclaim_provider_name,
            )
        return ManualVerification()

    @property
    def is_automatic(self) -> bool:
        return isinstance(self.verification, AutomaticVerification)

    @property
    def periods_done(self) -> int:
        return self.weeks_passed + self.weeks_failed

    @property
    def periods_remaining(self) -> int:
        return self.duration_weeks - self.periods_done


class GoalCreated(BaseModel):
    """Response for a freshly created goal."""
    id: str
    status: GoalStatus
    payment_qr_url: Optional[str] = None
    stake_amount: int
    frozen_balance_applied: int = 0


class Referee(BaseModel):
    """Referee record."""
    id: str
    goal_id: str
    user_id: str
    user_name: str
    platform: Platform
    added_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True


class ProgressUpdateCreate(BaseModel):
    """Payload for an owner's progress report."""
    user_id: str = Field(min_length=1)
    week_number: int = Field(gt=0)
    photo_urls: List[str] = []
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    exif_timestamp: Optional[str] = None


class ProgressUpdate(ProgressUpdateCreate):
    """Progress update record."""
    id: str
    goal_id: str
    created_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True


class FrozenBalance(BaseModel):
    """Stake held under delayed-refund penalties for one user."""
    user_id: str
    total_frozen: int = 0
    releasable: int = 0
    next_release_at: Optional[datetime] = None
