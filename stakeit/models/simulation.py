"""Dev-only simulation plans."""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Union


class SimulatedOutcome(str, Enum):
    PASS = "pass"
    FAIL = "fail"


class CountPlan(BaseModel):
    """First ``pass`` periods pass, the next ``fail`` fail."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    pass_count: int = Field(ge=0, alias="pass")
    fail_count: int = Field(ge=0, alias="fail")


class OutcomePlan(BaseModel):
    """Drive the goal to the named overall outcome."""
    model_config = ConfigDict(extra="forbid")

    outcome: SimulatedOutcome


class WeekListPlan(BaseModel):
    """Explicit period numbers, all decided the same way."""
    model_config = ConfigDict(extra="forbid")

    weeks: List[int] = Field(min_length=1)
    vote: bool = True


SimulationPlan = Union[CountPlan, OutcomePlan, WeekListPlan]


class SimulationStep(BaseModel):
    period: int
    passed: bool


class SimulationResult(BaseModel):
    success: bool = True
    total_periods: int
    results: List[SimulationStep]
    status: str
    weeks_passed: int
    weeks_failed: int
    current_week: int
    final_vote_status: Optional[str] = None
