"""Automatic (zkTLS) verification models."""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Optional, List


class ZkStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"


class ZkVerification(BaseModel):
    """One proof attempt for a (goal, period)."""
    goal_id: str
    week_number: int
    provider_id: Optional[str] = None
    provider_name: Optional[str] = None
    status: ZkStatus = ZkStatus.PENDING
    extracted_value: Optional[str] = None
    extracted_parameters: Optional[dict[str, Any]] = None
    proof_hash: Optional[str] = None
    proof_data: Optional[dict[str, Any]] = None
    verified_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True


class ClaimData(BaseModel):
    """Claim section of a proof payload."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    provider: Optional[str] = None
    parameters: str = ""
    context: str = ""
    extracted_parameters: dict[str, str] = Field(
        default_factory=dict, alias="extractedParameters"
    )


class ProofPayload(BaseModel):
    """Opaque proof delivered to the callback endpoint."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    claim_data: ClaimData = Field(alias="claimData")
    signatures: List[str] = []


class ProofRequestCreate(BaseModel):
    goal_id: str = Field(min_length=1)
    week_number: int = Field(gt=0)


class ProofRequest(BaseModel):
    success: bool = True
    request_url: str
    session_id: str
    message: str = "Open the URL to generate your proof"


class ProofVerdict(BaseModel):
    """What the proof verifier says about a payload."""
    valid: bool
    extracted_value: Optional[str] = None
    extracted_parameters: dict[str, str] = {}
    error: Optional[str] = None


class ProofCallbackResult(BaseModel):
    success: bool
    verified: bool = False
    extracted_value: Optional[str] = None
    error: Optional[str] = None


class Provider(BaseModel):
    """Registered proof provider."""
    id: str
    name: str
    goal_keywords: List[str]
    extracted_field: str
    default_threshold: Optional[int] = None
