"""Payment and payment-gateway event models."""

from enum import Enum
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(BaseModel):
    """Payment record."""
    id: str
    goal_id: str
    charge_id: Optional[str] = None
    amount: int
    status: PaymentStatus = PaymentStatus.PENDING
    qr_code_url: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    
    class Config:
        from_attributes = True


class ChargeResult(BaseModel):
    """Charge created by the payment gateway."""
    charge_id: str
    qr_code_url: str = ""
    amount: int


class ChargeMetadata(BaseModel):
    goal_id: Optional[str] = None
    user_id: Optional[str] = None


class ChargeData(BaseModel):
    id: str
    amount: Optional[int] = None
    status: str = ""
    metadata: ChargeMetadata = ChargeMetadata()


class ChargeEvent(BaseModel):
    """Webhook event posted by the payment gateway."""
    key: str
    data: ChargeData

    @property
    def is_charge_complete(self) -> bool:
        return self.key == "charge.complete" and self.data.status == "successful"
