from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class AccessLevel(str, Enum):
    TRIAL = "trial"
    PRO = "pro"
    EXPIRED = "expired"


class SubscriptionStatus(str, Enum):
    NONE = "none"
    TRIALING = "trialing"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELED = "canceled"


class UserRecordView(BaseModel):
    """Read-only view of a user record, rebuilt from a cached ``to_dict()`` snapshot."""
    id: str
    trial_start_at: Optional[datetime] = None
    trial_end_at: Optional[datetime] = None
    subscription_status: str = SubscriptionStatus.NONE.value
    has_written_first_entry: bool = False
    pro_override: bool = False
    billing_customer_id: Optional[str] = None
    billing_subscription_id: Optional[str] = None
    billing_price_id: Optional[str] = None
    billing_current_period_end: Optional[datetime] = None
    billing_cancel_at_period_end: bool = False
    scheduled_for_deletion_at: Optional[datetime] = None
    stickers: List[str] = Field(default_factory=list)


class UserAccess(BaseModel):
    access_level: AccessLevel
    has_written_first_entry: bool = False
    trial_start_at: Optional[datetime] = None
    trial_end_at: Optional[datetime] = None
    subscription_status: Optional[str] = None
    pro_override: bool = False
    billing_customer_id: Optional[str] = None
    billing_subscription_id: Optional[str] = None
    billing_price_id: Optional[str] = None
    billing_current_period_end: Optional[datetime] = None
    billing_cancel_at_period_end: bool = False
    scheduled_for_deletion_at: Optional[datetime] = None
