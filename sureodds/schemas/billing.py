from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from sureodds.core.plans import PlanKind
from sureodds.models.payment import PaymentStatus
from sureodds.utils.dt import as_utc_aware

class PlanOut(BaseModel):
    plan_type: PlanKind
    price: int
    currency: str = "KES"
    access_duration_days: int

class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    plan_type: PlanKind = Field(validation_alias="plan_kind")
    start_date: datetime = Field(validation_alias="starts_at")
    end_date: datetime = Field(validation_alias="ends_at")

    @field_validator("start_date", "end_date")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc_aware(v)

class SubscriptionStatusOut(BaseModel):
    has_active_subscription: bool
    subscription: SubscriptionOut | None = None

# M-Pesa

class StkPushIn(BaseModel):
    phone: str
    plan_type: PlanKind

class StkPushOut(BaseModel):
    success: bool = True
    message: str
    checkout_request_id: str

class PaymentStatusOut(BaseModel):
    status: PaymentStatus
    mpesa_receipt: str | None = None
    result_desc: str | None = None
    subscription: SubscriptionOut | None = None

class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"

# Vouchers

class RedeemVoucherIn(BaseModel):
    code: str

class RedeemVoucherOut(BaseModel):
    message: str
    subscription: SubscriptionOut

class CreateVoucherIn(BaseModel):
    email: EmailStr
    plan_type: PlanKind

class VoucherOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    plan_kind: PlanKind
    email: str
    is_redeemed: bool
    expires_at: datetime
