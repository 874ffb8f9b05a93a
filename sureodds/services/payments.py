import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from sureodds.core.errors import (
    ActiveSubscriptionError,
    NotFoundError,
    PaymentRejectedError,
    PendingPaymentError,
    UpstreamError,
    ValidationError,
)
from sureodds.core.plans import PlanCatalog, PlanKind
from sureodds.integrations.mpesa_client import (
    InvalidPhoneNumberError,
    MpesaClient,
    MpesaError,
    normalize_phone,
)
from sureodds.models.entitlement import EntitlementGrant
from sureodds.models.payment import PaymentRequest, PaymentStatus
from sureodds.models.user import User
from sureodds.services.ledger import EntitlementLedger
from sureodds.utils.dt import as_utc_aware, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InitiatedPayment:
    checkout_request_id: str
    customer_message: str
    amount: int
    plan_kind: PlanKind


class PaymentInitiationService:
    def __init__(
        self,
        mpesa: MpesaClient,
        ledger: EntitlementLedger,
        plans: PlanCatalog,
        *,
        pending_window: timedelta = timedelta(minutes=5),
        account_prefix: str = "SureOdds",
        country_code: str = "254",
    ):
        self.mpesa = mpesa
        self.ledger = ledger
        self.plans = plans
        self.pending_window = pending_window
        self.account_prefix = account_prefix
        self.country_code = country_code

    def _recent_pending(self, db: Session, user_id: int, now: datetime) -> PaymentRequest | None:
        # Older PENDING rows simply age out of this check; they are never auto-finalized
        return db.scalars(
            select(PaymentRequest)
            .where(
                PaymentRequest.user_id == user_id,
                PaymentRequest.status == PaymentStatus.PENDING,
                PaymentRequest.created_at >= now - self.pending_window,
            )
            .order_by(PaymentRequest.created_at.desc())
            .limit(1)
        ).first()

    async def initiate(
        self,
        db: Session,
        user: User,
        plan_kind: PlanKind,
        phone: str,
        now: datetime | None = None,
    ) -> InitiatedPayment:
        now = now or utcnow()
        plan_kind = PlanKind(plan_kind)

        # 1) phone shape
        try:
            formatted_phone = normalize_phone(phone, self.country_code)
        except InvalidPhoneNumberError:
            raise ValidationError("Invalid phone number", code="invalid_phone") from None

        # 2) already VIP
        existing = self.ledger.current(db, user.id, at=now)
        if existing:
            raise ActiveSubscriptionError(
                "You already have an active subscription",
                context={"subscription_end": as_utc_aware(existing.ends_at)},
            )

        # 3) prompt already in flight (best effort; Safaricom rejects overlapping prompts anyway)
        pending = self._recent_pending(db, user.id, now)
        if pending:
            raise PendingPaymentError(
                "You have a pending payment. Please check your phone or wait a moment.",
                context={"checkout_request_id": pending.checkout_request_id},
            )

        amount = self.plans.price(plan_kind)

        # 4) STK push
        try:
            stk = await self.mpesa.stk_push(
                phone=formatted_phone,
                amount=amount,
                account_reference=f"{self.account_prefix}-{plan_kind.value}",
                transaction_desc=f"VIP {plan_kind.value} Subscription",
                now=now,
            )
        except MpesaError as exc:
            logger.error(
                "payment.upstream_error",
                extra={"user_id": user.id, "plan_kind": plan_kind.value, "mpesa_error": str(exc)},
            )
            raise UpstreamError("Failed to initiate payment") from exc

        if not stk.accepted:
            logger.warning(
                "payment.rejected",
                extra={"user_id": user.id, "response_code": stk.response_code, "response_description": stk.response_description},
            )
            raise PaymentRejectedError(stk.response_description or "Failed to initiate payment")

        # 5) track it (still PENDING until the callback lands)
        payment = PaymentRequest(
            user_id=user.id,
            merchant_request_id=stk.merchant_request_id,
            checkout_request_id=stk.checkout_request_id,
            amount=amount,
            plan_kind=plan_kind,
            phone=formatted_phone,
            status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        db.add(payment)

        if not user.phone:
            user.phone = formatted_phone

        db.commit()

        logger.info(
            "payment.initiated",
            extra={"user_id": user.id, "checkout_request_id": stk.checkout_request_id, "plan_kind": plan_kind.value, "amount": amount},
        )
        return InitiatedPayment(
            checkout_request_id=stk.checkout_request_id,
            customer_message=stk.customer_message,
            amount=amount,
            plan_kind=plan_kind,
        )


@dataclass(frozen=True)
class PaymentStatusView:
    payment: PaymentRequest
    grant: EntitlementGrant | None


class PaymentStatusService:
    """Read-only view used by the client while it waits for the callback."""

    def __init__(self, ledger: EntitlementLedger):
        self.ledger = ledger

    def status(self, db: Session, user: User, checkout_request_id: str) -> PaymentStatusView:
        # Scoped to the caller: someone else's request looks exactly like a missing one
        payment = db.scalars(
            select(PaymentRequest).where(
                PaymentRequest.checkout_request_id == checkout_request_id,
                PaymentRequest.user_id == user.id,
            )
        ).first()
        if not payment:
            raise NotFoundError("Transaction not found")

        grant = None
        if payment.status == PaymentStatus.SUCCESS:
            grant = self.ledger.current(db, user.id)

        return PaymentStatusView(payment=payment, grant=grant)
