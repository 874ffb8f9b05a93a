import json
import logging

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from sureodds.api.deps import get_current_user, get_payment_service, get_reconciler, get_status_service
from sureodds.core.errors import ValidationError
from sureodds.db.session import get_db
from sureodds.models.user import User
from sureodds.schemas.billing import CallbackAck, PaymentStatusOut, StkPushIn, StkPushOut, SubscriptionOut
from sureodds.services.payments import PaymentInitiationService, PaymentStatusService
from sureodds.services.reconciliation import CallbackOutcome, CallbackReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mpesa", tags=["mpesa"])

CALLBACK_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


# ---------------------------
# STK push
# ---------------------------

@router.post("/stkpush", response_model=StkPushOut)
async def stk_push(
    payload: StkPushIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    service: PaymentInitiationService = Depends(get_payment_service),
):
    initiated = await service.initiate(db, user, payload.plan_type, payload.phone)
    return StkPushOut(message=initiated.customer_message, checkout_request_id=initiated.checkout_request_id)


# ---------------------------
# callback (public)
# ---------------------------

@router.post("/callback", response_model=CallbackAck)
async def mpesa_callback(
    request: Request,
    db: Session = Depends(get_db),
    reconciler: CallbackReconciler = Depends(get_reconciler),
):
    """
    Safaricom retries anything that is not a 200, and a retry carries the
    same payload, so every outcome (including our own faults) is acknowledged.
    Faults are logged as mpesa.callback.internal_fault for manual follow-up.
    """
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError:
        body = None

    logger.info("mpesa.callback.received", extra={"body": body if body is not None else raw[:500]})

    try:
        outcome = reconciler.reconcile(db, body)
    except Exception:
        db.rollback()
        logger.error("mpesa.callback.internal_fault", exc_info=True, extra={"body": body})
        return CallbackAck(ResultCode=0, ResultDesc="Accepted")

    if outcome in (CallbackOutcome.CONFIRMED, CallbackOutcome.FAILED):
        return CallbackAck(ResultCode=0, ResultDesc="Callback received and processed")
    return CallbackAck(ResultCode=0, ResultDesc="Accepted")


@router.options("/callback")
def mpesa_callback_preflight():
    # some Daraja deployments send a preflight before the callback
    return Response(status_code=200, headers=CALLBACK_CORS_HEADERS)


# ---------------------------
# status polling
# ---------------------------

@router.get("/status", response_model=PaymentStatusOut)
def payment_status(
    checkout_request_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    service: PaymentStatusService = Depends(get_status_service),
):
    if not checkout_request_id:
        raise ValidationError("Missing checkout_request_id")

    view = service.status(db, user, checkout_request_id)
    return PaymentStatusOut(
        status=view.payment.status,
        mpesa_receipt=view.payment.mpesa_receipt,
        result_desc=view.payment.result_desc,
        subscription=SubscriptionOut.model_validate(view.grant) if view.grant else None,
    )
