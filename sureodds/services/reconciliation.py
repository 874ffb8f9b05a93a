"""
STK callback reconciliation.

The callback URL is public and unauthenticated, so a payload is only ever
used to look up a request we created ourselves. Anything that does not
match a PENDING request is a no-op.

    PENDING --ResultCode 0--> SUCCESS   (grant activated in the same transaction)
    PENDING --ResultCode !0-> FAILED
    SUCCESS/FAILED --any----> unchanged
"""

import enum
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from sureodds.integrations.mpesa_callbacks import MalformedCallbackError, StkCallback, parse_stk_callback
from sureodds.models.payment import (
    RECEIPT_MAX_LENGTH,
    TRANSACTION_DATE_MAX_LENGTH,
    PaymentRequest,
    PaymentStatus,
)
from sureodds.services.ledger import EntitlementLedger
from sureodds.utils.dt import utcnow

logger = logging.getLogger(__name__)


def _clip(value: str | None, limit: int) -> str | None:
    return value[:limit] if value is not None else None


class CallbackOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"
    MALFORMED = "malformed"


class CallbackReconciler:
    def __init__(self, ledger: EntitlementLedger):
        self.ledger = ledger

    def reconcile(self, db: Session, body: Any) -> CallbackOutcome:
        try:
            callback = parse_stk_callback(body)
        except MalformedCallbackError as exc:
            logger.warning("mpesa.callback.malformed", extra={"reason": str(exc), "body": body})
            return CallbackOutcome.MALFORMED

        payment = db.scalars(
            select(PaymentRequest).where(PaymentRequest.checkout_request_id == callback.checkout_request_id)
        ).first()

        if not payment:
            logger.warning("mpesa.callback.unmatched", extra={"checkout_request_id": callback.checkout_request_id})
            return CallbackOutcome.UNMATCHED

        # Fast path for redeliveries; the conditional update below is the real guard
        if payment.status != PaymentStatus.PENDING:
            logger.info(
                "mpesa.callback.duplicate",
                extra={"checkout_request_id": callback.checkout_request_id, "status": payment.status.value},
            )
            return CallbackOutcome.DUPLICATE

        if callback.succeeded:
            return self._confirm(db, payment, callback)
        return self._fail(db, payment, callback)

    def _claim(self, db: Session, payment: PaymentRequest, **values: Any) -> bool:
        """
        Move ``payment`` out of PENDING. Returns False when another worker
        got there first (zero rows matched ``status = PENDING``).
        """
        result = db.execute(
            update(PaymentRequest)
            .where(PaymentRequest.id == payment.id, PaymentRequest.status == PaymentStatus.PENDING)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def _confirm(self, db: Session, payment: PaymentRequest, callback: StkCallback) -> CallbackOutcome:
        now = utcnow()
        try:
            claimed = self._claim(
                db,
                payment,
                status=PaymentStatus.SUCCESS,
                mpesa_receipt=_clip(callback.mpesa_receipt, RECEIPT_MAX_LENGTH),
                result_desc=callback.result_desc,
                transaction_date=_clip(callback.transaction_date, TRANSACTION_DATE_MAX_LENGTH),
            )
            if not claimed:
                db.rollback()
                logger.info("mpesa.callback.duplicate", extra={"checkout_request_id": payment.checkout_request_id})
                return CallbackOutcome.DUPLICATE

            # Duration is anchored on confirmation time, not on when the prompt was sent
            grant = self.ledger.activate(db, payment.user_id, payment.plan_kind, now, commit=False)
            db.commit()
        except Exception:
            db.rollback()
            raise

        if callback.amount is not None and callback.amount != payment.amount:
            logger.warning(
                "mpesa.callback.amount_mismatch",
                extra={"checkout_request_id": payment.checkout_request_id, "expected": payment.amount, "paid": callback.amount},
            )

        logger.info(
            "mpesa.callback.confirmed",
            extra={
                "checkout_request_id": payment.checkout_request_id,
                "user_id": payment.user_id,
                "receipt": callback.mpesa_receipt,
                "grant_id": grant.id,
            },
        )
        return CallbackOutcome.CONFIRMED

    def _fail(self, db: Session, payment: PaymentRequest, callback: StkCallback) -> CallbackOutcome:
        try:
            claimed = self._claim(db, payment, status=PaymentStatus.FAILED, result_desc=callback.result_desc)
            if not claimed:
                db.rollback()
                return CallbackOutcome.DUPLICATE
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(
            "mpesa.callback.failed",
            extra={
                "checkout_request_id": payment.checkout_request_id,
                "result_code": callback.result_code,
                "result_desc": callback.result_desc,
            },
        )
        return CallbackOutcome.FAILED
