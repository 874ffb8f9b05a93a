import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sureodds.core.errors import ValidationError
from sureodds.core.plans import PlanKind
from sureodds.models.entitlement import EntitlementGrant
from sureodds.models.user import User
from sureodds.models.voucher import Voucher
from sureodds.services.ledger import EntitlementLedger
from sureodds.utils.dt import as_utc_aware, utcnow

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10


def generate_voucher_code(plan_kind: PlanKind) -> str:
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    return f"{PlanKind(plan_kind).value}-{suffix}"


@dataclass(frozen=True)
class Redemption:
    voucher: Voucher
    grant: EntitlementGrant


class VoucherService:
    def __init__(self, ledger: EntitlementLedger, ttl: timedelta = timedelta(days=7)):
        self.ledger = ledger
        self.ttl = ttl

    def create(self, db: Session, email: str, plan_kind: PlanKind, now: datetime | None = None) -> Voucher:
        now = now or utcnow()
        for _ in range(MAX_CODE_ATTEMPTS):
            voucher = Voucher(
                code=generate_voucher_code(plan_kind),
                plan_kind=PlanKind(plan_kind),
                email=email,
                is_redeemed=False,
                expires_at=now + self.ttl,
                created_at=now,
            )
            db.add(voucher)
            try:
                db.commit()
            except IntegrityError:
                # code collision; roll back and draw again
                db.rollback()
                continue
            logger.info("voucher.created", extra={"code": voucher.code, "plan_kind": voucher.plan_kind.value})
            return voucher
        raise RuntimeError("Could not generate a unique voucher code")

    def redeem(self, db: Session, user: User, code: str, now: datetime | None = None) -> Redemption:
        now = now or utcnow()
        normalized = (code or "").strip().upper()
        if not normalized:
            raise ValidationError("Voucher code is required")

        voucher = db.scalars(select(Voucher).where(Voucher.code == normalized)).first()
        if not voucher:
            raise ValidationError("Invalid voucher code", code="invalid_voucher")
        if voucher.is_redeemed:
            raise ValidationError("This voucher has already been used", code="voucher_used")
        if as_utc_aware(voucher.expires_at) < now:
            raise ValidationError("This voucher has expired", code="voucher_expired")

        try:
            result = db.execute(
                update(Voucher)
                .where(Voucher.id == voucher.id, Voucher.is_redeemed.is_(False))
                .values(is_redeemed=True, redeemed_by=user.id, redeemed_at=now)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                db.rollback()
                raise ValidationError("This voucher has already been used", code="voucher_used")

            grant = self.ledger.activate(db, user.id, voucher.plan_kind, now, commit=False)
            db.commit()
        except ValidationError:
            raise
        except Exception:
            db.rollback()
            raise

        logger.info("voucher.redeemed", extra={"code": voucher.code, "user_id": user.id})
        return Redemption(voucher=voucher, grant=grant)
