from datetime import timedelta
from functools import lru_cache

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from sureodds.core.config import settings
from sureodds.core.errors import AuthenticationError, PermissionDeniedError
from sureodds.core.plans import PlanCatalog
from sureodds.core.security import decode_token
from sureodds.db.session import get_db
from sureodds.integrations.mpesa_client import MpesaClient
from sureodds.models.user import User
from sureodds.services.ledger import EntitlementLedger
from sureodds.services.payments import PaymentInitiationService, PaymentStatusService
from sureodds.services.reconciliation import CallbackReconciler
from sureodds.services.vouchers import VoucherService

bearer_scheme = HTTPBearer(auto_error=False)

def get_current_user(
        creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        db: Session = Depends(get_db)
) -> User:
    if creds is None:
        raise AuthenticationError("Please log in to continue")
    try:
        payload = decode_token(creds.credentials)
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise AuthenticationError("Invalid or expired token") from None

    user = db.get(User, user_id)
    if not user:
        raise AuthenticationError("User no longer exists")
    return user

def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return user

# ---------------------------
# service wiring
# ---------------------------

@lru_cache
def get_plan_catalog() -> PlanCatalog:
    return PlanCatalog.from_settings(settings)

def get_mpesa_client() -> MpesaClient:
    return MpesaClient.from_settings(settings)

def get_ledger(plans: PlanCatalog = Depends(get_plan_catalog)) -> EntitlementLedger:
    return EntitlementLedger(plans)

def get_payment_service(
        mpesa: MpesaClient = Depends(get_mpesa_client),
        ledger: EntitlementLedger = Depends(get_ledger),
        plans: PlanCatalog = Depends(get_plan_catalog),
) -> PaymentInitiationService:
    return PaymentInitiationService(
        mpesa,
        ledger,
        plans,
        pending_window=timedelta(minutes=settings.payment_pending_window_minutes),
        account_prefix=settings.mpesa_account_prefix,
        country_code=settings.mpesa_country_code,
    )

def get_status_service(ledger: EntitlementLedger = Depends(get_ledger)) -> PaymentStatusService:
    return PaymentStatusService(ledger)

def get_reconciler(ledger: EntitlementLedger = Depends(get_ledger)) -> CallbackReconciler:
    return CallbackReconciler(ledger)

def get_voucher_service(ledger: EntitlementLedger = Depends(get_ledger)) -> VoucherService:
    return VoucherService(ledger, ttl=timedelta(days=settings.voucher_ttl_days))
