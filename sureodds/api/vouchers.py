from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sureodds.api.deps import get_current_user, get_voucher_service, require_admin
from sureodds.db.session import get_db
from sureodds.models.user import User
from sureodds.schemas.billing import CreateVoucherIn, RedeemVoucherIn, RedeemVoucherOut, SubscriptionOut, VoucherOut
from sureodds.services.vouchers import VoucherService

router = APIRouter(prefix="/vouchers", tags=["vouchers"])

# Admin: issue a code for a customer (delivery happens out of band)
@router.post("", response_model=VoucherOut, status_code=201)
def create_voucher(
    payload: CreateVoucherIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    service: VoucherService = Depends(get_voucher_service),
):
    return service.create(db, payload.email, payload.plan_type)

@router.post("/redeem", response_model=RedeemVoucherOut)
def redeem_voucher(
    payload: RedeemVoucherIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    service: VoucherService = Depends(get_voucher_service),
):
    redemption = service.redeem(db, user, payload.code)
    return RedeemVoucherOut(
        message="Voucher redeemed successfully!",
        subscription=SubscriptionOut.model_validate(redemption.grant),
    )
