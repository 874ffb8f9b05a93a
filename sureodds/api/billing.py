from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sureodds.api.deps import get_current_user, get_ledger, get_plan_catalog
from sureodds.core.plans import PlanCatalog
from sureodds.db.session import get_db
from sureodds.models.user import User
from sureodds.schemas.billing import PlanOut, SubscriptionOut, SubscriptionStatusOut
from sureodds.services.ledger import EntitlementLedger

router = APIRouter(prefix="/billing", tags=["billing"])

# Display available subscription plans
@router.get("/plans", response_model=list[PlanOut])
def list_plans(plans: PlanCatalog = Depends(get_plan_catalog)):
    return [
        PlanOut(plan_type=kind, price=terms.price, access_duration_days=terms.duration.days)
        for kind, terms in plans.as_list()
    ]

# Current user's VIP status
@router.get("/subscription", response_model=SubscriptionStatusOut)
def my_subscription(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    ledger: EntitlementLedger = Depends(get_ledger),
):
    grant = ledger.current(db, user.id)
    if not grant:
        return SubscriptionStatusOut(has_active_subscription=False)
    return SubscriptionStatusOut(has_active_subscription=True, subscription=SubscriptionOut.model_validate(grant))
