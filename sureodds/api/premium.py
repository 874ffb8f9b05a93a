from fastapi import APIRouter, Depends
from sureodds.api.deps_billing import require_active_entitlement
from sureodds.schemas.billing import SubscriptionOut

router = APIRouter(prefix="/premium", tags=["premium"])

@router.get("/access")
def vip_access(grant = Depends(require_active_entitlement)):
    return {"ok": True, "message": "You have VIP access!", "subscription": SubscriptionOut.model_validate(grant)}
