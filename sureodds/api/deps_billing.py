from fastapi import Depends
from sqlalchemy.orm import Session

from sureodds.db.session import get_db
from sureodds.api.deps import get_current_user, get_ledger
from sureodds.core.errors import EntitlementRequiredError
from sureodds.models.entitlement import EntitlementGrant
from sureodds.models.user import User
from sureodds.services.ledger import EntitlementLedger

def require_active_entitlement(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    ledger: EntitlementLedger = Depends(get_ledger),
) -> EntitlementGrant:
    # Same predicate the rest of the app uses for "is VIP"
    grant = ledger.current(db, user.id)
    if not grant:
        raise EntitlementRequiredError("Active VIP subscription required")
    return grant
