import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from sureodds.core.plans import PlanCatalog, PlanKind
from sureodds.models.entitlement import EntitlementGrant
from sureodds.models.user import User
from sureodds.utils.dt import utcnow

logger = logging.getLogger(__name__)


class EntitlementLedger:
    """
    Source of truth for "is this user VIP right now".

    Every write path (callback, voucher) goes through ``activate`` so the
    one-active-grant-per-user rule lives in a single place.
    """

    def __init__(self, plans: PlanCatalog):
        self.plans = plans

    def activate(
        self,
        db: Session,
        user_id: int,
        plan_kind: PlanKind,
        anchor: datetime | None = None,
        *,
        commit: bool = True,
    ) -> EntitlementGrant:
        anchor = anchor or utcnow()

        # Serialize writers per user. SQLite ignores FOR UPDATE but already
        # holds the database write lock once the first UPDATE below runs.
        db.execute(select(User.id).where(User.id == user_id).with_for_update())

        db.execute(
            update(EntitlementGrant)
            .where(EntitlementGrant.user_id == user_id, EntitlementGrant.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )

        grant = EntitlementGrant(
            user_id=user_id,
            plan_kind=PlanKind(plan_kind),
            starts_at=anchor,
            ends_at=anchor + self.plans.duration(plan_kind),
            is_active=True,
        )
        db.add(grant)
        db.flush()

        if commit:
            db.commit()

        logger.info(
            "entitlement.activated",
            extra={"user_id": user_id, "plan_kind": grant.plan_kind.value, "ends_at": grant.ends_at.isoformat()},
        )
        return grant

    def current(self, db: Session, user_id: int, at: datetime | None = None) -> EntitlementGrant | None:
        at = at or utcnow()
        return db.scalars(
            select(EntitlementGrant)
            .where(
                EntitlementGrant.user_id == user_id,
                EntitlementGrant.is_active.is_(True),
                EntitlementGrant.ends_at >= at,
            )
            .order_by(EntitlementGrant.ends_at.desc(), EntitlementGrant.id.desc())
            .limit(1)
        ).first()
