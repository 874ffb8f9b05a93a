from datetime import datetime
from sqlalchemy import ForeignKey, Enum, DateTime, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sureodds.core.plans import PlanKind
from sureodds.db.base import Base
from sureodds.utils.dt import utcnow

class EntitlementGrant(Base):
    """
    One time-boxed block of VIP access.

    Rows are never deleted. Expiry is ``ends_at`` in the past; a grant that
    was superseded by a newer one has ``is_active`` flipped to False.
    """
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    plan_kind: Mapped[PlanKind] = mapped_column(Enum(PlanKind, name="plan_kind"))

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at : Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user = relationship("User")

    __table_args__ = (
        Index("ix_subscriptions_user_active", "user_id", "is_active"),
    )
