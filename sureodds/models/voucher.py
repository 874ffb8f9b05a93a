from datetime import datetime
from sqlalchemy import ForeignKey, Enum, DateTime, String, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from sureodds.core.plans import PlanKind
from sureodds.db.base import Base
from sureodds.utils.dt import utcnow

class Voucher(Base):
    __tablename__ = "vouchers"

    id: Mapped[int] = mapped_column(primary_key=True)

    # e.g. "WEEKLY-7QK2ZD"
    code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    plan_kind: Mapped[PlanKind] = mapped_column(Enum(PlanKind, name="plan_kind"))
    email: Mapped[str] = mapped_column(String(255))

    is_redeemed: Mapped[bool] = mapped_column(Boolean, default=False)
    redeemed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Deadline for redeeming the code, not for the access it grants
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
