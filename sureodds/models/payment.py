import enum
from datetime import datetime
from sqlalchemy import ForeignKey, Enum, DateTime, String, Integer, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sureodds.core.plans import PlanKind
from sureodds.db.base import Base
from sureodds.utils.dt import utcnow

# Widths for processor-supplied identifiers; longer values are clipped before storing
RECEIPT_MAX_LENGTH = 64
TRANSACTION_DATE_MAX_LENGTH = 32

class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

class PaymentRequest(Base):
    __tablename__ = "payment_requests"

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    # Daraja identifiers; CheckoutRequestID is what callbacks are matched on
    merchant_request_id: Mapped[str] = mapped_column(String(64))
    checkout_request_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    amount: Mapped[int] = mapped_column(Integer)
    plan_kind: Mapped[PlanKind] = mapped_column(Enum(PlanKind, name="plan_kind"))
    phone: Mapped[str] = mapped_column(String(20))

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        default=PaymentStatus.PENDING,
    )

    # Filled in by the callback; ResultDesc is free text of no fixed length
    mpesa_receipt: Mapped[str | None] = mapped_column(String(RECEIPT_MAX_LENGTH), nullable=True)
    result_desc: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_date: Mapped[str | None] = mapped_column(String(TRANSACTION_DATE_MAX_LENGTH), nullable=True)

    created_at : Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    updated_at : Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User")

    __table_args__ = (
        Index("ix_payment_requests_user_status_created", "user_id", "status", "created_at"),
    )
