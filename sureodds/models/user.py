from datetime import datetime
from sqlalchemy import Enum, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sureodds.db.base import Base
from sureodds.utils.dt import utcnow

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # Stored normalized (2547XXXXXXXX); backfilled from the first STK push
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    role: Mapped[str] = mapped_column(Enum("USER", "ADMIN", name="user_role"), default="USER")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"
