from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from procure_ledger.core.auth import ROLE_CAPABILITIES, AuthContext
from procure_ledger.db.base import Base, TimestampMixin, UUIDMixin

ROLES = tuple(ROLE_CAPABILITIES)


class User(Base, UUIDMixin, TimestampMixin):
    """Someone acting in the receipt-to-payment workflow.

    Authentication happens upstream; the role only selects a capability set.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN (" + ", ".join(f"'{role}'" for role in ROLES) + ")",
            name="ck_users_role",
        ),
    )

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)  # soft delete

    def auth_context(self) -> AuthContext:
        return AuthContext.for_role(self.id, self.name, self.role, user_email=self.email)
