import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from procure_ledger.db.base import Base, TimestampMixin, UUIDMixin


class TaskType(str, enum.Enum):
    ACTIONABLE = "actionable"
    INFORMATIONAL = "informational"


class TaskCategory(str, enum.Enum):
    GR_BILL_REQUIRED = "GR_BILL_REQUIRED"
    GR_BILL_CREATED = "GR_BILL_CREATED"
    GR_READY_FOR_PAYMENT = "GR_READY_FOR_PAYMENT"
    GR_PAYMENT_APPROVED = "GR_PAYMENT_APPROVED"


class TaskNotification(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "task_notifications"

    task_type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    assigned_by_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    link_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="MEDIUM")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")  # pending, completed
    auto_completable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
