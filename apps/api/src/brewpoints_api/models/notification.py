from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, DateTime, Enum as SqlEnum, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from brewpoints_api.db.base import Base


def _enum_values(enum: type[Enum]) -> list[str]:
    return [member.value for member in enum]


class NotificationStatusEnum(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationKindEnum(str, Enum):
    REDEMPTION = "redemption"
    POINTS = "points"
    REFERRAL = "referral"
    GOAL = "goal"
    BIRTHDAY = "birthday"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(SqlEnum(NotificationKindEnum, name="notification_kind_enum", values_callable=_enum_values), nullable=False)
    status = Column(SqlEnum(NotificationStatusEnum, name="notification_status_enum", values_callable=_enum_values), nullable=False, server_default=NotificationStatusEnum.PENDING.value)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
