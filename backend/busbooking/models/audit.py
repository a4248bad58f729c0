"""
Append-only records written after commit: the audit trail and the outbox of
user notifications handed to the delivery channel.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey

from busbooking.db.base import Base, TimestampMixin


class AuditLog(Base, TimestampMixin):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor = Column(String(64), nullable=False)  # user id or "SYSTEM"
    action = Column(String(64), nullable=False, index=True)
    trip_id = Column(Integer, ForeignKey("trips.id"), nullable=True, index=True)
    details = Column(Text, nullable=False)  # JSON-serialised audit event


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
