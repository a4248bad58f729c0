"""
Minimal account record. Credentials live with the identity provider; the
booking core only needs a stable id, a phone for notifications and a role.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey

from busbooking.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(32), unique=True, index=True, nullable=False)
    role = Column(String(20), nullable=False, default="CUSTOMER")
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, phone={self.phone}, role={self.role})>"
