"""
Bus operator owning trips and staff.
"""

from sqlalchemy import Column, Integer, String, Boolean

from busbooking.db.base import Base, TimestampMixin


class Company(Base, TimestampMixin):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    # Company-wide bypass: never auto-halt online booking on any trip
    disable_auto_halt_globally = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name={self.name})>"
