from busbooking.db.base import Base, TimestampMixin
from busbooking.db.session import Database, get_database, get_db

__all__ = ["Base", "TimestampMixin", "Database", "get_database", "get_db"]
