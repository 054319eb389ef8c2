"""
Database models for the local metric sink
SQLAlchemy ORM model mirroring the remote performance_logs table
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, DateTime, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class PerformanceLog(Base):
    """
    One delivered telemetry record, attributed to a principal
    """
    __tablename__ = "performance_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False, index=True)
    route = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)
    duration_ms = Column(Float, nullable=False)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<PerformanceLog(id={self.id}, route='{self.route}', "
            f"action='{self.action}', duration_ms={self.duration_ms})>"
        )
