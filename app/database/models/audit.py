from sqlalchemy import Column, Integer, String, Text, JSON, TIMESTAMP
from app.database.databse import Base, utcnow

class AuditLog(Base):
    """Append-only record of a state change. Rows are written once and never updated."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)  # None for system-initiated changes
    action = Column(String(64), nullable=False, index=True)
    resource_type = Column(String(32), nullable=False)
    resource_id = Column(Integer, nullable=True)
    changes = Column(JSON, nullable=False, default=dict)  # {"before": {...}, "after": {...}}
    severity = Column(String(16), nullable=False, default="low")
    description = Column(Text, nullable=False)
    timestamp = Column(TIMESTAMP, nullable=False, default=utcnow, index=True)
