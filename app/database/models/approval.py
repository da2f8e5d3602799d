from sqlalchemy import Column, Integer, String, ForeignKey, Text, Boolean, Numeric, JSON, TIMESTAMP
from app.database.databse import Base, utcnow

class ApprovalRule(Base):
    """Company-scoped rule deciding who approves an expense.

    The type-specific payload lives in JSON columns so that one row holds a
    whole rule, whichever of the five rule types it is.
    """
    __tablename__ = "approval_rules"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    rule_type = Column(String(32), nullable=False, default="sequence")

    # {"categories": [...], "departments": [...], "min_amount": x, "max_amount": y}
    conditions = Column(JSON, nullable=False, default=dict)
    # [{"user_id": 1, "role": "manager", "level": 1}, ...]
    approver_sequence = Column(JSON, nullable=False, default=list)
    percentage_threshold = Column(Numeric(5, 2), nullable=True)
    specific_approver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    # [{"min_amount": 0, "max_amount": 1000, "approvers": [..], "requires_all_approvals": true}, ...]
    amount_thresholds = Column(JSON, nullable=False, default=list)
    # {"enabled": false, "max_amount": x, "trusted_employees": [...]}
    auto_approve = Column(JSON, nullable=False, default=dict)

    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=True)
