from sqlalchemy import Column, Integer, Numeric, String, ForeignKey, Text, Date, JSON, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database.databse import Base, utcnow

class Expense(Base):
    """One submitted cost claim with its embedded approval state.

    ``approvers`` and ``approval_history`` are stored on the row itself so a
    decision is always a single-row update. ``version`` is checked on every
    UPDATE/DELETE; a writer holding a stale copy gets ``StaleDataError``.
    """
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="USD")
    category = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    expense_date = Column(Date, nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    notes = Column(Text, nullable=True)

    status = Column(String(50), nullable=False, default="pending", index=True)  # pending, approved, rejected, reimbursed
    rule_id = Column(Integer, ForeignKey("approval_rules.id", ondelete="SET NULL"), nullable=True)
    completion_policy = Column(JSON, nullable=True)
    approvers = Column(JSON, nullable=False, default=list)
    approval_history = Column(JSON, nullable=False, default=list)
    current_approver_index = Column(Integer, nullable=False, default=0)
    final_decision = Column(String(20), nullable=False, default="pending")
    final_decision_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    final_decision_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    employee = relationship("User", foreign_keys=[employee_id])
    approver_links = relationship(
        "ExpenseApprover",
        order_by="ExpenseApprover.position",
        cascade="all, delete-orphan"
    )


class ExpenseApprover(Base):
    """Lookup rows mirroring ``Expense.approvers`` so approver membership can be queried in SQL."""
    __tablename__ = "expense_approvers"

    id = Column(Integer, primary_key=True, index=True)
    expense_id = Column(Integer, ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
