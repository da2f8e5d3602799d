from sqlalchemy import Column, Integer, String, ForeignKey, Text, Boolean, Numeric, JSON, TIMESTAMP
from sqlalchemy.orm import relationship
from app.database.databse import Base, utcnow
from app.logic.constants import DEFAULT_EXPENSE_CATEGORIES, DEFAULT_MAX_EXPENSE_AMOUNT

class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, index=True, nullable=False)
    country = Column(String(255), nullable=False)
    currency_code = Column(String(10), nullable=False, default="USD")

    # Approval policy settings read by the workflow engine
    max_expense_amount = Column(Numeric(12, 2), nullable=True, default=DEFAULT_MAX_EXPENSE_AMOUNT)
    approval_required = Column(Boolean, nullable=False, default=True)
    expense_categories = Column(JSON, nullable=False, default=lambda: list(DEFAULT_EXPENSE_CATEGORIES))
    default_approver_id = Column(Integer, nullable=True)  # users.id, checked by CompanyService
    fallback_to_manager = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=True)

    users = relationship("User", back_populates="company", cascade="all, delete-orphan")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    role = Column(String(50), nullable=False, default="employee")
    department = Column(String(100), nullable=True)
    manager_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=True)

    manager = relationship("User", remote_side=[id])
    company = relationship("Company", back_populates="users")
