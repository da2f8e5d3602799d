"""
Pytest fixtures for the expense approval test suite.

Every test gets its own SQLite file under tmp_path, migrated the same way the
application migrates at startup, and one seeded company:

- admin
- manager (direct manager of ``employee``)
- director
- finance
- employee (reports to ``manager``)
- loner (employee without a manager)
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database.databse import get_db, utcnow
from app.database.migration import run_migration
from app.database.models.approval import ApprovalRule
from app.database.models.users import Company, User
from app.logic.actor import Actor
from app.logic.constants import DEFAULT_EXPENSE_CATEGORIES


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'workflow.db'}",
        connect_args={"check_same_thread": False},
    )
    run_migration(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def _user(db, company, name, role, manager=None, department=None):
    user = User(
        company_id=company.id,
        name=name,
        email=f"{name}@{company.name.lower()}.example.com",
        password_hash="not-a-real-hash",
        role=role,
        department=department,
        manager_id=manager.id if manager else None,
        created_at=utcnow(),
    )
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def tenant(db):
    company = Company(
        name="Acme",
        country="US",
        currency_code="USD",
        max_expense_amount=Decimal("10000"),
        approval_required=True,
        expense_categories=list(DEFAULT_EXPENSE_CATEGORIES),
        fallback_to_manager=True,
        created_at=utcnow(),
    )
    db.add(company)
    db.flush()

    admin = _user(db, company, "admin", "admin")
    manager = _user(db, company, "manager", "manager", department="Engineering")
    director = _user(db, company, "director", "director")
    finance = _user(db, company, "finance", "finance", department="Finance")
    employee = _user(db, company, "employee", "employee", manager=manager, department="Engineering")
    loner = _user(db, company, "loner", "employee")
    db.commit()

    return SimpleNamespace(
        company_id=company.id,
        admin=admin.id,
        manager=manager.id,
        director=director.id,
        finance=finance.id,
        employee=employee.id,
        loner=loner.id,
        roles={
            admin.id: "admin",
            manager.id: "manager",
            director.id: "director",
            finance.id: "finance",
            employee.id: "employee",
            loner.id: "employee",
        },
    )


@pytest.fixture
def other_tenant(db):
    company = Company(name="Globex", country="DE", currency_code="EUR", created_at=utcnow())
    db.add(company)
    db.flush()
    admin = _user(db, company, "boss", "admin")
    db.commit()
    return SimpleNamespace(company_id=company.id, admin=admin.id)


@pytest.fixture
def actor(tenant):
    """actor(user_id) -> Actor carrying the seeded user's role."""
    def build(user_id):
        return Actor(user_id=user_id, role=tenant.roles[user_id], company_id=tenant.company_id)
    return build


@pytest.fixture
def add_rule(db, tenant):
    """Insert an approval rule row directly; returns its id."""
    def build(name="rule", rule_type="sequence", **fields):
        rule = ApprovalRule(
            company_id=tenant.company_id,
            name=name,
            rule_type=rule_type,
            conditions=fields.pop("conditions", {}),
            approver_sequence=fields.pop("approver_sequence", []),
            amount_thresholds=fields.pop("amount_thresholds", []),
            auto_approve=fields.pop("auto_approve", {}),
            created_at=fields.pop("created_at", utcnow()),
            **fields,
        )
        db.add(rule)
        db.commit()
        return rule.id
    return build


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers(tenant):
    def build(user_id, company_id=None):
        return {
            "X-User-Id": str(user_id),
            "X-User-Role": tenant.roles[user_id],
            "X-Company-Id": str(company_id or tenant.company_id),
        }
    return build
