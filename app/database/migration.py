from sqlalchemy import text, inspect, select
from sqlalchemy.orm import Session
from app.database.databse import engine, Base
# Imported for their side effect of registering tables on Base.metadata
from app.database.models.users import User, Company  # noqa: F401
from app.database.models.approval import ApprovalRule  # noqa: F401
from app.database.models.expense import Expense, ExpenseApprover  # noqa: F401
from app.database.models.audit import AuditLog  # noqa: F401
import logging

logger = logging.getLogger(__name__)

# Columns introduced after the first schema; older databases get them added in place
EXPECTED_COLUMNS = {
    "users": {
        "department": "VARCHAR(100)",
        "is_active": "BOOLEAN NOT NULL DEFAULT TRUE",
        "updated_at": "TIMESTAMP",
    },
    "companies": {
        "max_expense_amount": "NUMERIC(12, 2)",
        "approval_required": "BOOLEAN NOT NULL DEFAULT TRUE",
        "expense_categories": "JSON",
        "default_approver_id": "INTEGER",
        "fallback_to_manager": "BOOLEAN NOT NULL DEFAULT TRUE",
        "updated_at": "TIMESTAMP",
    },
}

_column_cache = {}

def has_column(table_name: str, column_name: str, bind=None) -> bool:
    """Check if a table has a specific column (with caching)"""
    bind = bind or engine
    cache_key = f"{bind.url}:{table_name}.{column_name}"

    if cache_key not in _column_cache:
        inspector = inspect(bind)
        if not inspector.has_table(table_name):
            return False
        columns = [col["name"] for col in inspector.get_columns(table_name)]
        _column_cache[cache_key] = column_name in columns

    return _column_cache[cache_key]

def add_column_if_not_exists(table_name: str, column_name: str, column_type: str, bind=None):
    """Add a column to a table if it doesn't exist"""
    bind = bind or engine
    if has_column(table_name, column_name, bind):
        return
    with bind.begin() as conn:
        conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_type}"))
    _column_cache[f"{bind.url}:{table_name}.{column_name}"] = True
    logger.info(f"Added column {column_name} to {table_name} table")

def check_and_add_missing_columns(bind=None):
    """Check for missing columns and add them if necessary"""
    logger.info("Checking for missing database columns...")
    for table_name, columns in EXPECTED_COLUMNS.items():
        for column_name, column_type in columns.items():
            add_column_if_not_exists(table_name, column_name, column_type, bind)
    logger.info("Column verification completed")

def create_tables_if_not_exist(bind=None):
    """Create tables if they don't exist"""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created/verified")

def backfill_expense_approvers(bind=None):
    """Create approver lookup rows for expenses stored before the table existed"""
    session = Session(bind=bind or engine)
    try:
        linked = select(ExpenseApprover.expense_id)
        missing = session.query(Expense).filter(~Expense.id.in_(linked)).all()
        rows = [
            ExpenseApprover(expense_id=expense.id, user_id=user_id, position=position)
            for expense in missing
            for position, user_id in enumerate(expense.approvers or [])
        ]
        if rows:
            session.add_all(rows)
            session.commit()
            logger.info(f"Backfilled {len(rows)} expense approver rows")
    finally:
        session.close()

def run_migration(bind=None):
    """Run complete database migration"""
    logger.info("Starting database migration...")

    # Create tables first
    create_tables_if_not_exist(bind)

    # Then add missing columns
    check_and_add_missing_columns(bind)

    backfill_expense_approvers(bind)

    logger.info("Database migration completed!")
