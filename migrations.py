# migrations.py
# Bring an existing feedback database up to the shape the API expects.

import logging

from sqlalchemy import inspect
from sqlmodel import Session, text

from db import engine

logger = logging.getLogger(__name__)

SUBMISSION_INDEX = "feedback_responses_submission_key"
SUBMISSION_COLUMNS = ("form_id", "course_id", "teacher_id", "student_id")


def _ensure_column(session: Session, table: str, column: str, column_type: str) -> None:
    inspector = inspect(session.bind)
    existing_columns = {col["name"] for col in inspector.get_columns(table)}

    if column in existing_columns:
        print(f"ℹ️  {table}.{column} already exists; skipping.")
        return

    session.execute(text(f'ALTER TABLE "{table}" ADD COLUMN {column} {column_type}'))
    print(f"✅ Added {table}.{column} column ({column_type}).")


def _has_submission_key(session: Session) -> bool:
    inspector = inspect(session.bind)
    wanted = list(SUBMISSION_COLUMNS)
    for constraint in inspector.get_unique_constraints("feedback_responses"):
        if constraint.get("column_names") == wanted:
            return True
    for index in inspector.get_indexes("feedback_responses"):
        if index.get("unique") and index.get("column_names") == wanted:
            return True
    return False


def _ensure_submission_key(session: Session) -> None:
    """Resubmission upserts conflict on these four columns, so they need a unique index."""
    if _has_submission_key(session):
        print(f"ℹ️  feedback_responses unique key on {', '.join(SUBMISSION_COLUMNS)} present; skipping.")
        return

    session.execute(
        text(
            f"CREATE UNIQUE INDEX IF NOT EXISTS {SUBMISSION_INDEX} "
            f"ON feedback_responses ({', '.join(SUBMISSION_COLUMNS)})"
        )
    )
    print(f"✅ Created unique index {SUBMISSION_INDEX}.")


def migrate_database() -> None:
    """Add what older databases are missing: the anonymity flag and the submission key."""
    inspector = inspect(engine)
    if not inspector.has_table("feedback_responses"):
        logger.info("feedback_responses does not exist yet; create_all will build it.")
        return

    with Session(engine) as session:
        try:
            _ensure_column(session, "feedback_responses", "is_anonymous", "BOOLEAN DEFAULT FALSE")
            _ensure_submission_key(session)
            session.commit()
        except Exception as exc:
            session.rollback()
            print(f"⚠️ Migration failed: {exc}")
            raise


if __name__ == "__main__":
    from db import create_db_and_tables

    create_db_and_tables()
    migrate_database()
