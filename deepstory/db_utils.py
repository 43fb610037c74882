"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Set

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


def ensure_database_schema() -> None:
    """Create the snapshot table on first start and add late columns.

    Runs on every application start, so it only touches what is missing.
    Databases created before ``updated_at`` existed get the column added in
    place.
    """

    try:
        inspector = inspect(db.engine)
        table_names = inspector.get_table_names()

        # Import locally to avoid circular import issues during application setup.
        from .models import StoredProject

        if "project_snapshots" not in table_names:
            StoredProject.__table__.create(bind=db.engine)
            return

        columns = _get_column_names("project_snapshots")
        if "updated_at" not in columns:
            with db.engine.begin() as connection:
                connection.execute(
                    text("ALTER TABLE project_snapshots ADD COLUMN updated_at DATETIME")
                )
    except SQLAlchemyError:
        # Do not continue with a partially configured database.
        raise
