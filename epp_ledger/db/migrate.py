"""Additive, idempotent schema upgrades for SQLite installations."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Engine

# Columns added after the first release. Tables missing entirely are left to
# ``Base.metadata.create_all``.
ADDED_COLUMNS: dict[str, dict[str, str]] = {
    "inventory_items": {
        "size": "TEXT DEFAULT '' NOT NULL",
        "useful_life_months": "INTEGER",
        "is_frozen": "INTEGER DEFAULT 0 NOT NULL",
        "frozen_reason": "TEXT",
    },
    "stock_movements": {
        "reference_kind": "TEXT",
        "reference_id": "INTEGER",
    },
    "deliveries": {
        "employee_signature_ip": "TEXT",
        "responsible_position": "TEXT",
    },
    "delivery_lines": {
        "replaces_assignment_id": "INTEGER",
    },
    "assignments": {
        "renewed_by_delivery_id": "INTEGER",
    },
}


def _column_names(engine: Engine, table: str) -> set[str]:
    with engine.connect() as conn:
        return {row["name"] for row in conn.execute(text(f"PRAGMA table_info({table})")).mappings().all()}


def _add_column_sqlite(engine: Engine, table: str, col_def: str) -> None:
    with engine.begin() as conn:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col_def}"))


def _create_index_if_not_exists(
    engine: Engine,
    table: str,
    name: str,
    cols: list[str],
    *,
    unique: bool = False,
    where: str | None = None,
) -> None:
    unique_sql = "UNIQUE " if unique else ""
    where_sql = f" WHERE {where}" if where else ""
    with engine.begin() as conn:
        conn.execute(
            text(f"CREATE {unique_sql}INDEX IF NOT EXISTS {name} ON {table} ({', '.join(cols)}){where_sql}")
        )


def run_migrations(engine: Engine) -> None:
    """Bring an existing SQLite database up to the current models."""

    if engine.dialect.name != "sqlite":
        return

    for table, needed in ADDED_COLUMNS.items():
        existing = _column_names(engine, table)
        if not existing:
            continue
        for name, dtype in needed.items():
            if name not in existing:
                _add_column_sqlite(engine, table, f"{name} {dtype}")

    if _column_names(engine, "stock_movements"):
        _create_index_if_not_exists(engine, "stock_movements", "ix_stock_movements_item_id", ["item_id", "id"])

    if _column_names(engine, "assignments"):
        with engine.begin() as conn:
            conn.execute(text("UPDATE assignments SET size = '' WHERE size IS NULL"))
        # One ACTIVE holding per employee, item and size.
        _create_index_if_not_exists(
            engine,
            "assignments",
            "uq_assignments_active_holding",
            ["employee_id", "item_id", "size"],
            unique=True,
            where="status = 'ACTIVE'",
        )
        _create_index_if_not_exists(engine, "assignments", "ix_assignments_renewal_date", ["site_id", "renewal_date"])
