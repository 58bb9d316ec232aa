"""Alembic migration tests.

File named test_zzz_alembic.py to sort LAST in pytest collection order.
The migration is rendered as offline PostgreSQL SQL, so no database is needed.
"""

import importlib.util
import io
import re
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations

from treasure.db import models  # noqa: F401
from treasure.db.base import Base

VERSIONS = Path(__file__).resolve().parents[1] / "alembic" / "versions"

_CREATE_TABLE = re.compile(r"CREATE TABLE IF NOT EXISTS (\w+) \((.*?)\n\s*\);?$", re.S | re.M)
_NOT_COLUMNS = {"CONSTRAINT", "PRIMARY", "UNIQUE", "FOREIGN", "CHECK"}


def _load_migration():
    module_spec = importlib.util.spec_from_file_location("treasure_migration", VERSIONS / "001_treasure_tables.py")
    migration = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(migration)
    return migration


def _render_upgrade() -> str:
    migration = _load_migration()
    buffer = io.StringIO()
    context = MigrationContext.configure(dialect_name="postgresql", opts={"as_sql": True, "output_buffer": buffer})
    with Operations.context(context):
        migration.upgrade()
    return buffer.getvalue()


def _migration_tables() -> dict[str, set[str]]:
    tables = {}
    for name, body in _CREATE_TABLE.findall(_render_upgrade()):
        columns = set()
        for line in body.splitlines():
            match = re.match(r"\s*(\w+)\s", line)
            if match and match.group(1) not in _NOT_COLUMNS:
                columns.add(match.group(1))
        tables[name] = columns
    return tables


def test_migration_creates_every_model_table() -> None:
    """Table names in the migration match the ORM metadata exactly."""
    assert set(_migration_tables()) == set(Base.metadata.tables)


def test_migration_columns_match_models() -> None:
    migrated = _migration_tables()
    for name, table in Base.metadata.tables.items():
        assert migrated[name] == {column.name for column in table.columns}, name


def test_single_root_revision() -> None:
    migration = _load_migration()
    assert migration.revision == "001_treasure_tables"
    assert migration.down_revision is None
