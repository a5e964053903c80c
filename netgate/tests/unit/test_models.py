from __future__ import annotations

from netgate.models import Base

REVOCABLE_TABLES = ("users", "devices", "user_sessions", "connections")


def test_every_table_is_keyed_by_uuid_id() -> None:
    for table in Base.metadata.sorted_tables:
        assert list(table.primary_key.columns.keys()) == ["id"], table.name


def test_revocable_tables_share_the_active_flag() -> None:
    for name in REVOCABLE_TABLES:
        column = Base.metadata.tables[name].c.is_active
        assert not column.nullable
        assert column.server_default is not None


def test_append_tables_only_record_creation_time() -> None:
    for name in ("user_sessions", "audit_logs"):
        columns = Base.metadata.tables[name].c
        assert "created_at" in columns
        assert "updated_at" not in columns
    assert "updated_at" in Base.metadata.tables["devices"].c
