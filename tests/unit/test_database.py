"""Unit tests for pool lifecycle and migrations."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from eventauth import database


class _AsyncContext:
    def __init__(self, value=None):
        self.value = value

    async def __aenter__(self):
        return self.value

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.fetchval = AsyncMock(return_value=1)
    conn.transaction.return_value = _AsyncContext()
    return conn


@pytest.fixture
def pool(conn):
    pool = MagicMock()
    pool.acquire.return_value = _AsyncContext(conn)
    pool.close = AsyncMock()
    with patch.object(database, "_pool", pool):
        yield pool


class TestGetPool:
    async def test_uninitialized_pool_raises(self):
        with patch.object(database, "_pool", None):
            with pytest.raises(RuntimeError, match="not initialized"):
                await database.get_pool()


class TestRunMigrations:
    async def test_applies_files_in_name_order_under_lock(self, pool, conn, tmp_path):
        (tmp_path / "002_second.sql").write_text("SELECT 2;")
        (tmp_path / "001_first.sql").write_text("SELECT 1;")

        applied = await database.run_migrations(tmp_path)

        assert applied == ["001_first.sql", "002_second.sql"]
        calls = [c.args for c in conn.execute.call_args_list]
        assert calls[0] == ("SELECT pg_advisory_xact_lock($1)", database.MIGRATION_LOCK_ID)
        assert calls[1:] == [("SELECT 1;",), ("SELECT 2;",)]
        conn.transaction.assert_called_once()

    async def test_missing_directory_is_a_no_op(self, pool, conn, tmp_path):
        assert await database.run_migrations(tmp_path / "missing") == []
        conn.execute.assert_not_called()

    def test_bundled_users_migration_exists(self):
        names = [p.name for p in database.MIGRATIONS_DIR.glob("*.sql")]
        assert "001_create_users.sql" in names


class TestHealthCheck:
    async def test_healthy(self, pool):
        assert await database.health_check() is True

    async def test_uninitialized_pool_is_unhealthy(self):
        with patch.object(database, "_pool", None):
            assert await database.health_check() is False


class TestCloseDatabase:
    async def test_closes_and_forgets_pool(self, pool):
        await database.close_database()

        pool.close.assert_awaited_once()
        assert database._pool is None
