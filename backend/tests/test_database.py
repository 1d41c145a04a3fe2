"""Tests for database startup."""
import pytest
from sqlalchemy.exc import OperationalError

from licitaradar.core import database
from licitaradar.services import db_ops


class TestInitDb:
    async def test_creates_tables_and_session_factory(self, tmp_path):
        factory = await database.init_db(f"sqlite+aiosqlite:///{tmp_path / 'startup.db'}")
        try:
            assert database.db_ready()
            async with factory() as session:
                assert await db_ops.count_tenders(session) == 0
        finally:
            await database.close_db()

    async def test_connection_error_is_raised(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'missing-dir' / 'startup.db'}"
        with pytest.raises(OperationalError):
            await database.init_db(url)
        assert not database.db_ready()
        await database.close_db()
