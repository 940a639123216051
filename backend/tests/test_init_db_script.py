import pytest
from sqlalchemy import inspect

from receiptly.core.database import build_engine
from receiptly.scripts import init_db as init_db_script


@pytest.mark.asyncio
async def test_init_db_script_creates_receipts_table(tmp_path, monkeypatch):
    url = f"sqlite+aiosqlite:///{tmp_path / 'receiptly.db'}"
    monkeypatch.setattr(init_db_script, "resolve_database_url", lambda cfg: url)

    await init_db_script.main()

    engine = build_engine(url)
    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    await engine.dispose()
    assert "receipts" in tables
