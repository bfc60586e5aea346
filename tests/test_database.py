import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from genstudio.core import database


@pytest.mark.asyncio
async def test_get_db_yields_a_session(monkeypatch, session_factory):
    monkeypatch.setattr(database, "SessionLocal", session_factory)

    gen = database.get_db()
    db = await gen.__anext__()
    assert isinstance(db, AsyncSession)
    assert (await db.execute(text("SELECT 1"))).scalar() == 1

    with pytest.raises(StopAsyncIteration):
        await gen.__anext__()
