"""Tests for the SQLite engine setup."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import text

from secureshift.infrastructure.database.engine import build_engine

if TYPE_CHECKING:
    from pathlib import Path


class TestSqliteTransactions:
    @pytest.mark.asyncio
    async def test_read_then_write_transactions_queue_instead_of_losing_updates(
        self, tmp_path: Path
    ) -> None:
        engine = build_engine(
            f"sqlite+aiosqlite:///{tmp_path}/engine.db", connect_args={"timeout": 5}
        )
        async with engine.begin() as conn:
            await conn.execute(text("CREATE TABLE counter (n INTEGER NOT NULL)"))
            await conn.execute(text("INSERT INTO counter (n) VALUES (0)"))

        async def bump() -> None:
            async with engine.begin() as conn:
                value = (await conn.execute(text("SELECT n FROM counter"))).scalar_one()
                await asyncio.sleep(0.05)
                await conn.execute(text("UPDATE counter SET n = :n"), {"n": value + 1})

        try:
            await asyncio.gather(bump(), bump())
            async with engine.connect() as conn:
                total = (await conn.execute(text("SELECT n FROM counter"))).scalar_one()
        finally:
            await engine.dispose()

        assert total == 2
