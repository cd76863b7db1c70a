from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from openinsight.models.domain import ColumnInfo, SchemaSnapshot


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep tests independent of the developer's environment."""
    monkeypatch.setenv("OPENROUTER_KEY", "test-key-openrouter")
    monkeypatch.delenv("OPENROUTER_MODEL", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "WARNING")


@pytest.fixture
def sqlite_db(tmp_path: Path) -> str:
    """A seeded sqlite file; returns its ``sqlite://`` connection string."""
    path = tmp_path / "test.db"
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE "User" (
                "id" INTEGER PRIMARY KEY,
                "name" TEXT NOT NULL,
                "email" TEXT,
                "createdAt" TIMESTAMP
            );
            CREATE TABLE "Order" (
                "orderId" INTEGER PRIMARY KEY,
                "userId" INTEGER REFERENCES "User"("id"),
                "total" REAL
            );
            CREATE TABLE audit_log (id INTEGER PRIMARY KEY AUTOINCREMENT, message TEXT);
            CREATE VIEW big_orders AS SELECT * FROM "Order" WHERE "total" > 100;
            INSERT INTO "User" VALUES (1, 'Alice', 'alice@example.com', '2024-01-01');
            INSERT INTO "User" VALUES (2, 'Bob', NULL, '2024-02-01');
            INSERT INTO "Order" VALUES (10, 1, 25.5), (11, 1, 250.0), (12, 2, 99.0);
            """
        )
        conn.commit()
    finally:
        conn.close()
    return f"sqlite://{path}"


@pytest.fixture
def schema() -> SchemaSnapshot:
    return SchemaSnapshot(
        tables={
            "User": (
                ColumnInfo(name="id", data_type="INTEGER"),
                ColumnInfo(name="name", data_type="TEXT"),
            ),
            "Order": (
                ColumnInfo(name="orderId", data_type="INTEGER"),
                ColumnInfo(name="userId", data_type="INTEGER"),
                ColumnInfo(name="total", data_type="REAL"),
            ),
        }
    )
