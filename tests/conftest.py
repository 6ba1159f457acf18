from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

import pytest

from querybridge.connections.schemas import Connection
from querybridge.connections.services import ConnectionService
from querybridge.core.config import Settings
from querybridge.datasets.schemas import Dataset


ORDERS = [
    (1, 1, "Ada", 120.5, "paid", "2024-01-03"),
    (2, 1, "Ada", 80.0, "pending", "2024-01-09"),
    (3, 2, "Grace", 42.25, "paid", "2024-02-14"),
    (4, 3, "Linus", 300.0, "refunded", "2024-03-01"),
    (5, 2, "Grace", 15.75, "paid", "2024-03-22"),
]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, pool_max_connections=2, preview_row_limit=3, sample_row_limit_max=4)


@pytest.fixture
def sqlite_db(tmp_path: Path) -> Path:
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE customers (
                id INTEGER PRIMARY KEY,
                name VARCHAR(80) NOT NULL,
                email TEXT
            );
            CREATE TABLE orders (
                id INTEGER PRIMARY KEY,
                customer_id INTEGER NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
                customer TEXT,
                amount REAL,
                status VARCHAR(20) DEFAULT 'pending',
                created_at DATE
            );
            CREATE VIEW paid_orders AS SELECT * FROM orders WHERE status = 'paid';
            """
        )
        conn.executemany(
            "INSERT INTO customers (id, name, email) VALUES (?, ?, ?)",
            [(1, "Ada", "ada@example.com"), (2, "Grace", None), (3, "Linus", "linus@example.com")],
        )
        conn.executemany("INSERT INTO orders VALUES (?, ?, ?, ?, ?, ?)", ORDERS)
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def sqlite_connection(sqlite_db: Path) -> Connection:
    return Connection(id="conn-sqlite", name="Shop", kind="sqlite", config={"database": str(sqlite_db)})


@pytest.fixture
def postgres_connection() -> Connection:
    return Connection(
        id="conn-pg",
        kind="postgres",
        config={"host": "db.internal", "database": "analytics", "username": "reader", "password": "s3cret-pw"},
    )


@pytest.fixture
async def service(settings: Settings):
    svc = ConnectionService(settings=settings)
    yield svc
    await svc.close()


class FakeConnections:
    def __init__(self, *connections: Connection) -> None:
        self.items = {c.id: c for c in connections}

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self.items.get(connection_id)


class FakeDatasets:
    def __init__(self, *datasets: Dataset) -> None:
        self.items = {d.id: d for d in datasets}

    async def get_dataset(self, dataset_id: str) -> Optional[Dataset]:
        return self.items.get(dataset_id)
