from __future__ import annotations

import ssl

import pytest
from pymysql import err as mysql_err
from sqlalchemy.exc import OperationalError

from querybridge.connections.adapters import registry
from querybridge.connections.adapters.mysql import MySQLDialect
from querybridge.connections.schemas import SqlConnectionConfig
from querybridge.core.config import Settings
from querybridge.core.exceptions import ConnectivityError, ExecutionError


@pytest.fixture
def dialect() -> MySQLDialect:
    return registry.require("mysql")


def test_url_defaults(dialect: MySQLDialect) -> None:
    url = dialect.build_url(SqlConnectionConfig(host="mysql.internal", database="shop", username="app", password="pw"))

    assert url.drivername == "mysql+aiomysql"
    assert url.port == 3306
    assert url.query["charset"] == "utf8mb4"


def test_backtick_quoting(dialect: MySQLDialect) -> None:
    assert dialect.quote_identifier("order`s") == "`order``s`"
    assert dialect.select_all("orders", "shop", limit=5) == "SELECT * FROM `shop`.`orders` LIMIT 5"


def test_ssl_context_skips_verification_unless_asked(dialect: MySQLDialect, settings: Settings) -> None:
    assert "ssl" not in dialect.connect_args(SqlConnectionConfig(host="h", database="d"), settings)

    relaxed = dialect.connect_args(SqlConnectionConfig(host="h", database="d", ssl=True), settings)["ssl"]
    assert isinstance(relaxed, ssl.SSLContext)
    assert relaxed.check_hostname is False
    assert relaxed.verify_mode == ssl.CERT_NONE

    strict = dialect.connect_args(SqlConnectionConfig(host="h", database="d", ssl_mode="verify-full"), settings)["ssl"]
    assert strict.verify_mode == ssl.CERT_REQUIRED


@pytest.mark.parametrize(
    ("errno", "message"),
    [
        (2003, "Can't connect to MySQL server on 'mysql.internal'"),
        (1045, "Access denied for user 'app'@'10.0.0.4'"),
        (1049, "Unknown database 'shopp'"),
    ],
)
def test_connection_errnos_are_connectivity(dialect: MySQLDialect, errno: int, message: str) -> None:
    exc = OperationalError("SELECT 1", {}, mysql_err.OperationalError(errno, message))

    assert isinstance(dialect.classify_error(exc), ConnectivityError)


def test_statement_errnos_are_execution(dialect: MySQLDialect) -> None:
    exc = OperationalError("SELECT nope FROM orders", {}, mysql_err.OperationalError(1054, "Unknown column 'nope'"))

    error = dialect.classify_error(exc)
    assert isinstance(error, ExecutionError)
    assert "Unknown column" in error.message


@pytest.mark.anyio
async def test_get_columns_uses_column_type_and_key(monkeypatch: pytest.MonkeyPatch) -> None:
    dialect = MySQLDialect()
    seen: list[dict] = []
    rows = [
        {"column_name": "id", "data_type": "int", "column_type": "int unsigned", "is_nullable": "NO", "column_default": None, "character_maximum_length": None, "column_key": "PRI"},
        {"column_name": "active", "data_type": "tinyint", "column_type": "tinyint(1)", "is_nullable": "NO", "column_default": "1", "character_maximum_length": None, "column_key": ""},
        {"column_name": "email", "data_type": "varchar", "column_type": "varchar(255)", "is_nullable": "YES", "column_default": None, "character_maximum_length": 255, "column_key": "UNI"},
    ]

    async def fetch_all(engine, sql, params=None):
        seen.append(params)
        return rows

    monkeypatch.setattr(dialect, "fetch_all", fetch_all)

    columns = await dialect.get_columns(object(), "users")

    assert seen == [{"schema": None, "table": "users"}]
    assert [(c["name"], c["type"], c["canonical_type"]) for c in columns] == [
        ("id", "int unsigned", "int4"),
        ("active", "tinyint(1)", "bool"),
        ("email", "varchar(255)", "varchar"),
    ]
    assert [c["is_primary_key"] for c in columns] == [True, False, False]
    assert columns[2]["nullable"] is True
    assert columns[2]["max_length"] == 255
    assert columns[1]["default"] == "1"


@pytest.mark.anyio
async def test_list_tables_keeps_row_schema(monkeypatch: pytest.MonkeyPatch) -> None:
    dialect = MySQLDialect()

    async def fetch_all(engine, sql, params=None):
        return [
            {"table_schema": "shop", "table_name": "orders", "table_type": "BASE TABLE"},
            {"table_schema": "shop", "table_name": "order_totals", "table_type": "VIEW"},
        ]

    monkeypatch.setattr(dialect, "fetch_all", fetch_all)

    assert await dialect.list_tables(object()) == [
        {"schema": "shop", "name": "orders", "kind": "table"},
        {"schema": "shop", "name": "order_totals", "kind": "view"},
    ]
