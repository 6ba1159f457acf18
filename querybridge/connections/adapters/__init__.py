from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from querybridge.connections.adapters.base import SqlDialect
from querybridge.connections.adapters.mysql import MySQLDialect
from querybridge.connections.adapters.postgres import PostgresDialect
from querybridge.connections.adapters.sqlite import SQLiteDialect
from querybridge.core.exceptions import UnsupportedSourceError


@dataclass(frozen=True)
class DialectMeta:
    kind: str
    display_name: str
    drivername: str
    default_port: Optional[int]
    default_schema: Optional[str]


class DialectRegistry:
    def __init__(self) -> None:
        self._dialects: dict[str, SqlDialect] = {}

    def register(self, dialect: SqlDialect) -> None:
        self._dialects[dialect.kind] = dialect

    def get(self, kind: str) -> Optional[SqlDialect]:
        return self._dialects.get(kind)

    def require(self, kind: str) -> SqlDialect:
        dialect = self._dialects.get(kind)
        if dialect is None:
            supported = ", ".join(sorted(self._dialects))
            raise UnsupportedSourceError(f"Unsupported SQL connection type: {kind!r}; expected one of: {supported}")
        return dialect

    def list(self) -> list[DialectMeta]:
        return [
            DialectMeta(
                kind=d.kind,
                display_name=d.display_name,
                drivername=d.drivername,
                default_port=d.default_port,
                default_schema=d.default_schema,
            )
            for d in self._dialects.values()
        ]


registry = DialectRegistry()
registry.register(PostgresDialect())
registry.register(MySQLDialect())
registry.register(SQLiteDialect())
