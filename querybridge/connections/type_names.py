from __future__ import annotations

import re
from typing import Any, Optional

from pymysql.constants import FIELD_TYPE

from querybridge.shared.schemas import UNKNOWN_TYPE


# Postgres type OIDs as reported in cursor.description[i].type_code.
PG_OID_MAP: dict[int, str] = {
    16: "bool",
    17: "bytea",
    20: "int8",
    21: "int2",
    23: "int4",
    25: "text",
    26: "oid",
    114: "json",
    142: "xml",
    700: "float4",
    701: "float8",
    790: "money",
    869: "inet",
    1042: "bpchar",
    1043: "varchar",
    1082: "date",
    1083: "time",
    1114: "timestamp",
    1184: "timestamptz",
    1186: "interval",
    1266: "timetz",
    1700: "numeric",
    2950: "uuid",
    3802: "jsonb",
}

MYSQL_FIELD_TYPE_MAP: dict[int, str] = {
    FIELD_TYPE.DECIMAL: "numeric",
    FIELD_TYPE.NEWDECIMAL: "numeric",
    FIELD_TYPE.TINY: "int2",
    FIELD_TYPE.SHORT: "int2",
    FIELD_TYPE.YEAR: "int2",
    FIELD_TYPE.LONG: "int4",
    FIELD_TYPE.INT24: "int4",
    FIELD_TYPE.LONGLONG: "int8",
    FIELD_TYPE.FLOAT: "float4",
    FIELD_TYPE.DOUBLE: "float8",
    FIELD_TYPE.DATE: "date",
    FIELD_TYPE.NEWDATE: "date",
    FIELD_TYPE.TIME: "time",
    FIELD_TYPE.DATETIME: "timestamp",
    FIELD_TYPE.TIMESTAMP: "timestamp",
    FIELD_TYPE.VARCHAR: "varchar",
    FIELD_TYPE.VAR_STRING: "varchar",
    FIELD_TYPE.STRING: "text",
    FIELD_TYPE.ENUM: "text",
    FIELD_TYPE.SET: "text",
    # TEXT and BLOB columns share these codes on the wire.
    FIELD_TYPE.TINY_BLOB: "text",
    FIELD_TYPE.BLOB: "text",
    FIELD_TYPE.MEDIUM_BLOB: "text",
    FIELD_TYPE.LONG_BLOB: "text",
    FIELD_TYPE.JSON: "json",
    FIELD_TYPE.BIT: "bool",
}

# Python value types, for engines (sqlite) whose cursors carry no type code.
PY_TYPE_MAP: dict[str, str] = {
    "bool": "bool",
    "int": "int8",
    "float": "float8",
    "Decimal": "numeric",
    "str": "text",
    "bytes": "bytea",
    "memoryview": "bytea",
    "date": "date",
    "time": "time",
    "datetime": "timestamp",
    "UUID": "uuid",
    "dict": "json",
    "list": "json",
}

# Declared column type names, as returned by information_schema or PRAGMA table_info.
DECLARED_TYPE_MAP: dict[str, str] = {
    "boolean": "bool",
    "bool": "bool",
    "tinyint(1)": "bool",
    "bit": "bool",
    "bytea": "bytea",
    "blob": "bytea",
    "binary": "bytea",
    "varbinary": "bytea",
    "smallint": "int2",
    "int2": "int2",
    "tinyint": "int2",
    "year": "int2",
    "integer": "int4",
    "int": "int4",
    "int4": "int4",
    "mediumint": "int4",
    "bigint": "int8",
    "int8": "int8",
    "real": "float4",
    "float": "float4",
    "float4": "float4",
    "double precision": "float8",
    "double": "float8",
    "float8": "float8",
    "numeric": "numeric",
    "decimal": "numeric",
    "money": "money",
    "text": "text",
    "tinytext": "text",
    "mediumtext": "text",
    "longtext": "text",
    "enum": "text",
    "set": "text",
    "character varying": "varchar",
    "varchar": "varchar",
    "character": "bpchar",
    "char": "bpchar",
    "bpchar": "bpchar",
    "date": "date",
    "time": "time",
    "time without time zone": "time",
    "time with time zone": "timetz",
    "timetz": "timetz",
    "datetime": "timestamp",
    "timestamp": "timestamp",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "timestamptz": "timestamptz",
    "interval": "interval",
    "uuid": "uuid",
    "json": "json",
    "jsonb": "jsonb",
    "xml": "xml",
    "inet": "inet",
    "oid": "oid",
}

_PARAMS_RE = re.compile(r"\s*\(.*\)\s*")


def _resolve_declared(declared: str) -> Optional[str]:
    name = declared.strip().lower()
    if not name:
        return None
    if name in DECLARED_TYPE_MAP:
        return DECLARED_TYPE_MAP[name]
    base = _PARAMS_RE.sub(" ", name).strip()
    # "int unsigned", "varchar(255) character set utf8"
    for candidate in (base, base.split(" ")[0]):
        if candidate in DECLARED_TYPE_MAP:
            return DECLARED_TYPE_MAP[candidate]
    return None


def _sqlite_affinity(declared: str) -> Optional[str]:
    # https://www.sqlite.org/datatype3.html#determination_of_column_affinity
    name = declared.upper()
    if not name:
        return None
    if "INT" in name:
        return "int8"
    if "CHAR" in name or "CLOB" in name or "TEXT" in name:
        return "text"
    if "BLOB" in name:
        return "bytea"
    if "REAL" in name or "FLOA" in name or "DOUB" in name:
        return "float8"
    return "numeric"


class TypeNameResolver:
    """Maps engine-specific type codes to the canonical type vocabulary.

    ``raw_type_code`` is whatever the source exposes: a postgres OID, a
    ``pymysql`` field type constant, a declared SQL type name, or (for sqlite
    values) a Python type name. Anything unmapped resolves to ``unknown``.
    """

    def resolve(self, engine_kind: str, raw_type_code: Any) -> str:
        if raw_type_code is None or isinstance(raw_type_code, bool):
            return UNKNOWN_TYPE
        if isinstance(raw_type_code, int):
            if engine_kind == "postgres":
                return PG_OID_MAP.get(raw_type_code, UNKNOWN_TYPE)
            if engine_kind == "mysql":
                return MYSQL_FIELD_TYPE_MAP.get(raw_type_code, UNKNOWN_TYPE)
            return UNKNOWN_TYPE
        if isinstance(raw_type_code, type):
            raw_type_code = raw_type_code.__name__
        if not isinstance(raw_type_code, str):
            return UNKNOWN_TYPE

        if engine_kind == "sqlite":
            return self._resolve_sqlite(raw_type_code)
        return _resolve_declared(raw_type_code) or UNKNOWN_TYPE

    @staticmethod
    def _resolve_sqlite(raw_type_code: str) -> str:
        # Declared names and value types must agree, so declarations resolve to
        # their storage class. Only NUMERIC affinity keeps the declared name,
        # since any storage class may land there.
        if raw_type_code in PY_TYPE_MAP:
            return PY_TYPE_MAP[raw_type_code]
        affinity = _sqlite_affinity(raw_type_code)
        if affinity == "numeric":
            return _resolve_declared(raw_type_code) or affinity
        return affinity or UNKNOWN_TYPE


_default_resolver = TypeNameResolver()


def resolve_type_name(engine_kind: str, raw_type_code: Any) -> str:
    return _default_resolver.resolve(engine_kind, raw_type_code)
