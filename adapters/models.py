from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter, field_validator


class EngineKind(str, Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"

    @property
    def label(self) -> str:
        return _ENGINE_LABELS[self]

    @classmethod
    def parse(cls, raw: Any) -> "EngineKind":
        if isinstance(raw, cls):
            return raw
        key = str(raw or "").strip().lower()
        key = _ENGINE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unsupported engine: {raw!r}. Must be postgres, mysql, or sqlite") from None


_ENGINE_LABELS = {
    EngineKind.POSTGRES: "PostgreSQL",
    EngineKind.MYSQL: "MySQL",
    EngineKind.SQLITE: "SQLite",
}

_ENGINE_ALIASES = {
    "postgresql": "postgres",
    "pg": "postgres",
    "mariadb": "mysql",
    "sqlite3": "sqlite",
}


class ConnectionDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    engine: EngineKind
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    user: Optional[str] = None
    password: Optional[SecretStr] = None
    database: Optional[str] = None
    file: Optional[str] = None

    @field_validator("engine", mode="before")
    @classmethod
    def parse_engine_alias(cls, value: Any) -> EngineKind:
        return EngineKind.parse(value)

    @classmethod
    def postgres(cls, host: str, port: int, user: str, password: str, database: str) -> "ConnectionDescriptor":
        return cls(engine=EngineKind.POSTGRES, host=host, port=port, user=user, password=password, database=database)

    @classmethod
    def mysql(cls, host: str, port: int, user: str, password: str, database: str) -> "ConnectionDescriptor":
        return cls(engine=EngineKind.MYSQL, host=host, port=port, user=user, password=password, database=database)

    @classmethod
    def sqlite(cls, file: Union[str, Path]) -> "ConnectionDescriptor":
        return cls(engine=EngineKind.SQLITE, file=str(file))

    def secret(self) -> Optional[str]:
        return self.password.get_secret_value() if self.password is not None else None

    def describe(self) -> Dict[str, Any]:
        # Log-safe view: the password is never part of it.
        if self.engine == EngineKind.SQLITE:
            return {"engine": self.engine.value, "file": self.file}
        return {
            "engine": self.engine.value,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "database": self.database,
        }

    def to_stored_fields(self) -> Dict[str, Any]:
        fields = self.model_dump(exclude_none=True, exclude={"password"}, mode="json")
        if self.password is not None:
            fields["password"] = self.secret()
        return fields


class Capabilities(BaseModel):
    max_rows: Optional[int] = Field(default=None, ge=0)
    timeout_ms: Optional[int] = Field(default=None, gt=0)


class ConnectionInfo(BaseModel):
    database_version: str
    server_info: str
    connected_database: str
    user: str


class QueryResult(BaseModel):
    columns: List[str] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)
    rows_affected: Optional[int] = None
    execution_ms: float = 0.0
    truncated: bool = False


class ColumnInfo(BaseModel):
    name: str
    data_type: str
    nullable: bool
    default: Optional[str] = None


class ForeignKeyInfo(BaseModel):
    name: str
    columns: List[str]
    referenced_table: str
    referenced_columns: List[str]


class IndexInfo(BaseModel):
    name: str
    columns: List[str]
    unique: bool


class IndexSummary(BaseModel):
    name: str
    table: str
    columns: List[str]
    unique: bool


class TableInfo(BaseModel):
    name: str
    schema_name: Optional[str] = Field(default=None, alias="schema")
    columns: List[ColumnInfo] = Field(default_factory=list)
    primary_key: Optional[List[str]] = None
    foreign_keys: List[ForeignKeyInfo] = Field(default_factory=list)
    indexes: List[IndexInfo] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class ViewInfo(BaseModel):
    name: str
    schema_name: Optional[str] = Field(default=None, alias="schema")
    definition: Optional[str] = None
    columns: List[ColumnInfo] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class SchemaInfo(BaseModel):
    tables: List[TableInfo] = Field(default_factory=list)


TABLE_FIELD_NAMES = ("columns", "primary_key", "foreign_keys", "indexes")


class TableFields(BaseModel):
    columns: bool = True
    primary_key: bool = True
    foreign_keys: bool = True
    indexes: bool = True

    @classmethod
    def parse(cls, raw: Optional[str]) -> "TableFields":
        if raw is None or not raw.strip():
            return cls()
        requested = {part.strip().lower().replace("-", "_") for part in raw.split(",") if part.strip()}
        if "all" in requested:
            return cls()
        unknown = requested.difference(TABLE_FIELD_NAMES)
        if unknown:
            raise ValueError(f"Unknown table fields: {', '.join(sorted(unknown))}")
        return cls(**{name: name in requested for name in TABLE_FIELD_NAMES})


# Introspection requests


class ListDatabases(BaseModel):
    op: Literal["list_databases"] = "list_databases"


class ListSchemas(BaseModel):
    op: Literal["list_schemas"] = "list_schemas"


class ListTables(BaseModel):
    op: Literal["list_tables"] = "list_tables"


class ListViews(BaseModel):
    op: Literal["list_views"] = "list_views"


class ListIndexes(BaseModel):
    op: Literal["list_indexes"] = "list_indexes"
    table: Optional[str] = None


class TableDetails(BaseModel):
    op: Literal["table_details"] = "table_details"
    name: str = Field(..., min_length=1)
    fields: TableFields = Field(default_factory=TableFields)


class ViewDetails(BaseModel):
    op: Literal["view_details"] = "view_details"
    name: str = Field(..., min_length=1)


IntrospectOperation = Annotated[
    Union[ListDatabases, ListSchemas, ListTables, ListViews, ListIndexes, TableDetails, ViewDetails],
    Field(discriminator="op"),
]


# Introspection results


class DatabaseList(BaseModel):
    kind: Literal["database_list"] = "database_list"
    databases: List[str]


class SchemaList(BaseModel):
    kind: Literal["schema_list"] = "schema_list"
    schemas: List[str]


class TableList(BaseModel):
    kind: Literal["table_list"] = "table_list"
    tables: List[str]


class ViewList(BaseModel):
    kind: Literal["view_list"] = "view_list"
    views: List[str]


class IndexList(BaseModel):
    kind: Literal["index_list"] = "index_list"
    indexes: List[IndexSummary]


class TableDetailsResult(BaseModel):
    kind: Literal["table_details"] = "table_details"
    table: TableInfo


class ViewDetailsResult(BaseModel):
    kind: Literal["view_details"] = "view_details"
    view: ViewInfo


IntrospectResult = Annotated[
    Union[DatabaseList, SchemaList, TableList, ViewList, IndexList, TableDetailsResult, ViewDetailsResult],
    Field(discriminator="kind"),
]

_OPERATION_ADAPTER: TypeAdapter = TypeAdapter(IntrospectOperation)
_RESULT_ADAPTER: TypeAdapter = TypeAdapter(IntrospectResult)


def parse_operation(data: Any):
    return _OPERATION_ADAPTER.validate_python(data)


def parse_result(data: Any):
    return _RESULT_ADAPTER.validate_python(data)
