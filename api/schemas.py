from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ConnectionFields(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120, description="Saved connection to use")
    engine: Optional[str] = Field(default=None, max_length=30, description="postgres, mysql or sqlite")
    host: Optional[str] = Field(default=None, max_length=255)
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    user: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = None
    password_env: Optional[str] = Field(default=None, max_length=255, description="Environment variable holding the password")
    database: Optional[str] = Field(default=None, max_length=255)
    file: Optional[str] = Field(default=None, max_length=1000, description="SQLite database file")

    def connection_fields(self) -> Dict[str, Any]:
        return self.model_dump(include=set(ConnectionFields.model_fields) - {"name"})


class ConnectRequest(ConnectionFields):
    save: Optional[str] = Field(default=None, pattern="^(local|global)$")
    make_current: bool = False


class IntrospectRequest(ConnectionFields):
    operation: str = Field(..., min_length=1, max_length=40)
    target: Optional[str] = Field(default=None, max_length=255, description="Table or view name")
    fields: Optional[List[str]] = Field(default=None, description="Table detail sections to include")
    database_override: Optional[str] = Field(default=None, max_length=255)
    schema_filter: Optional[str] = Field(default=None, max_length=255)


class QueryRequest(ConnectionFields):
    sql: str = Field(..., max_length=100000)
    max_rows: Optional[int] = Field(default=None, ge=0)
    timeout_ms: Optional[int] = Field(default=None, gt=0)
