from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from adapters.errors import ErrorKind
from api.schemas import ConnectRequest, IntrospectRequest, QueryRequest
from service.commands import connect_command, introspect_command, query_command

router = APIRouter()

ERROR_STATUS = {
    ErrorKind.CAPABILITY_VIOLATION.value: 403,
    ErrorKind.INVALID_INPUT.value: 400,
    ErrorKind.CONFIG_ERROR.value: 400,
    ErrorKind.CONNECTION_FAILED.value: 502,
    ErrorKind.QUERY_FAILED.value: 422,
    ErrorKind.ENGINE_ERROR.value: 500,
    ErrorKind.INTERNAL_ERROR.value: 500,
}


def _respond(envelope: Dict[str, Any]) -> JSONResponse:
    if envelope.get("ok"):
        return JSONResponse(status_code=200, content=envelope)
    status_code = ERROR_STATUS.get(envelope["error"]["code"], 500)
    return JSONResponse(status_code=status_code, content=envelope)


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/connect")
async def connect(request: ConnectRequest) -> JSONResponse:
    envelope = await connect_command(
        request.connection_fields(),
        name=request.name,
        save=request.save is not None,
        make_current=request.make_current,
        location=request.save or "local",
    )
    return _respond(envelope)


@router.post("/introspect")
async def introspect(request: IntrospectRequest) -> JSONResponse:
    envelope = await introspect_command(
        request.operation,
        request.connection_fields(),
        name=request.name,
        database=request.database_override,
        schema=request.schema_filter,
        target=request.target,
        table_fields=request.fields,
    )
    return _respond(envelope)


@router.post("/query")
async def query(request: QueryRequest) -> JSONResponse:
    envelope = await query_command(
        request.sql,
        request.connection_fields(),
        name=request.name,
        max_rows=request.max_rows,
        timeout_ms=request.timeout_ms,
    )
    return _respond(envelope)
