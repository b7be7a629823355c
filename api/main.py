from fastapi import FastAPI

from api.routes import router

app = FastAPI(
    title="querygate",
    version="0.1.0",
    description="Read-only SQL execution and schema introspection for PostgreSQL, MySQL and SQLite",
)
app.include_router(router)
