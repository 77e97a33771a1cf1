# coursestore/main.py
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from coursestore.api import ROUTERS
from coursestore.data.database import init_db
from coursestore.domain.errors import AlreadyOwned, StoreError
from coursestore.domain.schemas import ApiError
from coursestore.utils.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database")
    init_db()
    yield


def _error(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    body = ApiError(error=error, message=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


async def store_error_handler(request: Request, exc: StoreError):
    details = exc.access_info if isinstance(exc, AlreadyOwned) else None
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error}: {exc.message}")
    return _error(exc.status_code, exc.error, exc.message, details)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = [
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]
    return _error(400, "ValidationError", "Invalid request", problems)


async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"{request.method} {request.url.path} database error")
    return _error(500, "UpstreamFailure", "Storage is unavailable")


def create_app(with_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title="Course Store",
        version="1.0.0",
        lifespan=lifespan if with_lifespan else None,
    )

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)

    for router in ROUTERS:
        app.include_router(router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
