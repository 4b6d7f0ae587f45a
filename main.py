from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.router import api_router
from core.config import settings
from core.errors import ConflictError, GuardViolation, NotFoundError, TransientError, ValidationError, WorkbenchError
from core.logging_config import configure_logging
from database.session import init_db

ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    GuardViolation: status.HTTP_400_BAD_REQUEST,
    TransientError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _status_for(exc: WorkbenchError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


def create_app(*, with_db_init: bool = True) -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, lifespan=lifespan if with_db_init else None)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.exception_handler(WorkbenchError)
    async def workbench_error_handler(request: Request, exc: WorkbenchError):
        return JSONResponse(status_code=_status_for(exc), content={"detail": exc.to_dict()})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
