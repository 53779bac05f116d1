"""FastAPI application entry point."""
import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from dropzone.config import settings
from dropzone.dependencies import ShareServices, build_services
from dropzone.errors import ShareError
from dropzone.routes.files import router as files_router
from dropzone.routes.share import router as share_router
from dropzone.schemas.common import ErrorResponse

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


async def _default_services() -> ShareServices:
    """Production wiring: SQL store, tables created on startup."""
    from dropzone.database import async_session, engine
    from dropzone.models import Base
    from dropzone.services.file_store import SqlFileStore

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return build_services(SqlFileStore(async_session))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Sweep expired files, restore deletion timers, start the hourly sweeper."""
    owns_engine = getattr(app.state, "services", None) is None
    if owns_engine:
        app.state.services = await _default_services()
    services: ShareServices = app.state.services

    await services.expiry.sweep()
    await services.expiry.restore_schedule()
    sweeper = asyncio.create_task(
        services.expiry.sweep_loop(services.settings.SWEEP_INTERVAL_SECONDS)
    )
    logger.info(f"Upload directory: {services.storage.base_path}")

    yield

    sweeper.cancel()
    services.expiry.cancel_all()
    if owns_engine:
        from dropzone.database import engine
        await engine.dispose()


def _is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def create_app(services: ShareServices | None = None) -> FastAPI:
    app = FastAPI(
        title="DropZone API",
        version="1.0.0",
        description="Ephemeral encrypted file sharing.",
        lifespan=lifespan,
    )
    app.state.services = services

    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ShareError)
    async def share_error_handler(request: Request, exc: ShareError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        if _is_api(request):
            return JSONResponse(
                status_code=exc.status_code,
                content=ErrorResponse(error=exc.message).model_dump(),
            )
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}: {exc}")
        logger.error(traceback.format_exc())
        if _is_api(request):
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(error="Something went wrong!").model_dump(),
            )
        return PlainTextResponse("Server Error", status_code=500)

    @app.get("/api/health")
    async def health_check(request: Request):
        """Verify API and metadata store connectivity."""
        try:
            await request.app.state.services.store.ping()
            return {"status": "ok", "database": "connected"}
        except Exception as e:
            return {"status": "error", "database": str(e)}

    app.include_router(files_router)
    app.include_router(share_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("dropzone.main:app", host="0.0.0.0", port=settings.API_PORT)
