import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from .config import settings
from .dependencies import Services, build_services, close_services
from .errors import RecordNotFound, RecordStoreUnavailable, StoreUnavailable, TaskNotFound, UnsupportedFormat
from .logconfig import configure_logging
from .routers import exports, imports, users
from worker.jobs import sweep_expired_tasks

logger = logging.getLogger(__name__)


async def sweep_periodically(services: Services) -> None:
    while True:
        await asyncio.sleep(services.settings.cleanup_interval_seconds)
        try:
            await asyncio.to_thread(sweep_expired_tasks, services)
        except Exception:
            logger.exception("Expired task sweep failed")


def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = getattr(app.state, "services", None) is None
        if owned:
            configure_logging(settings.log_level, settings.log_json)
            app.state.services = build_services(settings)
        sweeper = asyncio.create_task(sweep_periodically(app.state.services))
        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            if owned:
                close_services(app.state.services)
                app.state.services = None

    app = FastAPI(title="User Batch API", version="1.0.0", lifespan=lifespan)
    app.state.services = services
    app.include_router(exports.router)
    app.include_router(imports.router)
    app.include_router(users.router)

    @app.get("/api")
    def welcome():
        return {"message": "User Batch API"}

    @app.exception_handler(UnsupportedFormat)
    async def unsupported_format(request: Request, exc: UnsupportedFormat):
        return JSONResponse(
            status_code=400,
            content={"detail": {"error": str(exc), "validFormats": exc.valid}},
        )

    @app.exception_handler(TaskNotFound)
    @app.exception_handler(RecordNotFound)
    async def not_found(request: Request, exc: Exception):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(StoreUnavailable)
    @app.exception_handler(RecordStoreUnavailable)
    async def unavailable(request: Request, exc: Exception):
        logger.error("Backend unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    return app


app = create_app()
