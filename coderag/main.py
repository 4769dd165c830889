import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coderag.api.routes import router as api_router
from coderag.config import Settings, get_settings, public_settings, setup_logging
from coderag.container import Services, open_services
from coderag.errors import (
    BackendUnavailableError,
    CodeRAGError,
    ConfigError,
    DimensionMismatchError,
    RetrievalError,
    StoreIOError,
)

logger = logging.getLogger("coderag")

_ERROR_STATUS = (
    (ConfigError, 500),
    (DimensionMismatchError, 409),
    (RetrievalError, 502),
    (BackendUnavailableError, 502),
    (StoreIOError, 500),
)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """
    Build the FastAPI app. Services are opened in the lifespan unless given.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting")
        logger.info("Loaded settings: %s", public_settings(settings))
        if services is None:
            app.state.services = await open_services(settings)
        else:
            app.state.services = services
            if not services.vector_store.is_initialized:
                await services.vector_store.initialize()
        try:
            yield
        finally:
            await app.state.services.aclose()

    app = FastAPI(title="coderag", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.exception_handler(CodeRAGError)
    async def coderag_error_handler(request: Request, exc: CodeRAGError):
        status_code = next((code for kind, code in _ERROR_STATUS if isinstance(exc, kind)), 500)
        logger.error("Request failed: %s", exc, extra={"path": request.url.path})
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(api_router)
    return app


def run() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.app_host, port=settings.app_port)


if __name__ == "__main__":
    run()
