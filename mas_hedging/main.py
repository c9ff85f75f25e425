from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mas_hedging.api.routes import api_router
from mas_hedging.core.config import get_settings
from mas_hedging.core.errors import register_exception_handlers
from mas_hedging.core.logging import setup_logging
from mas_hedging.services.bootstrap import bootstrap


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.on_event("startup")
    def _startup() -> None:
        bootstrap()

    return app


app = create_app()
