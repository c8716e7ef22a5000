"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from mailtimeline.infrastructure.container import Container, build_container
from mailtimeline.infrastructure.logging import configure_logging
from mailtimeline.infrastructure.settings import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline on startup unless one was injected; drop IMAP sessions on shutdown."""
    settings = get_settings()
    logger.info(f"{settings.app_name} {settings.app_version} starting ({settings.environment})")

    container: Optional[Container] = app.state.container
    if container is None:
        container = app.state.container = build_container(settings)
    logger.info(f"Serving timelines for {len(container.account_ids)} configured account(s)")

    yield

    disconnect = getattr(container.source, "disconnect", None)
    if disconnect is not None:
        for account_id in container.account_ids:
            disconnect(account_id)
    logger.info("Mail sessions closed")


def create_app(container: Optional[Container] = None) -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Email ingestion and business timelines for the CRM",
        lifespan=lifespan,
    )
    app.state.container = container
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["*"],
    )

    from mailtimeline.api.routes import router

    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
