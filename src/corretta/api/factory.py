"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response

from corretta.observability.correlation import (
    CORRELATION_ID_HEADER,
    correlation_scope,
    resolve_inbound_correlation_id,
)

from .routes import conversations, health, webhooks_timelines


def create_app() -> FastAPI:
    """Create the FastAPI app with all routes mounted."""
    app = FastAPI(
        title="Corretta WhatsApp",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = resolve_inbound_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        with correlation_scope(cid):
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    app.include_router(health.router)
    app.include_router(webhooks_timelines.router)
    app.include_router(conversations.router)

    return app
