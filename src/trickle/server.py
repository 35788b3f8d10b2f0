"""
trickle relay HTTP application

Exposes the relay as a catch-all route so any OpenAI-compatible (or
Gemini ``alt=sse``) client can point at it instead of the provider.

Usage::

    TRICKLE_UPSTREAM_URL=https://api.openai.com \\
        uvicorn --factory trickle.server:create_app --port 8000
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from trickle.config import Settings, configure_logging, get_settings
from trickle.errors import UpstreamUnreachable
from trickle.relay import RelayRequest, UpstreamRelay

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Relay configuration; defaults to the environment.
        client: Optional HTTP client for the upstream side.
    """
    settings = settings or get_settings()
    configure_logging(logging.DEBUG if settings.debug else logging.INFO)
    relay = UpstreamRelay(settings, client=client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await relay.aclose()

    app = FastAPI(title="trickle relay", version="0.1.0", lifespan=lifespan)
    app.state.relay = relay

    @app.api_route(
        f"{settings.route_prefix}/{{path:path}}",
        methods=["GET", "POST", "OPTIONS"],
    )
    async def relay_route(request: Request, path: str):
        if request.method == "OPTIONS":
            return JSONResponse({"body": "OK"}, status_code=200)

        inbound = RelayRequest(
            method=request.method,
            path=path,
            body=await request.body(),
            headers=dict(request.headers),
            query=request.url.query,
        )
        logger.debug(f"Relaying {inbound.method} /{path} stream={inbound.stream}")

        try:
            result = await relay.send(inbound)
        except UpstreamUnreachable as e:
            return JSONResponse(
                {"error": True, "message": str(e)},
                status_code=502,
            )

        if result.stream is not None:
            return StreamingResponse(
                result.stream,
                status_code=result.status_code,
                headers=dict(result.headers),
                media_type="text/event-stream",
            )
        response = Response(content=result.body, status_code=result.status_code)
        # Appended one by one so repeated headers such as set-cookie survive.
        for name, value in result.headers:
            response.headers.append(name, value)
        return response

    return app
