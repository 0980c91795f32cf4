from __future__ import annotations

import os

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from baklogmd.constants import (
    APP_NAME,
    APP_VERSION,
    DEFAULT_HOST,
    DEFAULT_PORT,
    LOGGER,
    SERVICE_NAME,
)
from baklogmd.env import load_config, load_env, setup_logging
from broker.middleware import SecurityHeadersMiddleware
from broker.oauth_server import OAuthBroker


async def health_route(request: Request) -> Response:
    del request
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "service": SERVICE_NAME,
        }
    )


def create_app(broker: OAuthBroker | None = None) -> Starlette:
    if broker is None:
        load_env()
        debug_enabled = setup_logging()
        config = load_config()
        broker = OAuthBroker(
            config=config,
            debug_enabled=debug_enabled,
        )

    app = Starlette(
        routes=[Route("/health", health_route, methods=["GET"]), *broker.routes()],
        middleware=[Middleware(SecurityHeadersMiddleware, hsts=broker.config.secure_cookies)],
        lifespan=broker.lifespan,
    )
    app.state.broker = broker
    return app


def main() -> None:
    host = os.getenv("HOST", DEFAULT_HOST)
    port = int(os.getenv("PORT", str(DEFAULT_PORT)))
    app = create_app()
    LOGGER.info("%s broker listening on %s:%s", APP_NAME, host, port)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
