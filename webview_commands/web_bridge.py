#!/usr/bin/env python3
"""
HTTP bridge for webview commands.

Serves the custom-protocol wire contract over plain HTTP so a page in
any browser or webview can call commands with fetch():

    await fetch("http://127.0.0.1:8000/greet", {
        method: "POST",
        headers: {"Content-Type": "application/json"},
        body: JSON.stringify({name: "Alice"}),
    })

Every path goes to one route, which hands the request to the
TransportAdapter and returns its response untouched. Methods the route
does not list reach the same adapter through the 405 exception handler,
so they get the adapter's 405 with its Allow and CORS headers.

The authority is host:port here, so only the path names the command.
"""

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi import Request as HTTPRequest
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import Response as HTTPResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from webview_commands.config_manager import CommandsConfig
from webview_commands.registry import CommandRegistry
from webview_commands.transport import Request, TransportAdapter

logger = logging.getLogger(__name__)

ROUTED_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _request_uri(request: HTTPRequest) -> str:
    # raw_path keeps percent-encoding intact; request.url.path is decoded.
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    return f"{request.url.scheme}://{request.url.netloc}{path}"


async def _forward(adapter: TransportAdapter, request: HTTPRequest) -> HTTPResponse:
    body = await request.body()
    response = await adapter.handle_async(
        Request(method=request.method, uri=_request_uri(request), body=body,
                headers=dict(request.headers))
    )
    return HTTPResponse(content=response.body, status_code=response.status,
                        headers=dict(response.headers))


def create_app(registry: CommandRegistry, config: Optional[CommandsConfig] = None) -> FastAPI:
    """Build the FastAPI application serving ``registry``."""
    config = config or CommandsConfig()
    adapter = TransportAdapter.from_config(registry, config, include_authority=False)
    registry.seal()

    app = FastAPI(title="webview-commands bridge", version="0.1.0")
    app.state.adapter = adapter

    @app.api_route("/{command_path:path}", methods=ROUTED_METHODS)
    async def invoke(request: HTTPRequest, command_path: str) -> HTTPResponse:
        return await _forward(adapter, request)

    @app.exception_handler(StarletteHTTPException)
    async def unrouted_method(request: HTTPRequest, exc: StarletteHTTPException):
        # TRACE, CONNECT and custom verbs miss the route; the adapter answers them.
        if exc.status_code == 405:
            return await _forward(adapter, request)
        return await http_exception_handler(request, exc)

    return app


def run_web_server(registry: CommandRegistry, config: Optional[CommandsConfig] = None) -> None:
    """Run the bridge with uvicorn until interrupted"""
    config = config or CommandsConfig()
    host, port = config.server.host, config.server.port

    logger.info(f"Serving {len(registry)} command(s) on http://{host}:{port}/")

    log_level = "debug" if config.console.verbose else "info"
    access_log = not config.console.quiet

    uvicorn.run(
        create_app(registry, config),
        host=host,
        port=port,
        log_level=log_level,
        access_log=access_log,
    )
