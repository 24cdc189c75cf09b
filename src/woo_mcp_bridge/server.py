"""FastAPI application serving the MCP tool surface and the streaming bridge."""
import json
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from mcp.server import Server
from mcp.server.sse import SseServerTransport
from mcp.types import TextContent, Tool
from starlette.datastructures import MutableHeaders

from . import __version__
from .auth import store_auth, upstream_auth
from .client import UpstreamClient
from .config import Settings
from .jsonrpc import PARSE_ERROR, JsonRpcDispatcher, error_response
from .relay import relay_request
from .tools import ToolRegistry, register_builtin_tools
from .woocommerce import WooCommerceTools

logger = logging.getLogger(__name__)

NO_BUFFERING_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


class NoBufferingMiddleware:
    """
    Marks every response as uncacheable and unbuffered.

    Written as plain ASGI so SSE responses pass through untouched apart from
    the start message.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                headers = MutableHeaders(scope=message)
                for name, value in NO_BUFFERING_HEADERS.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_headers)


def build_registry(settings: Settings, store: Optional[UpstreamClient] = None) -> ToolRegistry:
    """Register the tools for the configured mode."""
    registry = ToolRegistry()
    register_builtin_tools(registry)
    if store is not None:
        WooCommerceTools(store).register(registry)
    return registry


def build_mcp_server(settings: Settings, registry: ToolRegistry) -> Server:
    """MCP SDK server backed by the registry, used for SSE sessions."""
    mcp_server = Server(settings.server_name, version=__version__)

    @mcp_server.list_tools()
    async def list_tools() -> List[Tool]:
        return [descriptor.to_tool() for descriptor in registry.list()]

    @mcp_server.call_tool()
    async def call_tool(name: str, arguments: dict) -> List[TextContent]:
        # Errors propagate so the SDK reports them as an isError result
        result = await registry.invoke(name, arguments)
        return list(result.content)

    return mcp_server


def create_app(settings: Settings, upstream_transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Wire settings, upstream clients, tool registry and routes into one app.

    ``upstream_transport`` replaces the network transport of every upstream
    client, which lets tests stand in a mock upstream.
    """
    http_clients = []
    store_client = None
    bridge_client = None

    if settings.mcp_mode == "store":
        http_client = httpx.AsyncClient(
            verify=settings.verify_ssl,
            timeout=httpx.Timeout(settings.request_timeout),
            transport=upstream_transport
        )
        http_clients.append(http_client)
        store_client = UpstreamClient(settings.store_api_url, store_auth(settings), http_client)

    if settings.mcp_mode == "bridge":
        # No read timeout: relayed streams may stay open indefinitely
        http_client = httpx.AsyncClient(
            verify=settings.verify_ssl,
            timeout=httpx.Timeout(settings.request_timeout, read=None),
            transport=upstream_transport
        )
        http_clients.append(http_client)
        bridge_client = UpstreamClient(settings.mcp_upstream_url, upstream_auth(settings), http_client)

    registry = build_registry(settings, store_client)
    dispatcher = JsonRpcDispatcher(registry, settings.server_name, __version__)
    mcp_server = build_mcp_server(settings, registry)
    sse_transport = SseServerTransport("/messages/")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Serving {len(registry.list())} tools in {settings.mcp_mode} mode")
        yield
        for client in http_clients:
            await client.aclose()

    app = FastAPI(lifespan=lifespan)
    app.add_middleware(NoBufferingMiddleware)
    app.state.settings = settings
    app.state.registry = registry

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.get("/")
    async def liveness():
        return {
            "status": "ok",
            "name": settings.server_name,
            "version": __version__,
            "mode": settings.mcp_mode,
            "sse": "/sse"
        }

    # Some clients probe these; answer without touching the upstream
    @app.get("/.well-known/{path:path}")
    async def well_known(path: str):
        return Response(status_code=404)

    @app.options("/{path:path}")
    async def preflight(path: str):
        return Response(status_code=204)

    @app.get("/sse")
    async def handle_sse(request: Request):
        logger.info("SSE connection received")
        async with sse_transport.connect_sse(
            request.scope, request.receive, request._send
        ) as streams:
            await mcp_server.run(
                streams[0], streams[1], mcp_server.create_initialization_options()
            )
        logger.info("SSE connection closed")
        return Response()

    async def handle_post(request: Request):
        raw = await request.body()
        try:
            payload = json.loads(raw) if raw.strip() else None
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON received: {e}")
            return JSONResponse(status_code=400, content=error_response(None, PARSE_ERROR, "Parse error"))

        if bridge_client is not None:
            return await relay_request(bridge_client, payload, request.headers)

        response = await dispatcher.handle(payload if payload is not None else {})
        if response is None:
            return Response(status_code=202)
        return JSONResponse(response)

    app.add_api_route("/sse", handle_post, methods=["POST"])
    app.add_api_route("/", handle_post, methods=["POST"])

    async def _messages_app(scope, receive, send):
        await sse_transport.handle_post_message(scope, receive, send)

    app.mount("/messages", _messages_app)

    if settings.accept_unmatched_post:
        @app.post("/{path:path}")
        async def accept_any_post(path: str):
            return Response(status_code=200)

    return app
