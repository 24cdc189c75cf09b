"""Tests for the HTTP routes, local JSON-RPC dispatch and the streaming relay."""
import json
import logging

import httpx
import pytest
from mcp.types import (
    CallToolRequest,
    CallToolRequestParams,
    ListToolsRequest,
)

from woo_mcp_bridge.config import Settings
from woo_mcp_bridge.server import build_mcp_server, create_app

UPSTREAM_URL = "https://upstream.example.com/mcp"


class ChunkStream(httpx.AsyncByteStream):
    """Response body that yields fixed chunks, optionally failing afterwards."""

    def __init__(self, chunks, fail=False):
        self.chunks = chunks
        self.fail = fail
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.fail:
            raise httpx.ReadError("connection reset by peer")

    async def aclose(self):
        self.closed = True


class RecordingUpstream:
    """Mock upstream that records requests and answers with a fixed handler."""

    def __init__(self, respond):
        self.respond = respond
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.respond(request)


def minimal_settings(**kwargs):
    return Settings(_env_file=None, mcp_mode="minimal", **kwargs)


def store_settings(**kwargs):
    return Settings(
        _env_file=None,
        mcp_mode="store",
        wc_url="https://shop.example.com",
        wc_key="ck_test",
        wc_secret="cs_test",
        **kwargs
    )


def bridge_settings(**kwargs):
    return Settings(
        _env_file=None,
        mcp_mode="bridge",
        mcp_upstream_url=UPSTREAM_URL,
        **kwargs
    )


def app_client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


def rpc(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        message["params"] = params
    return message


@pytest.mark.asyncio
async def test_health_and_no_buffering_headers():
    """Test /health answers ok and carries anti-buffering headers."""
    async with app_client(create_app(minimal_settings())) as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.text == "ok"
    assert response.headers["cache-control"] == "no-cache, no-transform"
    assert response.headers["x-accel-buffering"] == "no"


@pytest.mark.asyncio
async def test_root_returns_liveness_summary():
    """Test GET / reports status and mode instead of opening a stream."""
    async with app_client(create_app(minimal_settings())) as client:
        response = await client.get("/")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["mode"] == "minimal"
    assert body["sse"] == "/sse"


@pytest.mark.asyncio
async def test_probe_paths_never_reach_upstream():
    """Test discovery probes and preflights are answered locally."""
    upstream = RecordingUpstream(lambda request: httpx.Response(200, json={}))
    app = create_app(bridge_settings(), upstream_transport=httpx.MockTransport(upstream))

    async with app_client(app) as client:
        well_known = await client.get("/.well-known/oauth-authorization-server")
        options_sse = await client.options("/sse")
        options_other = await client.options("/anything/else")

    assert well_known.status_code == 404
    assert options_sse.status_code == 204
    assert options_other.status_code == 204
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_unmatched_post_is_not_found_by_default():
    """Test unknown POST paths are rejected unless the fallback is enabled."""
    async with app_client(create_app(minimal_settings())) as client:
        response = await client.post("/register", json={})

    assert response.status_code in (404, 405)


@pytest.mark.asyncio
async def test_unmatched_post_fallback():
    """Test the permissive fallback answers 200 to unknown POST paths."""
    async with app_client(create_app(minimal_settings(accept_unmatched_post=True))) as client:
        response = await client.post("/register", json={})
        rpc_response = await client.post("/sse", json=rpc("ping"))

    assert response.status_code == 200
    assert rpc_response.json()["result"] == {}


@pytest.mark.asyncio
async def test_initialize_over_post():
    """Test initialize reports server info and echoes the protocol version."""
    async with app_client(create_app(minimal_settings())) as client:
        response = await client.post("/sse", json=rpc("initialize", {
            "protocolVersion": "2025-03-26",
            "capabilities": {},
            "clientInfo": {"name": "test-client", "version": "1.0.0"}
        }, request_id="init-1"))

    body = response.json()
    assert body["jsonrpc"] == "2.0"
    assert body["id"] == "init-1"
    assert body["result"]["protocolVersion"] == "2025-03-26"
    assert body["result"]["serverInfo"]["name"] == "woocommerce-mcp"
    assert "tools" in body["result"]["capabilities"]


@pytest.mark.asyncio
async def test_tools_list_depends_on_mode():
    """Test the catalog tools are listed only in store mode."""
    async with app_client(create_app(minimal_settings())) as client:
        minimal = (await client.post("/", json=rpc("tools/list"))).json()

    async with app_client(create_app(store_settings())) as client:
        store = (await client.post("/", json=rpc("tools/list"))).json()

    assert [t["name"] for t in minimal["result"]["tools"]] == ["ping", "time"]
    assert [t["name"] for t in store["result"]["tools"]] == [
        "ping",
        "time",
        "list_categories",
        "wc_search_products",
        "wc_get_product",
        "wc_update_product",
    ]
    get_product = store["result"]["tools"][4]
    assert get_product["inputSchema"]["required"] == ["id"]


@pytest.mark.asyncio
async def test_tools_call_ping():
    """Test ping works over POST with no upstream configured."""
    async with app_client(create_app(minimal_settings())) as client:
        response = await client.post("/sse", json=rpc("tools/call", {"name": "ping", "arguments": {}}))

    result = response.json()["result"]
    assert result["content"] == [{"type": "text", "text": "pong"}]
    assert result["isError"] is False


@pytest.mark.asyncio
async def test_tools_call_upstream_failure_is_error_result():
    """Test an upstream 500 comes back as an isError tool result."""
    upstream = RecordingUpstream(lambda request: httpx.Response(500, text="database down"))
    app = create_app(store_settings(), upstream_transport=httpx.MockTransport(upstream))

    async with app_client(app) as client:
        response = await client.post("/", json=rpc(
            "tools/call", {"name": "wc_get_product", "arguments": {"id": 7}}, request_id=9
        ))

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == 9
    assert body["result"]["isError"] is True
    assert "500" in body["result"]["content"][0]["text"]
    assert upstream.requests[0].headers["Authorization"].startswith("Basic ")


@pytest.mark.asyncio
async def test_tools_call_unknown_tool():
    """Test calling an unregistered tool still returns a well-formed envelope."""
    async with app_client(create_app(minimal_settings())) as client:
        response = await client.post("/", json=rpc("tools/call", {"name": "nope"}))

    body = response.json()
    assert body["result"]["isError"] is True
    assert "nope" in body["result"]["content"][0]["text"]


@pytest.mark.asyncio
async def test_unknown_method_and_notification():
    """Test unknown methods get -32601 and notifications get 202."""
    async with app_client(create_app(minimal_settings())) as client:
        unknown = await client.post("/", json=rpc("resources/list"))
        notification = await client.post("/", json={"jsonrpc": "2.0", "method": "notifications/initialized"})

    assert unknown.json()["error"]["code"] == -32601
    assert notification.status_code == 202
    assert notification.content == b""


@pytest.mark.asyncio
async def test_batch_request():
    """Test a batch returns one answer per request, none for notifications."""
    async with app_client(create_app(minimal_settings())) as client:
        response = await client.post("/", json=[
            rpc("ping", request_id=1),
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            rpc("tools/call", {"name": "ping"}, request_id=2),
        ])

    body = response.json()
    assert [item["id"] for item in body] == [1, 2]


@pytest.mark.asyncio
async def test_invalid_json_is_parse_error():
    """Test a malformed body is answered with a JSON-RPC parse error."""
    async with app_client(create_app(minimal_settings())) as client:
        response = await client.post("/sse", content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32700


@pytest.mark.asyncio
async def test_relay_streams_chunks_in_order():
    """Test the bridge relays upstream chunks verbatim with mirrored headers."""
    body = ChunkStream([b"a", b"b", b"c"])
    upstream = RecordingUpstream(lambda request: httpx.Response(
        200,
        headers={
            "content-type": "text/event-stream",
            "mcp-protocol-version": "2025-06-18",
            "mcp-transport-type": "streamable-http",
            "set-cookie": "internal=1"
        },
        stream=body
    ))
    app = create_app(
        bridge_settings(mcp_upstream_token="bridge-token"),
        upstream_transport=httpx.MockTransport(upstream)
    )
    payload = rpc("tools/list", request_id=3)

    async with app_client(app) as client:
        response = await client.post("/sse", json=payload, headers={"mcp-protocol-version": "2025-06-18"})

    assert response.status_code == 200
    assert response.content == b"abc"
    assert response.headers["content-type"] == "text/event-stream"
    assert response.headers["mcp-protocol-version"] == "2025-06-18"
    assert response.headers["mcp-transport-type"] == "streamable-http"
    assert "set-cookie" not in response.headers
    assert response.headers["cache-control"] == "no-cache, no-transform"
    assert body.closed is True

    forwarded = upstream.requests[0]
    assert str(forwarded.url) == UPSTREAM_URL
    assert forwarded.method == "POST"
    assert json.loads(forwarded.content) == payload
    assert forwarded.headers["Authorization"] == "Bearer bridge-token"
    assert forwarded.headers["mcp-protocol-version"] == "2025-06-18"


@pytest.mark.asyncio
async def test_relay_mirrors_upstream_status():
    """Test a non-200 upstream status is passed through unchanged."""
    upstream = RecordingUpstream(lambda request: httpx.Response(
        401, headers={"content-type": "application/json"}, stream=ChunkStream([b'{"error":"unauthorized"}'])
    ))
    app = create_app(bridge_settings(), upstream_transport=httpx.MockTransport(upstream))

    async with app_client(app) as client:
        response = await client.post("/", json=rpc("ping"))

    assert response.status_code == 401
    assert response.json() == {"error": "unauthorized"}
    assert "Authorization" not in upstream.requests[0].headers


@pytest.mark.asyncio
async def test_relay_empty_body_defaults_to_empty_object():
    """Test an empty inbound body is forwarded as {} and an empty upstream body ends at once."""
    upstream = RecordingUpstream(lambda request: httpx.Response(202, stream=ChunkStream([])))
    app = create_app(bridge_settings(), upstream_transport=httpx.MockTransport(upstream))

    async with app_client(app) as client:
        response = await client.post("/sse")

    assert response.status_code == 202
    assert response.content == b""
    assert json.loads(upstream.requests[0].content) == {}


@pytest.mark.asyncio
async def test_relay_abort_mid_stream_closes_cleanly(caplog):
    """Test an upstream failure mid-stream truncates the response and is logged."""
    body = ChunkStream([b"a", b"b"], fail=True)
    upstream = RecordingUpstream(lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, stream=body
    ))
    app = create_app(bridge_settings(), upstream_transport=httpx.MockTransport(upstream))

    with caplog.at_level(logging.WARNING, logger="woo_mcp_bridge.relay"):
        async with app_client(app) as client:
            response = await client.post("/sse", json=rpc("tools/list"))

    assert response.status_code == 200
    assert response.content == b"ab"
    assert body.closed is True
    assert any("Relay interrupted" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_relay_unreachable_upstream_returns_502():
    """Test a connection failure before streaming returns the JSON-RPC 502 body."""
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    app = create_app(bridge_settings(), upstream_transport=httpx.MockTransport(refuse))

    async with app_client(app) as client:
        with_id = await client.post("/sse", json=rpc("tools/list", request_id="abc"))
        without_id = await client.post("/sse")

    assert with_id.status_code == 502
    assert with_id.json() == {
        "jsonrpc": "2.0",
        "id": "abc",
        "error": {"code": -32603, "message": "Upstream proxy error"}
    }
    assert without_id.status_code == 502
    assert without_id.json()["id"] is None


@pytest.mark.asyncio
async def test_sse_session_server_lists_registry_tools():
    """Test the SDK server used for SSE sessions is backed by the registry."""
    settings = minimal_settings()
    app = create_app(settings)
    mcp_server = build_mcp_server(settings, app.state.registry)

    handler = mcp_server.request_handlers[ListToolsRequest]
    result = await handler(ListToolsRequest(method="tools/list"))

    assert [tool.name for tool in result.root.tools] == ["ping", "time"]


@pytest.mark.asyncio
async def test_sse_session_server_calls_tools():
    """Test SSE tool calls run registry handlers and flag failures."""
    settings = minimal_settings()
    app = create_app(settings)
    mcp_server = build_mcp_server(settings, app.state.registry)
    handler = mcp_server.request_handlers[CallToolRequest]

    ok = await handler(CallToolRequest(
        method="tools/call", params=CallToolRequestParams(name="ping", arguments={})
    ))
    failed = await handler(CallToolRequest(
        method="tools/call", params=CallToolRequestParams(name="missing", arguments={})
    ))

    assert ok.root.isError is False
    assert ok.root.content[0].text == "pong"
    assert failed.root.isError is True


def refuse_connection(request):
    raise httpx.ConnectError("connection refused", request=request)


@pytest.mark.asyncio
async def test_tools_call_unreachable_store_is_error_result():
    """Test a store connection failure is a failed tool result, not a JSON-RPC error."""
    app = create_app(store_settings(), upstream_transport=httpx.MockTransport(refuse_connection))

    async with app_client(app) as client:
        response = await client.post("/", json=rpc(
            "tools/call", {"name": "wc_get_product", "arguments": {"id": 3}}
        ))

    assert response.status_code == 200
    body = response.json()
    assert "error" not in body
    assert body["result"]["isError"] is True
    assert "connection refused" in body["result"]["content"][0]["text"]


@pytest.mark.asyncio
async def test_ping_in_store_mode_with_unreachable_store():
    """Test ping over POST answers while the store is down."""
    upstream = RecordingUpstream(refuse_connection)
    app = create_app(store_settings(), upstream_transport=httpx.MockTransport(upstream))

    async with app_client(app) as client:
        response = await client.post("/sse", json=rpc("tools/call", {"name": "ping", "arguments": {}}))

    result = response.json()["result"]
    assert result["isError"] is False
    assert result["content"] == [{"type": "text", "text": "pong"}]
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_ping_in_bridge_mode_with_unreachable_upstream():
    """Test the SSE session answers ping while the relay upstream is down."""
    upstream = RecordingUpstream(refuse_connection)
    settings = bridge_settings()
    app = create_app(settings, upstream_transport=httpx.MockTransport(upstream))
    mcp_server = build_mcp_server(settings, app.state.registry)
    handler = mcp_server.request_handlers[CallToolRequest]

    result = await handler(CallToolRequest(
        method="tools/call", params=CallToolRequestParams(name="ping", arguments={})
    ))

    assert result.root.isError is False
    assert result.root.content[0].text == "pong"
    assert upstream.requests == []
