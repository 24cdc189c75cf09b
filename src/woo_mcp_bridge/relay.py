"""Byte relay from the streaming upstream to the client response."""
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from fastapi.responses import JSONResponse, StreamingResponse

from .client import PROTOCOL_VERSION_HEADER, SESSION_ID_HEADER, UpstreamClient, UpstreamStream
from .errors import RelayError

logger = logging.getLogger(__name__)

# Inbound request headers forwarded to the upstream
FORWARDED_REQUEST_HEADERS = (PROTOCOL_VERSION_HEADER, SESSION_ID_HEADER)


def upstream_error_response(request_id: Any = None) -> JSONResponse:
    """The 502 returned when the upstream cannot be reached at all."""
    return JSONResponse(
        status_code=502,
        content={
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {
                "code": -32603,
                "message": "Upstream proxy error"
            }
        }
    )


async def relay_chunks(stream: UpstreamStream) -> AsyncIterator[bytes]:
    """
    Yield upstream chunks in arrival order, then close the upstream.

    A failure mid-stream ends the iteration cleanly so the client sees a
    possibly truncated stream instead of a broken connection. The upstream
    response is closed on every exit, including cancellation when the client
    disconnects.
    """
    relayed = 0
    try:
        async for chunk in stream.iter_chunks():
            relayed += len(chunk)
            yield chunk
        logger.debug(f"Relay finished after {relayed} bytes")
    except RelayError as e:
        logger.warning(f"Relay interrupted after {relayed} bytes: {e}")
    finally:
        await stream.aclose()


async def relay_request(
    upstream: UpstreamClient,
    payload: Optional[Dict[str, Any]],
    inbound_headers: Optional[Dict[str, str]] = None
):
    """
    Forward one JSON-RPC payload and stream the upstream answer back.

    Returns a StreamingResponse carrying the upstream status and allow-listed
    headers, or a 502 JSON-RPC error when the upstream is unreachable.
    """
    payload = payload if payload is not None else {}
    request_id = payload.get("id") if isinstance(payload, dict) else None
    body = json.dumps(payload).encode("utf-8")

    headers = {}
    for name in FORWARDED_REQUEST_HEADERS:
        value = (inbound_headers or {}).get(name)
        if value:
            headers[name] = value

    try:
        stream = await upstream.request_stream(body, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"Upstream proxy error: {e}")
        return upstream_error_response(request_id)

    logger.info(f"Relaying upstream response with status {stream.status_code}")
    return StreamingResponse(
        relay_chunks(stream),
        status_code=stream.status_code,
        headers=stream.passthrough_headers()
    )
