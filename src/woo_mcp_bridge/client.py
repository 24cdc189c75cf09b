"""HTTP client for the upstream REST API and the streaming JSON-RPC upstream."""
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .errors import RelayError, UpstreamError

logger = logging.getLogger(__name__)

PROTOCOL_VERSION_HEADER = "mcp-protocol-version"
TRANSPORT_TYPE_HEADER = "mcp-transport-type"
SESSION_ID_HEADER = "mcp-session-id"


def is_json(content_type: str) -> bool:
    """True for application/json and structured +json media types."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


class UpstreamStream:
    """
    An open streaming response from the upstream.

    The caller must relay ``iter_chunks()`` and then ``aclose()`` the stream,
    even when the relay is cut short.
    """

    def __init__(self, response: httpx.Response):
        self._response = response
        self.status_code = response.status_code
        self.content_type = response.headers.get("content-type", "")
        self.protocol_version = response.headers.get(PROTOCOL_VERSION_HEADER)
        self.transport_type = response.headers.get(TRANSPORT_TYPE_HEADER)
        self.session_id = response.headers.get(SESSION_ID_HEADER)
        self.content_encoding = response.headers.get("content-encoding")

    def passthrough_headers(self) -> Dict[str, str]:
        """The allow-listed upstream headers to mirror onto the client response."""
        headers = {}
        if self.content_type:
            headers["content-type"] = self.content_type
        if self.protocol_version:
            headers[PROTOCOL_VERSION_HEADER] = self.protocol_version
        if self.transport_type:
            headers[TRANSPORT_TYPE_HEADER] = self.transport_type
        if self.session_id:
            headers[SESSION_ID_HEADER] = self.session_id
        # Chunks are relayed undecoded, so the encoding travels with them
        if self.content_encoding:
            headers["content-encoding"] = self.content_encoding
        return headers

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield body chunks verbatim, in the order the upstream sent them."""
        try:
            async for chunk in self._response.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            raise RelayError(f"Upstream stream failed: {e}") from e

    async def aclose(self) -> None:
        await self._response.aclose()


class UpstreamClient:
    """
    Issues authenticated requests against one configured base URL.

    ``auth`` is any object with a ``build_authorization(path)`` method
    (see :mod:`woo_mcp_bridge.auth`).
    """

    def __init__(self, base_url: str, auth, http_client: httpx.AsyncClient):
        self.base_url = base_url
        self.auth = auth
        self.http_client = http_client

    async def request(self, method: str, path: str, body: Optional[Any] = None) -> Any:
        """
        Send a request and return the decoded JSON body.

        Returns None when the upstream answers with a non-JSON content type.

        Raises:
            UpstreamError: The upstream answered with a non-success status.
        """
        authorization = self.auth.build_authorization(path)
        url = self.base_url + path + authorization.url_suffix

        logger.debug(f"{method} {self.base_url}{path}")

        response = await self.http_client.request(
            method,
            url,
            headers=authorization.headers,
            content=json.dumps(body) if body else None
        )

        if not response.is_success:
            try:
                text = response.text
            except Exception:
                text = ""
            logger.warning(f"Upstream {method} {path} failed with {response.status_code}")
            raise UpstreamError(response.status_code, response.reason_phrase, text)

        if is_json(response.headers.get("content-type", "")):
            return response.json()
        return None

    async def request_stream(
        self,
        body: bytes,
        headers: Optional[Dict[str, str]] = None
    ) -> UpstreamStream:
        """
        POST ``body`` to the base URL and return the response unread.

        Raises:
            httpx.HTTPError: The upstream could not be reached.
        """
        authorization = self.auth.build_authorization("")
        request_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        request_headers.update(headers or {})
        request_headers.update(authorization.headers)

        request = self.http_client.build_request(
            "POST",
            self.base_url + authorization.url_suffix,
            content=body,
            headers=request_headers
        )
        response = await self.http_client.send(request, stream=True)
        logger.debug(f"Upstream stream opened with status {response.status_code}")
        return UpstreamStream(response)
