"""Static credential injection for upstream requests."""
import base64
from dataclasses import dataclass, field
from typing import Dict
from urllib.parse import quote

from .config import Settings


@dataclass(frozen=True)
class Authorization:
    """Headers and URL suffix to apply to one outbound request."""
    headers: Dict[str, str] = field(default_factory=dict)
    url_suffix: str = ""


@dataclass(frozen=True)
class KeySecretAuth:
    """
    WooCommerce consumer key/secret credentials.

    Sent either as an HTTP basic-auth header or, for hosts that strip the
    Authorization header, as ``consumer_key``/``consumer_secret`` query
    parameters.
    """
    key: str
    secret: str
    in_query: bool = False

    def build_authorization(self, path: str) -> Authorization:
        headers = {"Content-Type": "application/json"}

        if self.in_query:
            sep = "&" if "?" in path else "?"
            suffix = (
                f"{sep}consumer_key={quote(self.key, safe='')}"
                f"&consumer_secret={quote(self.secret, safe='')}"
            )
            return Authorization(headers=headers, url_suffix=suffix)

        token = base64.b64encode(f"{self.key}:{self.secret}".encode("utf-8")).decode("ascii")
        headers["Authorization"] = f"Basic {token}"
        return Authorization(headers=headers)


@dataclass(frozen=True)
class BearerAuth:
    """Static bearer token for the streaming upstream."""
    token: str

    def build_authorization(self, path: str) -> Authorization:
        return Authorization(headers={"Authorization": f"Bearer {self.token}"})


@dataclass(frozen=True)
class NoAuth:
    def build_authorization(self, path: str) -> Authorization:
        return Authorization()


def store_auth(settings: Settings) -> KeySecretAuth:
    """Credentials for the WooCommerce REST API."""
    return KeySecretAuth(
        key=settings.wc_key,
        secret=settings.wc_secret,
        in_query=settings.wc_auth_in_query
    )


def upstream_auth(settings: Settings):
    """Credentials for the streaming upstream; bearer when a token is configured."""
    if settings.mcp_upstream_token:
        return BearerAuth(settings.mcp_upstream_token)
    return NoAuth()
