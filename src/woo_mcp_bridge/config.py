"""Configuration management for the MCP tool server and bridge."""
from typing import List, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

# Variables each mode cannot start without
REQUIRED_BY_MODE = {
    "minimal": (),
    "store": ("wc_url", "wc_key", "wc_secret"),
    "bridge": ("mcp_upstream_url",),
}


class Settings(BaseSettings):
    """Application settings with .env file support.

    Built once at startup and never mutated afterwards. Construction fails
    with ConfigurationError when the chosen mode is missing required values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    mcp_mode: Literal["minimal", "store", "bridge"] = Field(
        "minimal",
        description="Which tool surface and POST behaviour to serve"
    )

    # WooCommerce REST API (store mode)
    wc_url: Optional[str] = Field(
        None,
        description="Store base URL, without the /wp-json suffix"
    )
    wc_key: Optional[str] = Field(
        None,
        description="WooCommerce consumer key"
    )
    wc_secret: Optional[str] = Field(
        None,
        description="WooCommerce consumer secret"
    )
    wc_auth_in_query: bool = Field(
        False,
        description="Send credentials as query parameters instead of basic auth"
    )

    # Streaming JSON-RPC upstream (bridge mode)
    mcp_upstream_url: Optional[str] = Field(
        None,
        description="Streaming JSON-RPC endpoint that POST requests are relayed to"
    )
    mcp_upstream_token: Optional[str] = Field(
        None,
        description="Optional bearer token attached to relayed requests"
    )

    # Server
    host: str = Field(
        "0.0.0.0",
        description="Listening interface"
    )
    port: int = Field(
        8787,
        description="Listening port",
        ge=1,
        le=65535
    )
    server_name: str = Field(
        "woocommerce-mcp",
        description="Server name reported to clients"
    )
    keep_alive_timeout: int = Field(
        3600,
        description="Keep-alive timeout in seconds; long so SSE streams stay open",
        ge=5
    )
    accept_unmatched_post: bool = Field(
        False,
        description="Answer 200 to POSTs on unknown paths instead of 404/405"
    )

    # Upstream requests
    request_timeout: int = Field(
        30,
        description="REST request timeout in seconds",
        ge=5,
        le=300
    )
    verify_ssl: bool = Field(
        True,
        description="Verify SSL certificates"
    )

    # Logging
    log_level: str = Field(
        "INFO",
        description="Logging level",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$"
    )

    @field_validator("wc_url", "mcp_upstream_url", mode="before")
    def strip_trailing_slash(cls, v):
        """Normalise base URLs so paths can be appended directly."""
        if isinstance(v, str):
            v = v.strip().rstrip("/")
            return v or None
        return v

    @field_validator("log_level", mode="before")
    def upper_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @model_validator(mode="after")
    def check_required_for_mode(self):
        """Fail fast when the selected mode lacks required values."""
        missing = self.missing_for_mode()
        if missing:
            names = ", ".join(missing)
            raise ConfigurationError(
                f"Mode '{self.mcp_mode}' requires {names} to be set",
                missing=missing
            )
        return self

    def missing_for_mode(self) -> List[str]:
        """Return the environment variable names the current mode still needs."""
        return [
            name.upper()
            for name in REQUIRED_BY_MODE[self.mcp_mode]
            if not getattr(self, name)
        ]

    @property
    def store_api_url(self) -> str:
        """Base URL of the WooCommerce v3 REST API."""
        return f"{self.wc_url}/wp-json/wc/v3"
