"""MCP tool server and streaming JSON-RPC bridge for a WooCommerce store."""
__version__ = "0.1.0"

from .config import Settings
from .server import create_app
from .tools import ToolRegistry, ToolResult

__all__ = ["Settings", "create_app", "ToolRegistry", "ToolResult"]
