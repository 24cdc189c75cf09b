"""Tool registry and the built-in tools every server mode carries."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

import httpx
from mcp.types import TextContent, Tool
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import UnknownToolError, UpstreamError

logger = logging.getLogger(__name__)


class NoInput(BaseModel):
    """Input shape for tools that take no arguments."""
    model_config = ConfigDict(extra="ignore")


@dataclass(frozen=True)
class ToolResult:
    """Ordered text content returned by one tool invocation."""
    content: Tuple[TextContent, ...] = ()
    is_error: bool = False

    @classmethod
    def text(cls, text: str) -> "ToolResult":
        return cls(content=(TextContent(type="text", text=text),))

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=(TextContent(type="text", text=message),), is_error=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": [item.model_dump(by_alias=True, exclude_none=True) for item in self.content],
            "isError": self.is_error
        }


Handler = Callable[[BaseModel], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: Handler

    @property
    def input_schema(self) -> Dict[str, Any]:
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def to_tool(self) -> Tool:
        """The MCP wire description of this tool."""
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.input_schema
        )


class ToolRegistry:
    """
    Name-to-handler mapping, populated once at startup.

    Registration order is preserved by ``list()``.
    """

    def __init__(self):
        self._tools: Dict[str, ToolDescriptor] = {}

    def register(
        self,
        name: str,
        description: str,
        input_model: Type[BaseModel],
        handler: Handler
    ) -> ToolDescriptor:
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        descriptor = ToolDescriptor(name, description, input_model, handler)
        self._tools[name] = descriptor
        return descriptor

    def list(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """
        Validate ``arguments`` and run the named tool.

        Raises:
            UnknownToolError: No tool is registered under ``name``.
            pydantic.ValidationError: The arguments do not fit the input shape.
            UpstreamError: The handler's upstream call failed.
            httpx.HTTPError: The handler could not reach its upstream.
        """
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(name)

        params = descriptor.input_model.model_validate(arguments or {})
        logger.info(f"Calling tool: {name}")
        return await descriptor.handler(params)

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Invoke a tool, reporting expected failures as an error result."""
        try:
            return await self.invoke(name, arguments)
        except UnknownToolError as e:
            logger.warning(str(e))
            return ToolResult.error(str(e))
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {name}: {e.error_count()} error(s)")
            return ToolResult.error(f"Invalid arguments for {name}: {e}")
        except UpstreamError as e:
            logger.error(f"Tool {name} failed: {e}")
            return ToolResult.error(f"Upstream error: {e}")
        except httpx.HTTPError as e:
            logger.error(f"Tool {name} could not reach upstream: {e}")
            return ToolResult.error(f"Upstream error: {e}")


async def ping(params: NoInput) -> ToolResult:
    return ToolResult.text("pong")


async def server_time(params: NoInput) -> ToolResult:
    now = datetime.now(timezone.utc)
    return ToolResult.text(now.isoformat(timespec="milliseconds").replace("+00:00", "Z"))


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Tools that never touch an upstream."""
    registry.register("ping", "Health check", NoInput, ping)
    registry.register("time", "Server time (ISO)", NoInput, server_time)
