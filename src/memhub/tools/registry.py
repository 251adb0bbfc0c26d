"""Tool registry for managing and dispatching tools."""

import logging
import time
from typing import Any

from ..errors import StoreError, ValidationError
from ..logging import JSONLLogger
from .base import Tool, ToolResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry for available tools."""

    def __init__(self, event_log: JSONLLogger | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        self.event_log = event_log

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        """Unregister a tool by name."""
        if name in self._tools:
            del self._tools[name]

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_tools_schema(self) -> list[dict[str, Any]]:
        """Get schemas for all tools (for function calling)."""
        return [tool.get_schema() for tool in self._tools.values()]

    def _log_error(self, tool_name: str, error: Exception) -> None:
        if self.event_log is not None:
            self.event_log.log_error(error, tool_name=tool_name)

    async def dispatch(self, tool_name: str, args: dict[str, Any]) -> ToolResult:
        """Dispatch a tool call by name with arguments.

        Never raises: every failure is returned as an unsuccessful result.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            return ToolResult.failure(f"Unknown tool: {tool_name}")

        if self.event_log is not None:
            self.event_log.log_tool_call(tool_name, args)

        started = time.monotonic()
        valid, error = tool.validate_args(args)
        if not valid:
            result = ToolResult.failure(error or "Invalid arguments")
        else:
            try:
                result = await tool.execute(**args)
            except ValidationError as e:
                result = ToolResult.failure(str(e))
            except StoreError as e:
                logger.error("Tool %s failed in store: %s", tool_name, e)
                self._log_error(tool_name, e)
                result = ToolResult.failure(f"Store unavailable: {e}")
            except Exception as e:
                logger.exception("Tool %s crashed", tool_name)
                self._log_error(tool_name, e)
                result = ToolResult.failure(f"Tool execution failed: {e}")

        if self.event_log is not None:
            self.event_log.log_tool_result(
                tool_name,
                result.success,
                duration_ms=(time.monotonic() - started) * 1000,
                error=result.error,
            )
        return result
