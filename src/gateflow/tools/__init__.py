from gateflow.tools.breaker import CircuitBreaker, CircuitBreakerEntry
from gateflow.tools.dispatcher import (
    DEFAULT_TOOL_TIMEOUTS,
    ToolCallContext,
    ToolDispatcher,
    failure_result,
)
from gateflow.tools.handlers import ProjectToolHandlers
from gateflow.tools.registry import (
    TOOL_CATALOG,
    ToolRegistryError,
    ToolSchema,
    get_tool,
    tools_for_role,
)

__all__ = [
    "DEFAULT_TOOL_TIMEOUTS",
    "TOOL_CATALOG",
    "CircuitBreaker",
    "CircuitBreakerEntry",
    "ProjectToolHandlers",
    "ToolCallContext",
    "ToolDispatcher",
    "ToolRegistryError",
    "ToolSchema",
    "failure_result",
    "get_tool",
    "tools_for_role",
]
