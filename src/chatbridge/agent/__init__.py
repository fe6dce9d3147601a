"""Agent package: the tool-use conversation loop and the keyed chat service.

Tool definitions and executors are supplied by the caller through
``ToolRegistry``; the provider's web search is added by the gateway.
"""

from .agent import ChatAgentService, ToolDispatchLoop
from .tools import ToolExecutor, ToolRegistry

__all__ = [
    "ChatAgentService",
    "ToolDispatchLoop",
    "ToolExecutor",
    "ToolRegistry",
]
