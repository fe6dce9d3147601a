import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List

from ..models import WEB_SEARCH_TOOL_NAME, ToolDefinition

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[Dict[str, Any]], Awaitable[Any]]


class ToolRegistry:
    """Caller-side registry pairing tool definitions with their async executors.

    Keeps the definitions sent to the model and the executors the dispatch
    loop looks up by name in sync, so a declared tool always has a handler.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, ToolDefinition] = {}
        self._executors: Dict[str, ToolExecutor] = {}

    def register(
        self,
        name: str,
        executor: ToolExecutor,
        input_schema: Dict[str, Any] | None = None,
        description: str = "",
    ) -> ToolDefinition:
        """Register an async executor under name and return its definition.

        Raises:
            ValueError: name is reserved for the provider's web search, or
                already registered, or executor is not a coroutine function.
        """
        if name == WEB_SEARCH_TOOL_NAME:
            raise ValueError(f"Tool name '{name}' is reserved for the server-side web search")
        if name in self._definitions:
            raise ValueError(f"Tool '{name}' is already registered")
        if not inspect.iscoroutinefunction(executor):
            raise ValueError(f"Executor for tool '{name}' must be an async function")

        definition = ToolDefinition(name=name, description=description)
        if input_schema is not None:
            definition.input_schema = input_schema
        self._definitions[name] = definition
        self._executors[name] = executor
        logger.debug("Registered tool %s", name)
        return definition

    def tool(
        self,
        name: str,
        input_schema: Dict[str, Any] | None = None,
        description: str = "",
    ) -> Callable[[ToolExecutor], ToolExecutor]:
        """Decorator form of ``register``."""

        def decorator(func: ToolExecutor) -> ToolExecutor:
            self.register(name, func, input_schema=input_schema, description=description)
            return func

        return decorator

    def __contains__(self, name: object) -> bool:
        return name in self._executors

    @property
    def definitions(self) -> List[ToolDefinition]:
        return list(self._definitions.values())

    @property
    def executors(self) -> Dict[str, ToolExecutor]:
        return dict(self._executors)
