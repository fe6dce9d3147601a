import json
import logging
from typing import Any, List, Mapping, Sequence

from ..models import (
    ChatResult,
    Message,
    ModelResponse,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from ..services.conversation_store import ConversationStore
from ..services.model_gateway import ModelGateway
from .tools import ToolExecutor, ToolRegistry

logger = logging.getLogger(__name__)


class ToolDispatchLoop:
    """Runs one conversation turn: model call, local tool calls, repeat until a final answer."""

    def __init__(self, gateway: ModelGateway) -> None:
        self._gateway = gateway

    async def _execute_tool(
        self, block: ToolUseBlock, executors: Mapping[str, ToolExecutor]
    ) -> ToolResultBlock:
        """Run one tool_use block. Executor failures become error results, never exceptions."""
        executor = executors.get(block.name)
        if executor is None:
            logger.warning("Model requested unknown tool: %s", block.name)
            result: Any = {"error": f"Unknown tool: {block.name}"}
            is_error = True
        else:
            logger.info("Executing tool: %s", block.name)
            try:
                result = await executor(block.input)
                is_error = False
            except Exception as e:
                logger.warning("Tool %s failed: %s", block.name, e)
                result = {"error": str(e)}
                is_error = True
        return ToolResultBlock(
            tool_use_id=block.id,
            content=json.dumps(result, default=str),
            is_error=is_error,
        )

    async def _run_tools(
        self, response: ModelResponse, executors: Mapping[str, ToolExecutor]
    ) -> List[ToolResultBlock]:
        results: List[ToolResultBlock] = []
        for block in response.content:
            if not isinstance(block, ToolUseBlock):
                continue
            if block.is_server_side:
                # Already run by the provider; no local result expected.
                continue
            results.append(await self._execute_tool(block, executors))
        return results

    async def run(
        self,
        user_message: str,
        history: Sequence[Message],
        tool_definitions: Sequence[ToolDefinition],
        tool_executors: Mapping[str, ToolExecutor],
    ) -> ChatResult:
        """Drive the tool-use loop for one user message.

        Returns the final text (all text blocks of the last assistant reply,
        newline-joined) and the full message list for this turn, history
        included. Model errors propagate; tool errors are fed back to the model.
        """
        messages: List[Message] = list(history)
        messages.append({"role": "user", "content": user_message})

        response = await self._gateway.call(messages, tool_definitions)
        messages.append({"role": "assistant", "content": response.content_dicts()})
        rounds = 1

        while response.stop_reason == "tool_use":
            tool_results = await self._run_tools(response, tool_executors)
            if not tool_results:
                break

            messages.append(
                {"role": "user", "content": [r.to_dict() for r in tool_results]}
            )
            response = await self._gateway.call(messages, tool_definitions)
            messages.append({"role": "assistant", "content": response.content_dicts()})
            rounds += 1

        logger.debug("Turn finished after %d model call(s), stop_reason=%s", rounds, response.stop_reason)
        return ChatResult(response=response.text(), history=messages)


class ChatAgentService:
    """Ties the conversation store to the dispatch loop for keyed chats."""

    def __init__(
        self,
        store: ConversationStore,
        gateway: ModelGateway,
        registry: ToolRegistry | None = None,
    ) -> None:
        self._store = store
        self._loop = ToolDispatchLoop(gateway)
        self._registry = registry if registry is not None else ToolRegistry()

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def handle_message(self, key: str, user_message: str) -> ChatResult:
        """Answer user_message in the conversation identified by key.

        History is written back only when the turn completes; a model
        failure leaves the stored conversation as it was.
        """
        logger.info("Handling message for conversation %s", key)
        history = self._store.get_history(key)
        result = await self._loop.run(
            user_message,
            history,
            self._registry.definitions,
            self._registry.executors,
        )
        self._store.update_history(key, result.history)
        return result

    def reset(self, key: str) -> None:
        """Drop the stored conversation for key."""
        self._store.clear_history(key)
        logger.info("Cleared conversation %s", key)
