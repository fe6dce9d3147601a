from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from .errors import ModelProtocolError

# Built-in tool executed by the model provider, never by the local registry.
WEB_SEARCH_TOOL_NAME = "web_search"

Message = Dict[str, Any]


@dataclass
class TextBlock:
    text: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    type: str = field(default="text", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return self.raw or {"type": self.type, "text": self.text}


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    type: str = field(default="tool_use", init=False)

    @property
    def is_server_side(self) -> bool:
        return self.name == WEB_SEARCH_TOOL_NAME

    def to_dict(self) -> Dict[str, Any]:
        return self.raw or {
            "type": self.type,
            "id": self.id,
            "name": self.name,
            "input": self.input,
        }


@dataclass
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    type: str = field(default="tool_result", init=False)

    def to_dict(self) -> Dict[str, Any]:
        if self.raw:
            return self.raw
        data: Dict[str, Any] = {
            "type": self.type,
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            data["is_error"] = True
        return data


@dataclass
class ServerToolUseBlock:
    """A tool call the provider runs itself (web search); kept only for history."""

    id: str
    name: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    type: str = field(default="server_tool_use", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return self.raw or {"type": self.type, "id": self.id, "name": self.name}


@dataclass
class WebSearchToolResultBlock:
    tool_use_id: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)
    type: str = field(default="web_search_tool_result", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return self.raw or {"type": self.type, "tool_use_id": self.tool_use_id}


ContentBlock = Union[
    TextBlock,
    ToolUseBlock,
    ToolResultBlock,
    ServerToolUseBlock,
    WebSearchToolResultBlock,
]


def parse_content_block(data: Dict[str, Any]) -> ContentBlock:
    """Build a typed content block from its JSON form.

    Raises ModelProtocolError for a missing or unknown ``type`` so new
    provider block kinds surface instead of being dropped from history.
    """
    if not isinstance(data, dict):
        raise ModelProtocolError(f"Content block must be an object, got {type(data).__name__}")
    block_type = data.get("type")
    try:
        if block_type == "text":
            return TextBlock(text=data["text"], raw=data)
        if block_type == "tool_use":
            return ToolUseBlock(
                id=data["id"],
                name=data["name"],
                input=data.get("input") or {},
                raw=data,
            )
        if block_type == "tool_result":
            return ToolResultBlock(
                tool_use_id=data["tool_use_id"],
                content=data.get("content", ""),
                is_error=bool(data.get("is_error", False)),
                raw=data,
            )
        if block_type == "server_tool_use":
            return ServerToolUseBlock(id=data["id"], name=data["name"], raw=data)
        if block_type == "web_search_tool_result":
            return WebSearchToolResultBlock(tool_use_id=data["tool_use_id"], raw=data)
    except KeyError as e:
        raise ModelProtocolError(f"Content block '{block_type}' missing field {e}") from e
    raise ModelProtocolError(f"Unknown content block type: {block_type!r}")


@dataclass
class ToolDefinition:
    """Caller-declared tool: name plus JSON schema for its input."""

    name: str
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "input_schema": self.input_schema}
        if self.description:
            data["description"] = self.description
        return data


@dataclass
class ModelResponse:
    stop_reason: str | None
    content: List[ContentBlock] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelResponse":
        if not isinstance(data, dict):
            raise ModelProtocolError("Model response must be a JSON object")
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ModelProtocolError("Model response has no content list")
        return cls(
            stop_reason=data.get("stop_reason"),
            content=[parse_content_block(b) for b in blocks],
        )

    def content_dicts(self) -> List[Dict[str, Any]]:
        return [block.to_dict() for block in self.content]

    def text(self) -> str:
        """Join every text block, in order, with newlines."""
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))


@dataclass
class ConversationEntry:
    """Per-conversation state held by the store (messages + last access, epoch seconds)."""

    key: str
    messages: List[Message] = field(default_factory=list)
    last_access: float = 0.0


@dataclass
class ChatResult:
    response: str
    history: List[Message] = field(default_factory=list)
