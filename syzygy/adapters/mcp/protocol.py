"""JSON-RPC 2.0 wire types for the stdio tool server.

Requests and tools/call params are validated with pydantic models;
responses are plain dicts built by the helpers below so that optional
members (id, data) can be omitted rather than serialized as null.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, StrictStr

JSONRPC_VERSION = "2.0"

ERR_PARSE = -32700
ERR_INVALID_REQUEST = -32600
ERR_METHOD_NOT_FOUND = -32601
ERR_INVALID_PARAMS = -32602
ERR_INTERNAL = -32603

# Sentinel for "the request carried no id member"; None is a valid id.
NO_ID: Any = object()


class JSONRPCRequest(BaseModel):
    """A decoded request line.

    The id may be any JSON value. A request without an id is a
    notification, but it still receives a response.
    """

    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = JSONRPC_VERSION
    id: Any = None
    method: StrictStr
    params: Any = None

    @property
    def response_id(self) -> Any:
        """The id to echo back, or NO_ID when the request had none."""
        return self.id if "id" in self.model_fields_set else NO_ID


class ToolsCallParams(BaseModel):
    """Params of a tools/call request."""

    model_config = ConfigDict(extra="ignore", strict=True)

    name: StrictStr
    arguments: dict[str, Any] | None = None


@dataclass(frozen=True)
class ToolDefinition:
    """One entry of the tools/list catalog."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def _envelope(request_id: Any) -> dict[str, Any]:
    response: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
    if request_id is not NO_ID:
        response["id"] = request_id
    return response


def result_response(request_id: Any, result: Any) -> dict[str, Any]:
    """Build a success response."""
    response = _envelope(request_id)
    response["result"] = result
    return response


def error_response(
    request_id: Any, code: int, message: str, data: Any = None
) -> dict[str, Any]:
    """Build an error response; data is omitted when None."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    response = _envelope(request_id)
    response["error"] = error
    return response


def text_content(text: str, is_error: bool = False) -> dict[str, Any]:
    """Wrap text as a tools/call result."""
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if is_error:
        result["isError"] = True
    return result
