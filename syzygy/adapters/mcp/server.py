"""Line-delimited JSON-RPC server over a pair of text streams.

Each input line carries one request and produces exactly one response
line. Requests are handled strictly one at a time: the next line is not
read until the current response has been written. Blocking reads run
in the default executor so the event loop stays responsive.
"""

import asyncio
import json
import logging
import sys
from typing import Any, TextIO

from pydantic import ValidationError

from syzygy.core.errors import SyzygyError

from .protocol import (
    ERR_INTERNAL,
    ERR_INVALID_PARAMS,
    ERR_INVALID_REQUEST,
    ERR_METHOD_NOT_FOUND,
    ERR_PARSE,
    NO_ID,
    JSONRPCRequest,
    ToolsCallParams,
    error_response,
    result_response,
    text_content,
)
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_VERSION = "2024-11-05"


def _validation_detail(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
        for err in error.errors(include_url=False)
    )


def _pretty_json(value: Any) -> str:
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


class MCPServer:
    """Reads requests from input and writes responses to output."""

    def __init__(
        self,
        registry: ToolRegistry,
        name: str = "syzygy-mcp",
        version: str = "0.1.0",
        protocol_version: str = DEFAULT_PROTOCOL_VERSION,
        input_stream: TextIO | None = None,
        output_stream: TextIO | None = None,
    ):
        """Initialize the server.

        Args:
            registry: Tool registry that executes tools/call requests.
            name: Server name reported by initialize.
            version: Server version reported by initialize.
            protocol_version: Protocol version reported by initialize.
            input_stream: Request stream (stdin if None).
            output_stream: Response stream (stdout if None).
        """
        self.registry = registry
        self.name = name
        self.version = version
        self.protocol_version = protocol_version
        self.input = input_stream if input_stream is not None else sys.stdin
        self.output = output_stream if output_stream is not None else sys.stdout

    async def run(self) -> None:
        """Serve until end of input.

        Raises:
            OSError: If a response cannot be written.
        """
        logger.info(f"Starting {self.name} {self.version}")
        loop = asyncio.get_running_loop()

        while True:
            line = await loop.run_in_executor(None, self._read_line)
            if not line:
                break
            line = line.strip()
            if not line:
                continue

            response = await self.handle_line(line)
            self._write(response)

        logger.info("Input closed, stopping server")

    def _read_line(self) -> str:
        """Read one request line; undecodable bytes become U+FFFD."""
        buffer = getattr(self.input, "buffer", None)
        if buffer is not None:
            return buffer.readline().decode("utf-8", errors="replace")
        return self.input.readline()

    def _write(self, response: dict[str, Any]) -> None:
        self.output.write(json.dumps(response, ensure_ascii=False) + "\n")
        self.output.flush()

    async def handle_line(self, line: str) -> dict[str, Any]:
        """Turn one raw input line into its response."""
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding malformed request line: {e}")
            return error_response(None, ERR_PARSE, "invalid JSON", str(e))

        try:
            return await self.handle(payload)
        except Exception as e:
            logger.error(f"Internal error while handling request: {e}", exc_info=True)
            request_id = payload.get("id", NO_ID) if isinstance(payload, dict) else None
            return error_response(request_id, ERR_INTERNAL, "internal error", str(e))

    async def handle(self, payload: Any) -> dict[str, Any]:
        """Dispatch a decoded JSON value as a request."""
        try:
            request = JSONRPCRequest.model_validate(payload)
        except ValidationError as e:
            request_id = payload.get("id", NO_ID) if isinstance(payload, dict) else None
            return error_response(
                request_id, ERR_INVALID_REQUEST, "invalid request", _validation_detail(e)
            )

        request_id = request.response_id
        logger.debug(
            f"rpc method={request.method} id={request.id}",
            extra={"method": request.method},
        )

        if request.method == "initialize":
            return result_response(request_id, self._initialize_result())
        if request.method == "tools/list":
            return result_response(request_id, {"tools": self.registry.list_tools()})
        if request.method == "tools/call":
            return await self._handle_tools_call(request_id, request.params)
        return error_response(
            request_id, ERR_METHOD_NOT_FOUND, "method not found", request.method
        )

    def _initialize_result(self) -> dict[str, Any]:
        return {
            "protocolVersion": self.protocol_version,
            "serverInfo": {"name": self.name, "version": self.version},
            "capabilities": {"tools": {}},
        }

    async def _handle_tools_call(self, request_id: Any, params: Any) -> dict[str, Any]:
        if params is None:
            return error_response(
                request_id, ERR_INVALID_PARAMS, "invalid params", "missing params"
            )
        try:
            call = ToolsCallParams.model_validate(params)
        except ValidationError as e:
            return error_response(
                request_id, ERR_INVALID_PARAMS, "invalid params", _validation_detail(e)
            )

        try:
            result = await self.registry.call_tool(call.name, call.arguments)
        except SyzygyError as e:
            logger.warning(
                f"Tool {call.name} failed: {e}",
                extra={"tool": call.name, "error_code": e.code},
            )
            return result_response(request_id, text_content(f"ERROR: {e}", is_error=True))
        except Exception as e:
            logger.error(f"Tool {call.name} raised: {e}", exc_info=True)
            return result_response(request_id, text_content(f"ERROR: {e}", is_error=True))

        return result_response(request_id, text_content(_pretty_json(result)))
