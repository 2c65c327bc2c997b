"""
MCP (Model Context Protocol) server for OpenAI image generation.

Exposes two tools to any MCP-compatible client (Claude Desktop, Cursor,
LM Studio, etc.):

  text-to-image   generate images from a prompt and save them to disk
  image-to-image  edit existing images (optionally with a mask)

Each successful call returns the saved file path(s) as text, one per line.
Failures come back as a normal tool result whose text starts with
"Error generating image:" or "Error editing image:" and ``isError: true``.

Protocol: JSON-RPC 2.0 over stdio (one JSON object per line).  stdout is
reserved for protocol frames; all logging goes to stderr.

The tool list is available without an API key so hosts can discover the
schemas before secrets are configured; calls then fail with a
configuration error until ``OPENAI_API_KEY`` is set.

Usage
-----
Run directly:
    python -m imagegen_mcp.mcp_server

Or via the CLI:
    imagegen-mcp --models gpt-image-1 dall-e-3

Claude Desktop claude_desktop_config.json entry
-----------------------------------------------
{
  "mcpServers": {
    "imagegen": {
      "command": "imagegen-mcp",
      "args": ["--models", "gpt-image-1"],
      "env": {"OPENAI_API_KEY": "sk-..."}
    }
  }
}
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from .tools.errors import UnknownToolError, ValidationError
from .tools.manager import ToolManager

SERVER_NAME = "OpenAI Image Generation MCP"
SERVER_VERSION = "1.1.0"
_PROTOCOL_VERSIONS = {"2024-11-05", "2025-03-26", "2025-06-18"}
_DEFAULT_PROTOCOL = "2024-11-05"

log = logging.getLogger("imagegen-mcp")

_manager: ToolManager | None = None
# request id -> running tools/call task
_inflight: dict[Any, asyncio.Task] = {}
_tasks: set[asyncio.Task] = set()

# 32000 prompt characters of 4-byte UTF-8 plus JSON escaping fit well inside this.
_LINE_LIMIT = 16 * 1024 * 1024


def configure(manager: ToolManager) -> None:
    global _manager
    _manager = manager


def _get_manager() -> ToolManager:
    global _manager
    if _manager is None:
        from .config import resolve_config
        _manager = ToolManager.from_config(resolve_config())
    return _manager


# ---------------------------------------------------------------------------
# JSON-RPC 2.0 helpers
# ---------------------------------------------------------------------------

def _ok(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _err(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _write(obj: dict) -> None:
    sys.stdout.write(json.dumps(obj) + "\n")
    sys.stdout.flush()


# ---------------------------------------------------------------------------
# tools/call
# ---------------------------------------------------------------------------

async def _call_tool(req_id: Any, name: str, arguments: Any) -> None:
    mgr = _get_manager()
    try:
        params = mgr.validate(name, arguments)
    except (UnknownToolError, ValidationError) as exc:
        log.warning("tools/call %s rejected: %s", name, exc)
        _write(_err(req_id, -32602, str(exc)))
        return
    log.info("tools/call %s", name)
    try:
        result = await mgr.dispatch_validated(name, params)
    except asyncio.CancelledError:
        log.info("tools/call %s (id=%s) cancelled", name, req_id)
        raise
    _write(_ok(req_id, {"content": result.content(), "isError": result.is_error}))


def _spawn_call(req_id: Any, name: str, arguments: Any) -> asyncio.Task:
    task = asyncio.create_task(_call_tool(req_id, name, arguments))
    _inflight[req_id] = task
    _tasks.add(task)

    def _done(t: asyncio.Task, rid: Any = req_id) -> None:
        _tasks.discard(t)
        if _inflight.get(rid) is t:
            del _inflight[rid]

    task.add_done_callback(_done)
    return task


def _cancel(params: dict) -> None:
    task = _inflight.get(params.get("requestId"))
    if task is not None and not task.done():
        task.cancel()


# ---------------------------------------------------------------------------
# Main request handler
# ---------------------------------------------------------------------------

async def _handle(line: str) -> asyncio.Task | None:
    try:
        req = json.loads(line)
    except json.JSONDecodeError:
        _write(_err(None, -32700, "Parse error"))
        return None
    if not isinstance(req, dict):
        _write(_err(None, -32600, "Invalid Request"))
        return None

    req_id = req.get("id")
    method = req.get("method", "")
    params = req.get("params") or {}

    if method == "initialize":
        client_ver = params.get("protocolVersion", _DEFAULT_PROTOCOL)
        agreed_ver = client_ver if client_ver in _PROTOCOL_VERSIONS else _DEFAULT_PROTOCOL
        _write(_ok(req_id, {
            "protocolVersion": agreed_ver,
            "capabilities": {"tools": {}},
            "serverInfo": {
                "name": SERVER_NAME,
                "version": SERVER_VERSION,
            },
        }))

    elif method in ("notifications/initialized", "initialized"):
        # Notification — no response needed
        pass

    elif method == "notifications/cancelled":
        _cancel(params)

    elif method == "tools/list":
        _write(_ok(req_id, {"tools": _get_manager().tool_definitions()}))

    elif method == "tools/call":
        if req_id is None:
            # A notification cannot carry the result.
            log.warning("ignoring tools/call without an id")
            return None
        return _spawn_call(req_id, params.get("name", ""), params.get("arguments"))

    elif method == "ping":
        _write(_ok(req_id, {}))

    else:
        if req_id is not None:
            _write(_err(req_id, -32601, f"Method not found: {method}"))
    return None


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def _discard_line(reader: asyncio.StreamReader) -> None:
    """Drop buffered input up to and including the next newline."""
    while True:
        try:
            await reader.readuntil(b"\n")
            return
        except asyncio.LimitOverrunError as exc:
            await reader.readexactly(exc.consumed)
        except asyncio.IncompleteReadError:
            return


async def _serve(reader: asyncio.StreamReader) -> None:
    while True:
        try:
            line_bytes = await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as exc:
            # EOF; a final line may lack its newline.
            line_bytes = exc.partial
            if not line_bytes:
                break
        except asyncio.LimitOverrunError:
            log.warning("request line exceeds %d bytes; discarding it", _LINE_LIMIT)
            await _discard_line(reader)
            _write(_err(None, -32600, "Invalid Request: line too long"))
            continue
        except ConnectionError as exc:
            log.warning("stdin closed: %s", exc)
            break
        line = line_bytes.decode(errors="replace").strip()
        if line:
            await _handle(line)

    # Let in-flight calls finish and answer before exiting.
    pending = [t for t in _tasks if not t.done()]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def _run() -> None:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=_LINE_LIMIT)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    await _serve(reader)


def run() -> None:
    """Serve MCP over stdin/stdout until stdin closes."""
    asyncio.run(_run())


def log_startup(mgr: ToolManager) -> None:
    allowed = mgr.state.allowed
    log.info("%s %s started", SERVER_NAME, SERVER_VERSION)
    log.info("Available models: %s", ", ".join(allowed.names()))
    log.info("Default model: %s", allowed.default.value)
    if mgr.configured:
        log.info("OpenAI API key configured")
    else:
        log.warning("OpenAI API key not configured - tools will require configuration before use")


def main() -> None:
    from .cli import main as cli_main
    cli_main(sys.argv[1:])


if __name__ == "__main__":
    main()
