import asyncio, json
from contextlib import suppress
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent
from .config import configure_logging, settings
from .answer import ChatAnswer, ChatBadInput, ChatNotReady, KbFound, get_orchestrator

server = Server("visa-chat")

def _text(payload: dict):
    return [TextContent(type="text", text=json.dumps(payload, ensure_ascii=False))]

@server.list_tools()
async def list_tools():
    return [
        Tool(
            name="kb_search",
            description="Input: free-text query. Output: JSON {id, text} of the matching knowledge base entry.",
            inputSchema={"type":"object","properties":{"query":{"type":"string"}},"required":["query"]}
        ),
        Tool(
            name="chat",
            description="Input: visa question. Output: JSON {answer} generated from the closest knowledge base entries.",
            inputSchema={"type":"object","properties":{"message":{"type":"string"}},"required":["message"]}
        ),
        Tool(
            name="health",
            description="Output: JSON {status, ready}; ready is true once knowledge base embeddings are built.",
            inputSchema={"type":"object","properties":{}}
        ),
    ]

@server.call_tool()
async def call_tool(name: str, arguments: dict):
    orchestrator = get_orchestrator(settings)
    if name == "kb_search":
        result = orchestrator.resolve_kb(arguments.get("query"))
        if isinstance(result, KbFound):
            return _text({"id": result.entry.id, "text": result.entry.text})
        return _text({"error":"No matching knowledge base entry."})
    if name == "chat":
        result = await orchestrator.resolve_chat(arguments.get("message"))
        if isinstance(result, ChatAnswer):
            return _text({"answer": result.text})
        if isinstance(result, ChatNotReady):
            return _text({"error":"Service initializing embeddings. Try again shortly."})
        if isinstance(result, ChatBadInput):
            return _text({"error":"Missing 'message' argument."})
        return _text({"error":"Upstream API error", "details": result.detail})
    if name == "health":
        return _text({"status":"ok", "ready": orchestrator.is_ready()})
    return _text({"error":"unknown tool"})

async def main():
    configure_logging(settings.log_level)
    orchestrator = get_orchestrator(settings)
    build = None if orchestrator.cache.started else asyncio.create_task(orchestrator.initialize())
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
    finally:
        if build is not None:
            build.cancel()
            with suppress(asyncio.CancelledError):
                await build

if __name__ == "__main__":
    asyncio.run(main())
