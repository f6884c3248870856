"""ClarityCheck MCP Server.

This MCP server exposes the decision assistant as tools:
1. send_message - Run one decision turn for a user message
2. new_decision - Start a new decision thread
3. complete_decision - Summarize and close the active decision
4. decision_status - Stage, intake progress and providers
5. set_provider - Choose the model provider tried first
6. query_decisions - Search memory of completed decisions
"""
import asyncio
import json
import logging
import sys
from pathlib import Path

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from models.config import SUPPORTED_PROVIDERS, load_config
from workflow.assistant import DecisionAssistant

# Project directory (where server.py is located) - for config and logs
PROJECT_DIR = Path(__file__).parent.absolute()

log_file = PROJECT_DIR / "claritycheck.log"
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(log_file),
        logging.StreamHandler(sys.stderr),  # stdout carries the MCP stream
    ],
)
logger = logging.getLogger(__name__)


app = Server("claritycheck")


try:
    config_path = PROJECT_DIR / "config.yaml"
    logger.info(f"Loading config from: {config_path}")
    config = load_config(str(config_path))
    logger.info("Configuration loaded successfully")
except Exception as e:
    logger.error(f"Failed to load config: {e}", exc_info=True)
    raise


assistant = DecisionAssistant.from_config(config)


def _json_response(payload: dict) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools."""
    return [
        Tool(
            name="send_message",
            description=(
                "Send a user message to the decision assistant. Starts a decision if "
                "none is active, then gathers intake, researches the web and "
                "recommends an option, revising it as the user follows up."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "text": {
                        "type": "string",
                        "description": "The user's message",
                        "minLength": 1,
                    },
                },
                "required": ["text"],
            },
        ),
        Tool(
            name="new_decision",
            description="Start a new decision thread and make it active.",
            inputSchema={
                "type": "object",
                "properties": {
                    "goal": {
                        "type": "string",
                        "description": "Optional description of the decision",
                    },
                },
            },
        ),
        Tool(
            name="complete_decision",
            description=(
                "Complete the active decision: summarize it into a record that "
                "future decisions can draw on, then clear the active decision."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "outcome_note": {
                        "type": "string",
                        "description": "Optional note about what was decided or how it went",
                    },
                },
            },
        ),
        Tool(
            name="decision_status",
            description="Show the active decision's stage, intake progress and provider setup.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="set_provider",
            description="Choose which model provider is tried first.",
            inputSchema={
                "type": "object",
                "properties": {
                    "provider": {
                        "type": "string",
                        "enum": list(SUPPORTED_PROVIDERS),
                        "description": "Provider name",
                    },
                },
                "required": ["provider"],
            },
        ),
        Tool(
            name="query_decisions",
            description=(
                "Search completed decisions by keywords, or fetch one completed "
                "decision record by ID."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "query_text": {
                        "type": "string",
                        "description": "Keywords to search for",
                    },
                    "decision_id": {
                        "type": "string",
                        "description": "Return the record of this completed decision",
                    },
                    "limit": {
                        "type": "integer",
                        "default": 3,
                        "minimum": 1,
                        "maximum": 20,
                        "description": "Maximum number of matches",
                    },
                },
            },
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """
    Handle tool calls from MCP client.

    Args:
        name: Tool name
        arguments: Tool arguments as dict

    Returns:
        List of TextContent with JSON response
    """
    logger.info(f"Tool call received: {name} with arguments: {arguments}")
    arguments = arguments or {}

    try:
        if name == "send_message":
            reply = await assistant.handle_message(arguments.get("text", ""))
            return _json_response(
                {
                    "status": "failed" if reply.error else "ok",
                    "reply": reply.text,
                    "decision_id": reply.decision_id,
                    "stage": reply.stage,
                    "provider_used": reply.provider_used,
                }
            )

        if name == "new_decision":
            decision = assistant.new_decision(arguments.get("goal"))
            return _json_response(
                {
                    "status": "ok",
                    "decision_id": decision.id,
                    "title": decision.title,
                    "message": "Started a new decision. Tell me what you're deciding.",
                }
            )

        if name == "complete_decision":
            result = await assistant.complete_decision(arguments.get("outcome_note"))
            if result is None:
                return _json_response(
                    {"status": "no-op", "message": "No active decision to complete."}
                )
            return _json_response(
                {
                    "status": "completed",
                    "provider_used": result.provider_used,
                    "record": result.record.model_dump(mode="json"),
                }
            )

        if name == "decision_status":
            return _json_response({"status": "ok", **assistant.status()})

        if name == "set_provider":
            provider = assistant.set_active_provider(arguments.get("provider", ""))
            return _json_response({"status": "updated", "active_provider": provider})

        if name == "query_decisions":
            return await handle_query_decisions(arguments)

    except Exception as e:
        logger.error(f"Error in {name}: {type(e).__name__}: {e}", exc_info=True)
        error_response = {
            "error": str(e),
            "error_type": type(e).__name__,
            "status": "failed",
        }
        return _json_response(error_response)

    error_msg = f"Unknown tool: {name}"
    logger.error(error_msg)
    raise ValueError(error_msg)


async def handle_query_decisions(arguments: dict) -> list[TextContent]:
    """Handle query_decisions tool call."""
    query_text = (arguments.get("query_text") or "").strip()
    decision_id = (arguments.get("decision_id") or "").strip()
    limit = int(arguments.get("limit", 3))

    if bool(query_text) == bool(decision_id):
        return _json_response(
            {
                "error": "Provide exactly one of: query_text or decision_id",
                "status": "failed",
            }
        )

    if decision_id:
        record = assistant.get_record(decision_id)
        if record is None:
            return _json_response(
                {"error": f"No completed decision {decision_id}", "status": "failed"}
            )
        return _json_response({"status": "ok", "record": record.model_dump(mode="json")})

    matches = assistant.search_memory(query_text, limit=limit)
    return _json_response(
        {
            "status": "ok",
            "query": query_text,
            "results": [match.model_dump() for match in matches],
        }
    )


async def main():
    """Run the MCP server."""
    logger.info("Starting ClarityCheck MCP Server...")
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
