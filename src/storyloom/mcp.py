"""MCP server for the Storyloom pipeline.

Exposes knowledge indexing and story turns through Model Context Protocol
tools. Results and failures are returned as JSON text content.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from storyloom.errors import StoryloomError
from storyloom.logging_config import configure_logging
from storyloom.models import EngineConfig, StoryTurnContext
from storyloom.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------------
# Tool Definitions
# -------------------------------------------------------------------------

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

TOOLS = [
    Tool(
        name="index_lore",
        description="Index a piece of world lore for retrieval in a story",
        inputSchema={
            "type": "object",
            "properties": {
                "storyId": {"type": "string"},
                "loreId": {"type": "string"},
                "text": {"type": "string", "description": "The lore body"},
                "title": {"type": "string"},
                "tags": _STRING_LIST,
            },
            "required": ["storyId", "loreId", "text"],
        },
    ),
    Tool(
        name="index_character",
        description="Index a character profile for retrieval in a story",
        inputSchema={
            "type": "object",
            "properties": {
                "storyId": {"type": "string"},
                "characterId": {"type": "string"},
                "name": {"type": "string"},
                "profileText": {"type": "string"},
                "traits": _STRING_LIST,
            },
            "required": ["storyId", "characterId", "profileText"],
        },
    ),
    Tool(
        name="process_turn",
        description="Generate the next story segment from the user's input",
        inputSchema={
            "type": "object",
            "properties": {
                "storyId": {"type": "string"},
                "userPrompt": {"type": "string"},
                "context": {
                    "type": "object",
                    "properties": {
                        "narration": {"type": "string"},
                        "worldNotes": {"type": "string"},
                        "userPersona": {"type": "string"},
                        "characterStates": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "name": {"type": "string"},
                                    "health": {"type": "number"},
                                    "mood": {"type": "string"},
                                    "location": {"type": "string"},
                                    "skills_summary": {"type": "string"},
                                    "relationships_summary": {"type": "string"},
                                },
                            },
                        },
                    },
                },
            },
            "required": ["storyId", "userPrompt"],
        },
    ),
    Tool(
        name="list_segments",
        description="List a story's stored segments, oldest first",
        inputSchema={
            "type": "object",
            "properties": {
                "storyId": {"type": "string"},
                "limit": {"type": "integer", "default": 100},
            },
            "required": ["storyId"],
        },
    ),
]


# -------------------------------------------------------------------------
# Dispatch
# -------------------------------------------------------------------------


def dispatch_tool(orchestrator: Orchestrator, name: str, arguments: dict[str, Any]) -> dict:
    """Run one tool call and return its JSON-serializable result.

    Pipeline failures become ``{"error": ..., "message": ...}`` with the
    category's stable message only.
    """
    try:
        if name == "index_lore":
            return orchestrator.index_lore(
                story_id=arguments.get("storyId"),
                lore_id=arguments.get("loreId"),
                text=arguments.get("text"),
                title=arguments.get("title"),
                tags=arguments.get("tags"),
            )

        elif name == "index_character":
            return orchestrator.index_character(
                story_id=arguments.get("storyId"),
                character_id=arguments.get("characterId"),
                profile_text=arguments.get("profileText"),
                name=arguments.get("name"),
                traits=arguments.get("traits"),
            )

        elif name == "process_turn":
            result = orchestrator.process_turn(
                story_id=arguments.get("storyId"),
                user_prompt=arguments.get("userPrompt"),
                context=StoryTurnContext.from_dict(arguments.get("context")),
            )
            return result.to_dict()

        elif name == "list_segments":
            segments = orchestrator.list_segments(
                arguments.get("storyId"), limit=arguments.get("limit", 100)
            )
            return {
                "segments": [
                    {
                        "segmentId": s.id,
                        "text": s.text,
                        "userPrompt": s.user_prompt,
                        "stateUpdates": s.state_updates,
                        "entities": s.entities,
                        "timestamp": s.timestamp,
                    }
                    for s in segments
                ]
            }

        else:
            return {"error": "unknown_tool", "message": f"Unknown tool: {name}"}

    except StoryloomError as e:
        return e.to_dict()


def create_server(orchestrator: Orchestrator) -> Server:
    """Build an MCP server bound to one orchestrator."""
    server = Server("storyloom")

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        result = dispatch_tool(orchestrator, name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    return server


# -------------------------------------------------------------------------
# Main Entry Point
# -------------------------------------------------------------------------


async def serve(config: EngineConfig) -> None:
    """Run the MCP server over stdio until the client disconnects."""
    with Orchestrator.from_config(config) as orchestrator:
        server = create_server(orchestrator)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )


def main() -> None:
    import asyncio

    from dotenv import load_dotenv

    load_dotenv()
    config = EngineConfig.from_env()
    configure_logging(config.log_level)
    logger.info("Starting storyloom MCP server", extra={"metadata": {"db_path": config.db_path}})
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
