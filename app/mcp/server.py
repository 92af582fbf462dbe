"""
Minimal MCP-style tool server: exposes the notes agent's tools through a standardized
interface so external agents can discover and call them for the X-User-Id caller.
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from app.agent.tools import build_registry
from app.api.dependencies import get_current_user_id, get_note_store, get_vector_index
from app.core.note_store import NoteStore
from app.services.vector_store import VectorIndex

logger = logging.getLogger(__name__)

mcp_router = APIRouter(tags=["mcp"])


@mcp_router.get(
    "/tools",
    summary="MCP tool discovery",
    description="List every note tool with its JSON-schema input definition.",
)
def mcp_list_tools(
    user_id: int = Depends(get_current_user_id),
    notes: NoteStore = Depends(get_note_store),
) -> dict[str, list[dict[str, Any]]]:
    registry = build_registry(notes, user_id)
    tools = [
        {
            "name": schema["function"]["name"],
            "description": schema["function"]["description"],
            "input_schema": schema["function"]["parameters"],
        }
        for schema in registry.schemas()
    ]
    return {"tools": tools}


@mcp_router.post(
    "/tools/{name}",
    summary="MCP tool call",
    description="This endpoint acts as an MCP tool server, allowing external agents to call note tools through a standardized interface.",
)
async def mcp_call_tool(
    name: str,
    arguments: Optional[dict[str, Any]] = Body(default=None),
    user_id: int = Depends(get_current_user_id),
    notes: NoteStore = Depends(get_note_store),
    index: Optional[VectorIndex] = Depends(get_vector_index),
) -> dict[str, str]:
    """
    Run one tool as user_id. Tool failures come back as text in result, the same
    string the agent would see; only an unknown tool name is an HTTP error.
    """
    logger.info("MCP tool called: %s user_id=%s", name, user_id)
    registry = build_registry(notes, user_id, index)
    if name not in registry.names:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown tool: {name}")
    result = await registry.dispatch(name, json.dumps(arguments or {}))
    return {"result": result}
