"""
MCP (Model Context Protocol) server for chatkeep.

Exposes saved sessions and the semantic memory store as tools so an
assistant can look back over earlier conversations.

Run as a stdio server:
    python -m chatkeep.mcp_server

Or via the installed entry-point:
    chatkeep-mcp

Configuration comes from the ``CHATKEEP_*`` environment variables read by
:meth:`chatkeep.config.Settings.from_env`.
"""

from __future__ import annotations

import json

from mcp.server.fastmcp import FastMCP

from .config import Settings, configure_logging
from .embedding import SentenceTransformerEmbedder
from .errors import ChatkeepError
from .memory import MemoryManager
from .session import SessionStore
from .store import VectorMemoryStore

_settings = Settings.from_env()

# Lazy-initialised singleton so the embedding model is only loaded once.
_manager: MemoryManager | None = None


def _get_manager() -> MemoryManager:
    global _manager
    if _manager is None:
        _manager = MemoryManager(
            VectorMemoryStore(settings=_settings),
            SentenceTransformerEmbedder(_settings.embedding_model),
        )
    return _manager


def _sessions() -> SessionStore:
    return SessionStore(_settings)


# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "chatkeep",
    instructions=(
        "Saved chat sessions and long-term semantic memory. "
        "Use `list_sessions` to see saved conversations and `search_session` "
        "to find messages in one of them. "
        "Use `remember` to store a fact worth keeping and `recall` to find "
        "stored memories related to a question. "
        "Use `forget` to remove a memory and `memory_stats` to inspect the store."
    ),
)


@mcp.tool()
async def list_sessions() -> str:
    """
    List saved chat sessions.

    Returns:
        JSON array with name, original_name, message_count and error
        (set for files that could not be read).
    """
    sessions = await _sessions().list_available_sessions()
    if not sessions:
        return "No saved sessions found."
    return json.dumps(
        [
            {
                "name": s.name,
                "original_name": s.original_name,
                "message_count": s.message_count,
                "error": s.error,
            }
            for s in sessions
        ],
        indent=2,
    )


@mcp.tool()
async def search_session(
    name: str,
    query: str,
    role: str | None = None,
    exact_match: bool = False,
    case_sensitive: bool = False,
) -> str:
    """
    Search the messages of a saved session.

    Args:
        name:           Session name as shown by list_sessions.
        query:          Text to look for (substring unless exact_match).
        role:           Restrict to "user" or "assistant" messages.
        exact_match:    Require the whole message to equal the query.
        case_sensitive: Compare case-sensitively.

    Returns:
        JSON array of matching messages, or an error message.
    """
    store = _sessions()
    try:
        await store.load(name)
    except ChatkeepError as exc:
        return f"Error: {exc}"
    results = store.search(
        query, role=role, exact_match=exact_match, case_sensitive=case_sensitive
    )
    if not results:
        return "No matching messages."
    return json.dumps([m.to_dict() for m in results], indent=2)


@mcp.tool()
async def session_analytics(name: str) -> str:
    """
    Summarise a saved session: message counts, duration, busiest hour.

    Args:
        name: Session name as shown by list_sessions.
    """
    store = _sessions()
    try:
        await store.load(name)
    except ChatkeepError as exc:
        return f"Error: {exc}"
    return json.dumps(store.analytics().to_dict(), indent=2)


@mcp.tool()
async def remember(content: str, session_id: str = "unknown") -> str:
    """
    Store a piece of context in long-term memory.

    Args:
        content:    The text to remember.
        session_id: Identifier of the conversation it came from.

    Returns:
        A confirmation message with the stored memory IDs.
    """
    ids = await _get_manager().remember(content, session_id=session_id)
    if not ids:
        return "Nothing to remember."
    plural = "chunk" if len(ids) == 1 else "chunks"
    return f"Stored {len(ids)} memory {plural}. IDs: {', '.join(ids)}"


@mcp.tool()
async def recall(query: str, k: int = 5, min_similarity: float = 0.0) -> str:
    """
    Retrieve the memories most similar to a natural-language query.

    Args:
        query:          Question or topic to search for.
        k:              Maximum number of memories to return (default 5).
        min_similarity: Drop results below this cosine similarity.

    Returns:
        JSON array of memories with id, content, similarity and session_id.
    """
    try:
        results = await _get_manager().recall(query, k=k, min_similarity=min_similarity)
    except ChatkeepError as exc:
        return f"Error: {exc}"
    if not results:
        return "No memories found."
    return json.dumps(
        [
            {
                "id": r["id"],
                "content": r["content"],
                "similarity": round(r["similarity"], 4),
                "session_id": r["metadata"].get("session_id", "unknown"),
            }
            for r in results
        ],
        indent=2,
    )


@mcp.tool()
async def forget(memory_id: str) -> str:
    """
    Delete a stored memory by its ID.

    Args:
        memory_id: ID returned by remember or recall.
    """
    if await _get_manager().forget(memory_id):
        return f"Deleted memory {memory_id}."
    return f"No memory with ID {memory_id}."


@mcp.tool()
async def memory_stats() -> str:
    """Return the number of stored memories, their dimension and approximate size."""
    return json.dumps(await _get_manager().stats(), indent=2)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server over stdio."""
    configure_logging(_settings.log_level)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
