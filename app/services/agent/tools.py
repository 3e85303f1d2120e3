"""Tools the AI agent may call during a conversation."""
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from pydantic import BaseModel

from app.core.exceptions import PersistenceFailure, ToolExecutionFailure
from app.services.agent.messages import ToolCall, ToolResult
from app.services.persistence.store import QUERYABLE_COLLECTIONS, CallStore

logger = logging.getLogger(__name__)


class AgentTool(BaseModel):
    """Declaration of a client tool sent to the conversational-AI service."""

    name: str
    description: str
    parameters: Dict[str, Any]


QUERY_STORE_TOOL = AgentTool(
    name="query_store",
    description="Look up calls, agents or contacts in the contact center database.",
    parameters={
        "type": "object",
        "properties": {
            "collection": {"type": "string", "enum": sorted(QUERYABLE_COLLECTIONS)},
            "filters": {
                "type": "object",
                "description": "Column equality filters, e.g. {\"status\": \"active\"}",
            },
            "limit": {"type": "integer", "minimum": 1, "maximum": 50},
        },
        "required": ["collection"],
    },
)

CREATE_NEW_AGENT_TOOL = AgentTool(
    name="create_new_agent",
    description="Create a new AI agent that becomes available for calls.",
    parameters={
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "description": {"type": "string"},
            "voice_id": {"type": "string"},
            "system_prompt": {"type": "string"},
        },
        "required": ["name"],
    },
)

DEFAULT_TOOLS: List[AgentTool] = [QUERY_STORE_TOOL, CREATE_NEW_AGENT_TOOL]

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class ToolExecutor:
    """Runs allow-listed tool calls against the store. Never raises."""

    def __init__(self, store: CallStore, allowed: Optional[Iterable[str]] = None):
        self.store = store
        self._handlers: Dict[str, ToolHandler] = {
            QUERY_STORE_TOOL.name: self._query_store,
            CREATE_NEW_AGENT_TOOL.name: self._create_new_agent,
        }
        self.allowed = frozenset(allowed) if allowed is not None else frozenset(self._handlers)

    async def execute(self, call: ToolCall) -> ToolResult:
        handler = self._handlers.get(call.name) if call.name in self.allowed else None
        if handler is None:
            logger.warning(f"[AGENT TOOLS] Unknown tool requested: {call.name!r}")
            return ToolResult(success=False, error=f"Unknown tool: {call.name}")

        logger.info(f"[AGENT TOOLS] Executing {call.name} - tool_call_id: {call.tool_call_id}")
        try:
            data = await handler(call.arguments)
        except (ToolExecutionFailure, PersistenceFailure) as e:
            logger.warning(f"[AGENT TOOLS] {call.name} failed: {e.message}")
            return ToolResult(success=False, error=e.message)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"[AGENT TOOLS] {call.name} rejected arguments: {e}")
            return ToolResult(success=False, error=f"Invalid arguments: {e}")
        except Exception as e:
            logger.error(
                f"[AGENT TOOLS] {call.name} crashed: {type(e).__name__}: {str(e)}",
                exc_info=True,
            )
            return ToolResult(success=False, error=f"{type(e).__name__}: {e}")
        return ToolResult(success=True, data=data)

    async def _query_store(self, arguments: Dict[str, Any]) -> List[Dict[str, Any]]:
        collection = arguments.get("collection") or arguments.get("table")
        if not collection:
            raise ToolExecutionFailure("'collection' is required")
        filters = arguments.get("filters") or {}
        if not isinstance(filters, dict):
            raise ToolExecutionFailure("'filters' must be an object")
        return await self.store.query_collection(
            collection, filters=filters, limit=arguments.get("limit", 10)
        )

    async def _create_new_agent(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        name = (arguments.get("name") or "").strip()
        if not name:
            raise ToolExecutionFailure("'name' is required")
        agent = await self.store.create_agent(
            name,
            agent_type="ai",
            status="available",
            voice_id=arguments.get("voice_id"),
            specialization=arguments.get("description"),
            prompt_template=arguments.get("system_prompt"),
        )
        return {"agent_id": agent.id, "name": agent.name}
