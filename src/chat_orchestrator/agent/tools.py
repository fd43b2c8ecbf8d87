"""Built-in tool implementations for the orchestration graph."""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict

from pydantic import BaseModel, Field

from chat_orchestrator.agent.registry import ToolRegistry, ToolSpec
from chat_orchestrator.commands.catalog import CommandCatalog
from chat_orchestrator.commands.dispatcher import CommandDispatcher
from chat_orchestrator.memory.store import MemoryStore, search_memory

EXECUTE_COMMAND = "execute_command"
LIST_COMMANDS = "list_commands"
STORE_MEMORY = "store_memory"
QUERY_MEMORY = "query_memory"


class ExecuteCommandInput(BaseModel):
    command: str = Field(
        min_length=1,
        description='The full command string, e.g. "/alphavantage-mcp get_quote symbol=NVDA".',
    )


class ListCommandsInput(BaseModel):
    category: str | None = Field(
        default=None,
        description="Optional category filter: financial, prediction, knowledge, design, llm, automation.",
    )


class StoreMemoryInput(BaseModel):
    key: str = Field(min_length=1, description="Descriptive key, e.g. 'favorite_color'.")
    value: str = Field(description="Plain text or a JSON string.")


class QueryMemoryInput(BaseModel):
    key: str | None = Field(default=None, description="Exact key to read.")
    search: str | None = Field(default=None, description="Search term matched against keys and values.")


def register_orchestration_tools(
    registry: ToolRegistry,
    *,
    dispatcher: CommandDispatcher,
    catalog: CommandCatalog,
    bearer_token: str | None = None,
    memory_store: MemoryStore | None = None,
    user_id: str = "anonymous",
) -> None:
    """Register the request-scoped tool set.

    Tools:
    - `execute_command`: run a slash command through the dispatcher.
    - `list_commands`: render the command catalog.
    - `store_memory` / `query_memory`: per-user persistent memory, only when a store
      is configured.
    """

    async def _execute(input_data: ExecuteCommandInput) -> str:
        result = await dispatcher.dispatch_text(input_data.command, bearer_token=bearer_token)
        return result.output

    async def _list(input_data: ListCommandsInput) -> str:
        return catalog.render(input_data.category)

    registry.register(
        ToolSpec(
            name=EXECUTE_COMMAND,
            description=(
                "Executes a registered command. Input must be a string in the format "
                "/<server-id> <command> [param=value...]."
            ),
            args_schema=ExecuteCommandInput,
            handler=_execute,
            tags=["commands"],
        )
    )
    registry.register(
        ToolSpec(
            name=LIST_COMMANDS,
            description=(
                "Lists all available commands and their usage. Use this when users ask "
                "'what commands are available' or 'how do I use a command'."
            ),
            args_schema=ListCommandsInput,
            handler=_list,
            tags=["commands", "discovery"],
        )
    )

    if memory_store is None:
        return

    async def _store(input_data: StoreMemoryInput) -> str:
        try:
            value: object = json.loads(input_data.value)
        except ValueError:
            value = input_data.value
        await asyncio.to_thread(memory_store.set, user_id, input_data.key, value)
        return f'Successfully stored memory with key "{input_data.key}"'

    async def _query(input_data: QueryMemoryInput) -> str:
        if input_data.search:
            matches = await asyncio.to_thread(search_memory, memory_store, user_id, input_data.search)
            if not matches:
                return f'No memories found matching "{input_data.search}"'
            return json.dumps([asdict(entry) for entry in matches], indent=2, default=str)
        if input_data.key:
            value = await asyncio.to_thread(memory_store.get, user_id, input_data.key)
            if value is None:
                return f'No memory found for key "{input_data.key}"'
            return json.dumps({"key": input_data.key, "value": value}, indent=2, default=str)
        entries = await asyncio.to_thread(memory_store.all, user_id)
        return json.dumps([asdict(entry) for entry in entries], indent=2, default=str)

    registry.register(
        ToolSpec(
            name=STORE_MEMORY,
            description=(
                "Store information in the user's persistent memory when they ask you to "
                "remember something or save a preference."
            ),
            args_schema=StoreMemoryInput,
            handler=_store,
            tags=["memory"],
        )
    )
    registry.register(
        ToolSpec(
            name=QUERY_MEMORY,
            description=(
                "Query the user's persistent memory for facts, preferences or conversation "
                "summaries they stored before."
            ),
            args_schema=QueryMemoryInput,
            handler=_query,
            tags=["memory"],
        )
    )
