"""
Tool specifications shared by all agents.

A ``ToolSpec`` binds a tool name to a pydantic argument model
and a handler.  Arguments arrive from the model as a JSON
string, are validated once against the argument model
(no additional properties allowed) and the handler's dict
result is returned to the model as JSON.

This module also provides the workspace-level
``list_databases`` tool and the console tools
(``read_console``, ``modify_console``, ``create_console``).
"""

import asyncio
import inspect
import json
import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dbchat.schemas import ConsoleData
from dbchat.services import db_connector
from dbchat.services.agents.events import (
    ClientEvent,
    ConsoleModificationEvent,
)

logger = logging.getLogger(__name__)

SendEvent = Callable[[ClientEvent], None]

CONSOLE_MODIFICATION = "console_modification"
CONSOLE_CREATION = "console_creation"


class ToolArgs(BaseModel):
    """Base for tool argument models: unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


@dataclass(frozen=True)
class ToolSpec:
    """
    A callable capability exposed to an agent.

    Attributes:
        name (str): Tool name the model calls.
        description (str): Description shown to the model.
        args_model (type): Pydantic model for the arguments.
        handler (callable): Sync or async function taking the
            validated argument model and returning a dict.
    """

    name: str
    description: str
    args_model: Type[ToolArgs]
    handler: Callable[[Any], Any]

    def openai_schema(self) -> Dict[str, Any]:
        """Return the function-tool definition for the OpenAI API."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(),
            },
        }

    async def invoke(self, raw_arguments: Optional[str]) -> str:
        """
        Validate *raw_arguments* and run the handler.

        Invalid arguments and handler failures are returned to
        the model as ``{"success": false, "error": ...}`` so a
        single bad call does not abort the run.

        Parameters:
            raw_arguments (str | None): JSON argument object.

        Returns:
            str: JSON-encoded result.
        """
        try:
            args = self.args_model.model_validate_json(
                raw_arguments or "{}"
            )
        except ValidationError as exc:
            logger.info(
                "[tools] invalid arguments for %s: %s",
                self.name,
                exc.errors(),
            )
            result: Dict[str, Any] = {
                "success": False,
                "error": f"Invalid arguments for {self.name}: {exc}",
            }
        else:
            try:
                if inspect.iscoroutinefunction(self.handler):
                    result = await self.handler(args)
                else:
                    result = await asyncio.to_thread(self.handler, args)
            except Exception as exc:
                logger.warning(
                    "[tools] %s failed: %s",
                    self.name,
                    exc,
                )
                result = {"success": False, "error": str(exc)}
        return json.dumps(result, ensure_ascii=False, default=str)


def dedupe_tools(tools: List[ToolSpec]) -> List[ToolSpec]:
    """Keep the first tool of each name, preserving order."""
    seen: Dict[str, ToolSpec] = {}
    for tool in tools:
        if tool.name not in seen:
            seen[tool.name] = tool
    return list(seen.values())


# ----- workspace tools -------------------------------------------------


class ListDatabasesArgs(ToolArgs):
    pass


def create_workspace_tools(workspace_id: str) -> List[ToolSpec]:
    """
    Build tools that operate on the workspace as a whole.

    Parameters:
        workspace_id (str): Workspace the agent serves.

    Returns:
        list[ToolSpec]: ``list_databases``.
    """

    def list_databases(args: ListDatabasesArgs) -> Dict[str, Any]:
        return {
            "success": True,
            "databases": db_connector.list_workspace_databases(
                workspace_id,
            ),
        }

    return [
        ToolSpec(
            name="list_databases",
            description=(
                "List all databases registered in the workspace "
                "with their id, name and type (mongodb or bigquery)."
            ),
            args_model=ListDatabasesArgs,
            handler=list_databases,
        ),
    ]


# ----- console tools ---------------------------------------------------


class ModifyConsoleArgs(ToolArgs):
    action: Literal["replace", "insert", "append"] = Field(
        ..., description="The type of modification to perform",
    )
    content: str = Field(
        ..., description="The content to add or replace",
    )
    position: Optional[int] = Field(
        default=None,
        description="Position for insert action (null for replace/append)",
    )


class ReadConsoleArgs(ToolArgs):
    console_id: Optional[str] = Field(
        default=None,
        description="Console ID to read from (null to read the active console)",
    )


class CreateConsoleArgs(ToolArgs):
    title: str = Field(..., description="Title for the new console tab")
    content: str = Field(
        default="", description="Initial content for the console",
    )


def _new_console_id() -> str:
    suffix = "".join(
        random.choices(string.ascii_lowercase + string.digits, k=9)
    )
    return f"console-{int(time.time() * 1000)}-{suffix}"


def _console_payload(console: ConsoleData) -> Dict[str, Any]:
    return {
        "success": True,
        "consoleId": console.id,
        "title": console.title,
        "content": console.content or "",
        "metadata": console.metadata or {},
    }


def create_console_tools(
    consoles: Optional[List[ConsoleData]] = None,
    preferred_console_id: Optional[str] = None,
    send_event: Optional[SendEvent] = None,
) -> List[ToolSpec]:
    """
    Build the console tools bound to the attached consoles.

    Parameters:
        consoles (list[ConsoleData], optional): Consoles the
            user attached to this turn.
        preferred_console_id (str, optional): Console that
            edits and reads target by default.
        send_event (callable, optional): Event sink used to
            push console edits to the UI immediately.

    Returns:
        list[ToolSpec]: ``modify_console``, ``read_console``,
            ``create_console``.
    """
    consoles_data = list(consoles or [])

    async def modify_console(args: ModifyConsoleArgs) -> Dict[str, Any]:
        modification: Dict[str, Any] = {
            "action": args.action,
            "content": args.content,
        }
        if args.position is not None:
            modification["position"] = args.position

        if send_event is not None:
            send_event(ConsoleModificationEvent(
                modification=modification,
                console_id=preferred_console_id,
            ))

        result: Dict[str, Any] = {
            "success": True,
            "modification": modification,
            "message": f"Console {args.action}d successfully",
            "_eventType": CONSOLE_MODIFICATION,
        }
        if preferred_console_id:
            result["consoleId"] = preferred_console_id
        return result

    async def read_console(args: ReadConsoleArgs) -> Dict[str, Any]:
        if args.console_id:
            for console in consoles_data:
                if console.id == args.console_id:
                    return _console_payload(console)
            return {
                "success": False,
                "error": f"Console with ID {args.console_id} not found",
            }

        if preferred_console_id:
            for console in consoles_data:
                if console.id == preferred_console_id:
                    return _console_payload(console)

        if consoles_data:
            return _console_payload(consoles_data[0])

        return {
            "success": False,
            "error": "No console is currently active",
        }

    async def create_console(args: CreateConsoleArgs) -> Dict[str, Any]:
        return {
            "success": True,
            "consoleId": _new_console_id(),
            "title": args.title,
            "content": args.content,
            "message": f'New console "{args.title}" created successfully',
            "_eventType": CONSOLE_CREATION,
        }

    return [
        ToolSpec(
            name="modify_console",
            description="Modify the console editor content.",
            args_model=ModifyConsoleArgs,
            handler=modify_console,
        ),
        ToolSpec(
            name="read_console",
            description="Read the contents of the current console editor.",
            args_model=ReadConsoleArgs,
            handler=read_console,
        ),
        ToolSpec(
            name="create_console",
            description="Create a new console editor tab.",
            args_model=CreateConsoleArgs,
            handler=create_console,
        ),
    ]
