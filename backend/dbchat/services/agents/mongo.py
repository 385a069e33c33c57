"""
MongoDB specialist agent.

Helps users write, run and debug MongoDB queries in their
console.  Its tools discover collections, sample documents
to infer a schema, and run read-only find / aggregate /
count operations.
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from dbchat.services import db_connector
from dbchat.services.agents.tools import ToolArgs, ToolSpec

logger = logging.getLogger(__name__)


PROMPT = """\
You are an expert MongoDB copilot integrated with a live
query console.  Your mission is to help users write, run and
debug MongoDB queries by placing working, executable code
directly in their console.  Your chat reply is secondary and
explains the query you provided.

Core rules:
- Console first: deliver the final query with modify_console.
- If the user refers to "my query", "this" or asks to fix
  something, call read_console before anything else.
- Make only the changes the user asked for; keep their
  structure and formatting.
- Queries that can return many documents must end with
  .limit(500).
- Return flat, tabular results by default: top-level
  snake_case fields, one document per entity.

Workflow:
1. Read the console when the request refers to existing code.
2. Pick the database (list_databases) unless the console is
   already attached to one.
3. Pick the collection (list_collections); ask one
   clarifying question if none fits.
4. Call inspect_collection to learn field names and types.
5. Test the query with execute_query.
6. Place the final query in the console with modify_console.
7. Reply with the query in a ```javascript block and a short
   explanation.

If the user needs BigQuery data instead, transfer the
conversation to the BigQuery assistant.
"""


# ----- tool arguments --------------------------------------------------


class ListCollectionsArgs(ToolArgs):
    database_id: str = Field(
        ..., description="Database id returned by list_databases",
    )


class InspectCollectionArgs(ToolArgs):
    database_id: str = Field(
        ..., description="Database id returned by list_databases",
    )
    collection: str = Field(..., description="Collection name")


class ExecuteQueryArgs(ToolArgs):
    database_id: str = Field(
        ..., description="Database id returned by list_databases",
    )
    collection: str = Field(..., description="Collection name")
    operation: Literal["find", "aggregate", "count"] = Field(
        default="find", description="Operation to run",
    )
    filter: Optional[Dict[str, Any]] = Field(
        default=None, description="Filter for find / count",
    )
    pipeline: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Aggregation pipeline stages",
    )
    limit: int = Field(
        default=100, ge=1, le=500,
        description="Maximum documents returned",
    )


# ----- tools -----------------------------------------------------------


def create_mongo_tools(workspace_id: str) -> List[ToolSpec]:
    """
    Build the MongoDB tools for a workspace.

    Parameters:
        workspace_id (str): Workspace the agent serves.

    Returns:
        list[ToolSpec]: ``list_collections``,
            ``inspect_collection``, ``execute_query``.
    """

    def _connection(database_id: str):
        return db_connector.get_workspace_connection(
            workspace_id, database_id, db_connector.MONGODB,
        )

    def list_collections(args: ListCollectionsArgs) -> Dict[str, Any]:
        conn = _connection(args.database_id)
        return {
            "success": True,
            "database": conn.database_name,
            "collections": db_connector.list_collections(conn),
        }

    def inspect_collection(args: InspectCollectionArgs) -> Dict[str, Any]:
        conn = _connection(args.database_id)
        result = db_connector.inspect_collection(conn, args.collection)
        result["success"] = True
        result["collection"] = args.collection
        return result

    def execute_query(args: ExecuteQueryArgs) -> Dict[str, Any]:
        conn = _connection(args.database_id)
        logger.info(
            "[mongo] %s on %s.%s",
            args.operation,
            conn.database_name,
            args.collection,
        )
        result = db_connector.execute_mongo_query(
            conn,
            args.collection,
            args.operation,
            filter=args.filter,
            pipeline=args.pipeline,
            limit=args.limit,
        )
        result["success"] = True
        return result

    return [
        ToolSpec(
            name="list_collections",
            description="List collections in a MongoDB database.",
            args_model=ListCollectionsArgs,
            handler=list_collections,
        ),
        ToolSpec(
            name="inspect_collection",
            description=(
                "Sample documents of a collection and return an "
                "inferred schema with example documents."
            ),
            args_model=InspectCollectionArgs,
            handler=inspect_collection,
        ),
        ToolSpec(
            name="execute_query",
            description=(
                "Run a read-only find, aggregate or count operation "
                "on a collection and return the documents."
            ),
            args_model=ExecuteQueryArgs,
            handler=execute_query,
        ),
    ]
