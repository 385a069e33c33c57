"""
BigQuery specialist agent.

Helps users write and debug BigQuery SQL.  The tools browse
datasets and tables, describe columns, and run read-only
SELECT statements.
"""

import logging
from typing import Any, Dict, List

from pydantic import Field

from dbchat.services import db_connector
from dbchat.services.agents.tools import ToolArgs, ToolSpec

logger = logging.getLogger(__name__)


PROMPT = """\
You are an expert BigQuery copilot integrated with a live SQL
console.  Your mission is to help users write, run and debug
BigQuery SQL by placing working, executable queries directly
in their console.  Your chat reply is secondary and explains
the query you provided.

Core rules:
- Console first: deliver the final SQL with modify_console.
- If the user refers to "my query", "this" or asks to fix
  something, call read_console before anything else.
- Make only the changes the user asked for.
- Result-producing queries end with LIMIT 500 unless the
  result is guaranteed to be small.
- Prefer fully qualified `project.dataset.table` names and
  backtick identifiers.
- Return flat columns with clear snake_case aliases.

Workflow:
1. Read the console when the request refers to existing SQL.
2. Select a connection with list_databases, then explore
   with bq_list_datasets, bq_list_tables and
   bq_inspect_table.  Ask one clarifying question if the
   target is ambiguous.
3. Test the SQL with bq_execute_query.
4. Write the final SQL to the console with modify_console.
5. Reply with the SQL in a ```sql block and a short
   explanation.

If the user needs MongoDB data instead, transfer the
conversation to the MongoDB assistant.
"""


# ----- tool arguments --------------------------------------------------


class ListDatasetsArgs(ToolArgs):
    database_id: str = Field(
        ..., description="Database id returned by list_databases",
    )


class ListTablesArgs(ToolArgs):
    database_id: str = Field(
        ..., description="Database id returned by list_databases",
    )
    dataset: str = Field(..., description="Dataset name")


class InspectTableArgs(ToolArgs):
    database_id: str = Field(
        ..., description="Database id returned by list_databases",
    )
    dataset: str = Field(..., description="Dataset name")
    table: str = Field(..., description="Table name")


class ExecuteSqlArgs(ToolArgs):
    database_id: str = Field(
        ..., description="Database id returned by list_databases",
    )
    query: str = Field(..., description="Standard SQL SELECT statement")
    limit: int = Field(
        default=100, ge=1, le=500,
        description="Maximum rows returned",
    )


# ----- tools -----------------------------------------------------------


def create_bigquery_tools(workspace_id: str) -> List[ToolSpec]:
    """
    Build the BigQuery tools for a workspace.

    Parameters:
        workspace_id (str): Workspace the agent serves.

    Returns:
        list[ToolSpec]: ``bq_list_datasets``, ``bq_list_tables``,
            ``bq_inspect_table``, ``bq_execute_query``.
    """

    def _connection(database_id: str):
        return db_connector.get_workspace_connection(
            workspace_id, database_id, db_connector.BIGQUERY,
        )

    def list_datasets(args: ListDatasetsArgs) -> Dict[str, Any]:
        conn = _connection(args.database_id)
        return {
            "success": True,
            "project": conn.project_id,
            "datasets": db_connector.list_datasets(conn),
        }

    def list_tables(args: ListTablesArgs) -> Dict[str, Any]:
        conn = _connection(args.database_id)
        return {
            "success": True,
            "dataset": args.dataset,
            "tables": db_connector.list_tables(conn, args.dataset),
        }

    def inspect_table(args: InspectTableArgs) -> Dict[str, Any]:
        conn = _connection(args.database_id)
        result = db_connector.inspect_table(conn, args.dataset, args.table)
        result["success"] = True
        return result

    def execute_query(args: ExecuteSqlArgs) -> Dict[str, Any]:
        conn = _connection(args.database_id)
        logger.info("[bigquery] query on %s", conn.project_id)
        result = db_connector.execute_bigquery_query(
            conn, args.query, limit=args.limit,
        )
        result["success"] = True
        return result

    return [
        ToolSpec(
            name="bq_list_datasets",
            description="List datasets of a BigQuery project.",
            args_model=ListDatasetsArgs,
            handler=list_datasets,
        ),
        ToolSpec(
            name="bq_list_tables",
            description="List tables in a BigQuery dataset.",
            args_model=ListTablesArgs,
            handler=list_tables,
        ),
        ToolSpec(
            name="bq_inspect_table",
            description=(
                "Describe a BigQuery table: column names, types "
                "and nullability."
            ),
            args_model=InspectTableArgs,
            handler=inspect_table,
        ),
        ToolSpec(
            name="bq_execute_query",
            description=(
                "Run a read-only BigQuery SQL query and return "
                "the rows."
            ),
            args_model=ExecuteSqlArgs,
            handler=execute_query,
        ),
    ]
