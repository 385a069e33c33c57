"""
Triage agent.

Routes a request to the MongoDB or BigQuery assistant.  It
only discovers structure (databases, collections, datasets,
tables) and never runs queries or inspects schemas.
"""

from typing import List

from dbchat.services.agents.tools import ToolSpec, dedupe_tools

PROMPT = """\
You route the user's request to the correct datastore
assistant (MongoDB or BigQuery).  Identify the right
database and surface just enough structure (collections,
datasets, tables) to proceed confidently.

Behavior:
1. If the user has not named a database, call
   list_databases, then list its immediate children:
   list_collections for MongoDB, bq_list_datasets and
   bq_list_tables for BigQuery.
2. Ask a single clarifying question when ambiguity remains.
3. Do not run queries; focus on discovery and selection.
4. Once the target is clear, transfer the conversation to
   the matching assistant.
5. You may insert a starter query template with
   modify_console if it helps the user proceed.

Be concise.
"""

DISCOVERY_TOOL_NAMES = (
    "list_databases",
    "list_collections",
    "bq_list_datasets",
    "bq_list_tables",
    "read_console",
    "modify_console",
)


def select_discovery_tools(pool: List[ToolSpec]) -> List[ToolSpec]:
    """
    Pick the discovery-only subset from the specialists' tools.

    Parameters:
        pool (list[ToolSpec]): Tools of every specialist, in
            registration order (duplicates allowed).

    Returns:
        list[ToolSpec]: Deduplicated tools whose names are in
            ``DISCOVERY_TOOL_NAMES``, first occurrence wins.
    """
    return [
        tool for tool in dedupe_tools(pool)
        if tool.name in DISCOVERY_TOOL_NAMES
    ]
