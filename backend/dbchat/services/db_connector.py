"""
Database connector service for workspace databases.

Provides connection testing, schema discovery, and query
execution against the MongoDB and BigQuery databases that a
workspace has registered.  MongoDB is reached through
pymongo; BigQuery through SQLAlchemy with the
``sqlalchemy-bigquery`` dialect.
"""

import json
import re
from typing import List, Dict, Any, Optional

from pymongo import MongoClient
from sqlalchemy import create_engine, text, inspect

from dbchat.database import session_scope
from dbchat.errors import ConnectorError
from dbchat.models import DatabaseConnection

MONGODB = "mongodb"
BIGQUERY = "bigquery"

MAX_RESULT_ROWS = 500
SAMPLE_SIZE = 100

# Only read-only statements may run against BigQuery.
_QUERY_BLOCK_RE = re.compile(
    r"\b(DROP|DELETE|TRUNCATE|UPDATE|INSERT|ALTER|CREATE|"
    r"REPLACE|GRANT|REVOKE|MERGE|EXECUTE|CALL)\b",
    re.IGNORECASE,
)

# Dataset / table names are plain identifiers.
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]{0,1023}$")

_MONGO_OPERATIONS = {"find", "aggregate", "count"}


# ----- workspace lookups -----------------------------------------------


def list_workspace_databases(
    workspace_id: str,
    db_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    List the databases registered in a workspace.

    Parameters:
        workspace_id (str): Workspace id.
        db_type (str, optional): Only return this type.

    Returns:
        list[dict]: ``id``, ``name``, ``type`` and the
            database/project name of each connection.
    """
    with session_scope() as db:
        query = db.query(DatabaseConnection).filter(
            DatabaseConnection.workspace_id == workspace_id
        )
        if db_type:
            query = query.filter(DatabaseConnection.type == db_type)
        return [
            {
                "id": conn.id,
                "name": conn.name,
                "type": conn.type,
                "database": conn.database_name or conn.project_id,
            }
            for conn in query.order_by(DatabaseConnection.name).all()
        ]


def get_workspace_connection(
    workspace_id: str,
    database_id: str,
    expected_type: Optional[str] = None,
) -> DatabaseConnection:
    """
    Load one connection, scoped to its workspace.

    Parameters:
        workspace_id (str): Workspace id.
        database_id (str): Connection id.
        expected_type (str, optional): Required database type.

    Returns:
        DatabaseConnection: Detached connection row.

    Raises:
        ConnectorError: If not found or of the wrong type.
    """
    with session_scope() as db:
        conn = db.query(DatabaseConnection).filter(
            DatabaseConnection.id == database_id,
            DatabaseConnection.workspace_id == workspace_id,
        ).first()
        if conn is None:
            raise ConnectorError(
                "Database not found or access denied",
                database_id=database_id,
            )
        if expected_type and conn.type != expected_type:
            raise ConnectorError(
                f"Database {conn.name} is not a {expected_type} database",
                database_id=database_id,
            )
        db.expunge(conn)
        return conn


def test_connection(conn: DatabaseConnection) -> Dict[str, Any]:
    """
    Test connectivity to a workspace database.

    Parameters:
        conn (DatabaseConnection): The connection to test.

    Returns:
        dict: Result with 'success' (bool) and 'message' (str).
    """
    try:
        if conn.type == MONGODB:
            client = _mongo_client(conn)
            try:
                client.admin.command("ping")
            finally:
                client.close()
        else:
            engine = _bigquery_engine(conn)
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
            finally:
                engine.dispose()
        return {
            "success": True,
            "message": "Connection successful",
        }
    except Exception as e:
        return {
            "success": False,
            "message": f"Connection failed: {str(e)}",
        }


# ----- MongoDB ---------------------------------------------------------


def _mongo_client(conn: DatabaseConnection) -> MongoClient:
    if not conn.connection_string:
        raise ConnectorError(
            "MongoDB connection string is missing",
            database_id=conn.id,
        )
    return MongoClient(
        conn.connection_string,
        serverSelectionTimeoutMS=5000,
    )


def _bson_type(value: Any) -> str:
    """Name the BSON-ish type of a sampled field value."""
    if value is None:
        return "null"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    type_name = type(value).__name__
    return {
        "ObjectId": "objectId",
        "datetime": "date",
        "Decimal128": "decimal",
        "str": "string",
        "int": "number",
        "float": "number",
        "bool": "boolean",
    }.get(type_name, type_name)


def _jsonable(documents: List[Any]) -> List[Any]:
    """Round-trip documents through JSON so ObjectIds become strings."""
    return json.loads(json.dumps(documents, default=str))


def list_collections(conn: DatabaseConnection) -> List[Dict[str, Any]]:
    """
    List collections of a MongoDB database.

    Parameters:
        conn (DatabaseConnection): A MongoDB connection.

    Returns:
        list[dict]: ``name`` and ``type`` of each collection.
    """
    client = _mongo_client(conn)
    try:
        database = client[conn.database_name]
        return [
            {"name": col["name"], "type": col.get("type", "collection")}
            for col in database.list_collections(
                filter={"type": "collection"}
            )
        ]
    finally:
        client.close()


def inspect_collection(
    conn: DatabaseConnection,
    collection: str,
) -> Dict[str, Any]:
    """
    Infer a collection's schema from a random sample.

    Parameters:
        conn (DatabaseConnection): A MongoDB connection.
        collection (str): Collection name.

    Returns:
        dict: ``schema`` (field → types), ``sampleDocuments``
            (first 25) and ``totalSampled``.
    """
    client = _mongo_client(conn)
    try:
        coll = client[conn.database_name][collection]
        sample = list(coll.aggregate([
            {"$sample": {"size": SAMPLE_SIZE}},
        ]))
        field_types: Dict[str, set] = {}
        for doc in sample:
            for field_name, value in doc.items():
                field_types.setdefault(field_name, set()).add(
                    _bson_type(value)
                )
        return {
            "schema": [
                {"field": name, "types": sorted(types)}
                for name, types in field_types.items()
            ],
            "sampleDocuments": _jsonable(sample[:25]),
            "totalSampled": len(sample),
        }
    finally:
        client.close()


def execute_mongo_query(
    conn: DatabaseConnection,
    collection: str,
    operation: str,
    filter: Optional[Dict[str, Any]] = None,
    pipeline: Optional[List[Dict[str, Any]]] = None,
    limit: int = 100,
) -> Dict[str, Any]:
    """
    Run a read-only operation against a MongoDB collection.

    Parameters:
        conn (DatabaseConnection): A MongoDB connection.
        collection (str): Collection name.
        operation (str): ``find``, ``aggregate`` or ``count``.
        filter (dict, optional): Filter for find/count.
        pipeline (list, optional): Aggregation pipeline.
        limit (int): Maximum documents returned.

    Returns:
        dict: ``documents`` and ``count``.
    """
    if operation not in _MONGO_OPERATIONS:
        raise ConnectorError(
            f"Unsupported operation '{operation}'",
            database_id=conn.id,
        )
    limit = max(1, min(limit, MAX_RESULT_ROWS))

    client = _mongo_client(conn)
    try:
        coll = client[conn.database_name][collection]
        if operation == "count":
            return {"count": coll.count_documents(filter or {})}
        if operation == "aggregate":
            stages = list(pipeline or [])
            if any("$out" in s or "$merge" in s for s in stages):
                raise ConnectorError(
                    "Write stages are not allowed",
                    database_id=conn.id,
                )
            docs = list(coll.aggregate(stages + [{"$limit": limit}]))
        else:
            docs = list(coll.find(filter or {}).limit(limit))
        return {"documents": _jsonable(docs), "count": len(docs)}
    finally:
        client.close()


# ----- BigQuery --------------------------------------------------------


def _bigquery_engine(conn: DatabaseConnection):
    if not conn.project_id:
        raise ConnectorError(
            "BigQuery project id is missing",
            database_id=conn.id,
        )
    kwargs: Dict[str, Any] = {}
    if conn.credentials_json:
        kwargs["credentials_info"] = json.loads(conn.credentials_json)
    return create_engine(f"bigquery://{conn.project_id}", **kwargs)


def _check_identifier(name: str) -> None:
    if not _IDENTIFIER_RE.match(name):
        raise ConnectorError(f"Invalid identifier: {name!r}")


def list_datasets(conn: DatabaseConnection) -> List[str]:
    """
    List datasets of a BigQuery project.

    Parameters:
        conn (DatabaseConnection): A BigQuery connection.

    Returns:
        list[str]: Dataset names.
    """
    engine = _bigquery_engine(conn)
    try:
        return sorted(inspect(engine).get_schema_names())
    finally:
        engine.dispose()


def list_tables(conn: DatabaseConnection, dataset: str) -> List[str]:
    """
    List tables of a BigQuery dataset.

    Parameters:
        conn (DatabaseConnection): A BigQuery connection.
        dataset (str): Dataset name.

    Returns:
        list[str]: Table names.
    """
    _check_identifier(dataset)
    engine = _bigquery_engine(conn)
    try:
        return sorted(
            name.split(".")[-1]
            for name in inspect(engine).get_table_names(schema=dataset)
        )
    finally:
        engine.dispose()


def inspect_table(
    conn: DatabaseConnection,
    dataset: str,
    table: str,
) -> Dict[str, Any]:
    """
    Describe the columns of a BigQuery table.

    Parameters:
        conn (DatabaseConnection): A BigQuery connection.
        dataset (str): Dataset name.
        table (str): Table name.

    Returns:
        dict: ``table`` and its ``columns``.
    """
    _check_identifier(dataset)
    _check_identifier(table)
    engine = _bigquery_engine(conn)
    try:
        columns = [
            {
                "name": col["name"],
                "type": str(col["type"]),
                "nullable": col.get("nullable", True),
                "description": col.get("comment"),
            }
            for col in inspect(engine).get_columns(table, schema=dataset)
        ]
        return {"table": f"{dataset}.{table}", "columns": columns}
    finally:
        engine.dispose()


def execute_bigquery_query(
    conn: DatabaseConnection,
    query: str,
    limit: int = 100,
) -> Dict[str, Any]:
    """
    Execute a read-only SQL query on BigQuery.

    Parameters:
        conn (DatabaseConnection): A BigQuery connection.
        query (str): Standard SQL SELECT statement.
        limit (int): Maximum rows returned.

    Returns:
        dict: ``columns``, ``rows`` and ``rowCount``.

    Raises:
        ConnectorError: If the statement is not read-only.
    """
    if _QUERY_BLOCK_RE.search(query):
        raise ConnectorError(
            "Only read-only queries are allowed",
            database_id=conn.id,
        )
    limit = max(1, min(limit, MAX_RESULT_ROWS))

    engine = _bigquery_engine(conn)
    try:
        with engine.connect() as connection:
            result = connection.execute(text(query.rstrip(";")))
            columns = list(result.keys())
            rows = [
                dict(zip(columns, row))
                for row in result.fetchmany(limit)
            ]
        return {
            "columns": columns,
            "rows": _jsonable(rows),
            "rowCount": len(rows),
        }
    finally:
        engine.dispose()
