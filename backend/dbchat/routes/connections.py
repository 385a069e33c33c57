"""
API routes for workspace database connections.

Provides CRUD operations, connection testing, and structure
listing (MongoDB collections, BigQuery datasets) for the
databases registered in a workspace.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from dbchat.database import get_db
from dbchat.dependencies import get_current_user_id
from dbchat.errors import ConnectorError
from dbchat.models import DatabaseConnection
from dbchat.schemas import (
    ConnectionCreate,
    ConnectionUpdate,
    ConnectionResponse,
    ConnectionTestResult,
)
from dbchat.services import db_connector

router = APIRouter(
    prefix="/api/connections",
    tags=["connections"],
    dependencies=[Depends(get_current_user_id)],
)


def _get_connection(db: Session, connection_id: str) -> DatabaseConnection:
    conn = db.query(DatabaseConnection).filter(
        DatabaseConnection.id == connection_id
    ).first()
    if not conn:
        raise HTTPException(
            status_code=404,
            detail="Connection not found",
        )
    return conn


@router.get(
    "",
    response_model=List[ConnectionResponse],
    summary="List the database connections of a workspace",
)
def list_connections(
    workspace_id: str = Query(..., alias="workspaceId"),
    db: Session = Depends(get_db),
):
    """Retrieve the connections registered in a workspace."""
    return (
        db.query(DatabaseConnection)
        .filter(DatabaseConnection.workspace_id == workspace_id)
        .order_by(DatabaseConnection.name)
        .all()
    )


@router.post(
    "",
    response_model=ConnectionResponse,
    status_code=201,
    summary="Register a database in a workspace",
)
def create_connection(
    data: ConnectionCreate,
    db: Session = Depends(get_db),
):
    """
    Register a MongoDB or BigQuery database.

    MongoDB needs a connection string and database name;
    BigQuery needs a project id.
    """
    if data.type == db_connector.MONGODB and not (
        data.connection_string and data.database_name
    ):
        raise HTTPException(
            status_code=400,
            detail="MongoDB needs connection_string and database_name",
        )
    if data.type == db_connector.BIGQUERY and not data.project_id:
        raise HTTPException(
            status_code=400,
            detail="BigQuery needs project_id",
        )

    conn = DatabaseConnection(**data.model_dump())
    db.add(conn)
    db.commit()
    db.refresh(conn)
    return conn


@router.get(
    "/{connection_id}",
    response_model=ConnectionResponse,
    summary="Get a database connection by ID",
)
def get_connection(
    connection_id: str,
    db: Session = Depends(get_db),
):
    """Retrieve a specific database connection by its ID."""
    return _get_connection(db, connection_id)


@router.put(
    "/{connection_id}",
    response_model=ConnectionResponse,
    summary="Update a database connection",
)
def update_connection(
    connection_id: str,
    data: ConnectionUpdate,
    db: Session = Depends(get_db),
):
    """Update an existing database connection configuration."""
    conn = _get_connection(db, connection_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(conn, key, value)
    db.commit()
    db.refresh(conn)
    return conn


@router.delete(
    "/{connection_id}",
    status_code=204,
    summary="Delete a database connection",
)
def delete_connection(
    connection_id: str,
    db: Session = Depends(get_db),
):
    """Remove a database from its workspace."""
    conn = _get_connection(db, connection_id)
    db.delete(conn)
    db.commit()


@router.post(
    "/{connection_id}/test",
    response_model=ConnectionTestResult,
    summary="Test a database connection",
)
def test_connection_endpoint(
    connection_id: str,
    db: Session = Depends(get_db),
):
    """Try to reach the database and report the outcome."""
    conn = _get_connection(db, connection_id)
    return db_connector.test_connection(conn)


@router.get(
    "/{connection_id}/structure",
    summary="List collections (MongoDB) or datasets (BigQuery)",
)
def get_connection_structure(
    connection_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Return the top-level structure of a database.

    MongoDB connections list their collections; BigQuery
    connections list their datasets.
    """
    conn = _get_connection(db, connection_id)
    try:
        if conn.type == db_connector.MONGODB:
            return {
                "type": conn.type,
                "collections": db_connector.list_collections(conn),
            }
        return {
            "type": conn.type,
            "datasets": db_connector.list_datasets(conn),
        }
    except ConnectorError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to read structure: {str(e)}",
        )
