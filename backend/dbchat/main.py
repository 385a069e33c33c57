"""
Database Chat Assistant - FastAPI Application.

Main entry point for the backend API server.  Provides the
streamed multi-agent chat endpoint, chat session management,
and workspace database connection management.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dbchat.config import settings
from dbchat.database import init_db
from dbchat.routes import agent, chats, connections

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Database Chat Assistant API",
    description=(
        "Chat with your MongoDB and BigQuery databases. "
        "Specialised agents answer questions, run queries and "
        "edit your query consoles, streaming their replies."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware for frontend development server
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routes
app.include_router(agent.router)
app.include_router(chats.router)
app.include_router(connections.router)


@app.on_event("startup")
def on_startup():
    """Initialize the database on application startup."""
    init_db()


@app.get("/api/health", tags=["health"])
def health_check():
    """Health check endpoint to verify the API is running."""
    return {"status": "ok"}
