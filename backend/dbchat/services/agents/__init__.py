"""
Multi-agent chat pipeline.

Each agent kind has a dedicated prompt and tool set:
- Triage    → discovery and routing between backends
- MongoDB   → collections, sampling and queries
- BigQuery  → datasets, tables and SQL

The orchestrator selects the starting agent, streams the
runtime's events to the client as canonical events, follows
hand-offs, and persists each finished turn.
"""

from dbchat.services.agents.orchestrator import (
    AgentOrchestrator,
    TurnRequest,
)

__all__ = ["AgentOrchestrator", "TurnRequest"]
