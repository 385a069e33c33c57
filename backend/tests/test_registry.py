"""Tests for the agent descriptor registry."""

import pytest

from dbchat.schemas import ConsoleData
from dbchat.services.agents.registry import (
    AgentKind,
    build_agent,
    build_handoff_target,
    get_agent_display_name,
    kind_for_database_type,
    list_agent_registrations,
    resolve_agent_kind,
)

from conftest import WORKSPACE_ID

CONSOLE_TOOLS = {"read_console", "modify_console", "create_console"}


def _names(descriptor):
    return [tool.name for tool in descriptor.tools]


class TestBuildAgent:
    """Tests for build_agent."""

    def test_triage_gets_discovery_tools_only(self):
        agent = build_agent(AgentKind.TRIAGE, WORKSPACE_ID)

        assert sorted(_names(agent)) == sorted([
            "list_databases",
            "list_collections",
            "bq_list_datasets",
            "bq_list_tables",
            "read_console",
            "modify_console",
        ])
        assert len(_names(agent)) == len(set(_names(agent)))

    def test_triage_hands_off_to_both_specialists(self):
        agent = build_agent(AgentKind.TRIAGE, WORKSPACE_ID)

        assert {h.tool_name for h in agent.handoffs} == {
            "transfer_to_mongodb",
            "transfer_to_bigquery",
        }

    def test_mongo_tools(self):
        agent = build_agent("mongo", WORKSPACE_ID)

        assert set(_names(agent)) == {
            "list_databases",
            "list_collections",
            "inspect_collection",
            "execute_query",
        } | CONSOLE_TOOLS
        assert [h.target_kind for h in agent.handoffs] == [AgentKind.BIGQUERY]

    def test_bigquery_tools(self):
        agent = build_agent(AgentKind.BIGQUERY, WORKSPACE_ID)

        assert set(_names(agent)) == {
            "list_databases",
            "bq_list_datasets",
            "bq_list_tables",
            "bq_inspect_table",
            "bq_execute_query",
        } | CONSOLE_TOOLS
        assert [h.target_kind for h in agent.handoffs] == [AgentKind.MONGO]

    def test_descriptor_carries_bindings(self):
        consoles = [ConsoleData(id="c1", title="Q")]
        events = []

        agent = build_agent(
            AgentKind.MONGO,
            WORKSPACE_ID,
            consoles=consoles,
            preferred_console_id="c1",
            send_event=events.append,
            model="test-model",
        )

        assert agent.name == "MongoDB Assistant"
        assert agent.workspace_id == WORKSPACE_ID
        assert agent.preferred_console_id == "c1"
        assert agent.consoles == tuple(consoles)
        assert agent.model == "test-model"
        assert agent.tool("execute_query") is not None
        assert agent.tool("bq_execute_query") is None

    def test_handoff_target_keeps_bindings(self):
        source = build_agent(
            AgentKind.TRIAGE, WORKSPACE_ID, preferred_console_id="c9",
        )

        target = build_handoff_target(source, AgentKind.BIGQUERY)

        assert target.kind == AgentKind.BIGQUERY
        assert target.preferred_console_id == "c9"
        assert target.workspace_id == WORKSPACE_ID

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            build_agent("postgres", WORKSPACE_ID)

    def test_tool_schemas_forbid_extra_properties(self):
        agent = build_agent(AgentKind.MONGO, WORKSPACE_ID)

        for tool in agent.tools:
            schema = tool.openai_schema()["function"]["parameters"]
            assert schema.get("additionalProperties") is False


class TestResolveAgentKind:
    """Tests for kind lookups."""

    @pytest.mark.parametrize("value,expected", [
        ("mongo", AgentKind.MONGO),
        ("MongoDB Assistant", AgentKind.MONGO),
        ("transfer_to_mongodb", AgentKind.MONGO),
        ("BigQuery Assistant", AgentKind.BIGQUERY),
        ("transfer_to_bigquery", AgentKind.BIGQUERY),
        ("triage", AgentKind.TRIAGE),
        ("Triage Assistant", AgentKind.TRIAGE),
        (AgentKind.BIGQUERY, AgentKind.BIGQUERY),
    ])
    def test_resolves(self, value, expected):
        assert resolve_agent_kind(value) == expected

    @pytest.mark.parametrize("value", [None, "", "postgres", 42])
    def test_unresolvable(self, value):
        assert resolve_agent_kind(value) is None

    def test_database_types(self):
        assert kind_for_database_type("MongoDB") == AgentKind.MONGO
        assert kind_for_database_type("bq") == AgentKind.BIGQUERY
        assert kind_for_database_type("mysql") is None

    def test_display_names(self):
        assert get_agent_display_name("bigquery") == "BigQuery Assistant"
        assert get_agent_display_name("unknown") == "unknown"

    def test_registrations(self):
        kinds = [r.kind for r in list_agent_registrations()]

        assert kinds == [AgentKind.TRIAGE, AgentKind.MONGO, AgentKind.BIGQUERY]
