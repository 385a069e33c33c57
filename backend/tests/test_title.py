"""Tests for chat title generation."""

import asyncio
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from dbchat.errors import TitleGenerationError
from dbchat.services.agents.title_generator import (
    FALLBACK_TITLE,
    TitleGeneratorAgent,
    clean_title,
    estimate_tokens,
    should_generate_title,
)
from dbchat.services.session_store import TurnRecord
from dbchat.services.thread_context import ThreadContext
from dbchat.services.title_service import TitleService

from conftest import USER_ID, WORKSPACE_ID


def _msg(role, content):
    return {"role": role, "content": content}


def _client(content):
    """Sync OpenAI stand-in whose completion returns *content*."""
    client = Mock()
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
    )
    return client


class TestShouldGenerateTitle:
    """Tests for should_generate_title."""

    def test_needs_an_exchange(self):
        assert not should_generate_title([_msg("user", "x" * 200)])
        assert not should_generate_title([
            _msg("user", "x" * 200), _msg("user", "y"),
        ])

    def test_substantial_first_message(self):
        assert should_generate_title([
            _msg("user", "x" * 80), _msg("assistant", "ok"),
        ])

    def test_short_first_message(self):
        assert not should_generate_title([
            _msg("user", "x" * 76), _msg("assistant", "ok"),
        ])

    def test_two_user_messages(self):
        assert should_generate_title([
            _msg("user", "hi"), _msg("assistant", "hello"),
            _msg("user", "orders?"),
        ])

    def test_estimate_rounds_up(self):
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("") == 0


class TestCleanTitle:
    """Tests for title quality checks."""

    def test_strips_quotes_and_caps_length(self):
        assert clean_title('"Monthly Revenue Trends"', []) == (
            "Monthly Revenue Trends"
        )
        assert len(clean_title("Revenue " * 30, [])) <= 80

    def test_generic_title_uses_user_keywords(self):
        messages = [_msg("user", "show weekly signups per country")]

        assert clean_title("Chat about data", messages) == (
            "Show Weekly Signups Discussion"
        )

    def test_short_title_without_keywords(self):
        assert clean_title("Data", [_msg("user", "hi")]) == FALLBACK_TITLE


class TestTitleGeneratorAgent:
    """Tests for TitleGeneratorAgent.run."""

    def test_returns_cleaned_title(self):
        client = _client('{"title": "\'Churn by Region\'"}')
        agent = TitleGeneratorAgent(client)

        result = agent.run({"messages": [_msg("user", "churn by region")]})

        assert result == {"title": "Churn by Region"}
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0]["role"] == "system"
        assert "User: churn by region" in kwargs["messages"][1]["content"]

    def test_llm_failure_raises(self):
        client = Mock()
        client.chat.completions.create.side_effect = RuntimeError("limit")

        with pytest.raises(TitleGenerationError):
            TitleGeneratorAgent(client).run({"messages": []})

    @pytest.mark.parametrize("content", ["not json", '["a list"]'])
    def test_malformed_reply_raises(self, content):
        agent = TitleGeneratorAgent(_client(content))

        with pytest.raises(TitleGenerationError):
            agent.run({"messages": [_msg("user", "hello")]})


class TestTitleService:
    """Tests for background title dispatch."""

    def _saved(self, store):
        return store.save_turn(TurnRecord(
            thread_context=ThreadContext(thread_id="t"),
            workspace_id=WORKSPACE_ID,
            user_id=USER_ID,
            user_message="x" * 100,
            assistant_message="answer",
        ))

    @pytest.mark.asyncio
    async def test_title_is_stored(self, store):
        saved = self._saved(store)
        agent = Mock()
        agent.run.return_value = {"title": "Large Orders Review"}
        service = TitleService(store, agent)

        task = service.dispatch(saved.session_id, saved.messages)
        await task

        ctx = store.get_thread_context(saved.session_id, WORKSPACE_ID)
        assert ctx.title_generated is True

    @pytest.mark.asyncio
    async def test_not_eligible(self, store):
        service = TitleService(store, Mock())

        assert service.dispatch("s", [_msg("user", "hi")]) is None

    @pytest.mark.asyncio
    async def test_failure_keeps_placeholder(self, store):
        saved = self._saved(store)
        agent = Mock()
        agent.run.side_effect = TitleGenerationError("boom")
        service = TitleService(store, agent)

        await service.dispatch(saved.session_id, saved.messages)
        await asyncio.sleep(0)

        ctx = store.get_thread_context(saved.session_id, WORKSPACE_ID)
        assert ctx.title_generated is False
