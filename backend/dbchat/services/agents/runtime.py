"""
Agent runtime: runs an ``AgentDescriptor`` as a streamed,
tool-calling conversation.

``AgentRuntime`` is the contract the orchestrator depends
on.  ``OpenAIAgentRuntime`` implements it with the async
OpenAI client: it streams chat completions, executes
function tools, switches agents on hand-off tools, and
reports progress as tagged events
(``raw_model_stream_event``, ``run_item_stream_event``,
``agent_updated_stream_event``).
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from dbchat.config import settings
from dbchat.errors import (
    MaxTurnsExceededError,
    RuntimeCompletionError,
    RuntimeStreamError,
)
from dbchat.services.agents.registry import (
    AgentDescriptor,
    build_handoff_target,
)

logger = logging.getLogger(__name__)


class RunStream(Protocol):
    """A streamed run: async iterator of raw events."""

    final_output: Optional[str]

    def __aiter__(self) -> AsyncIterator[Any]:
        ...

    async def wait_completed(self) -> None:
        ...


class AgentRuntime(Protocol):
    """Starts streamed runs of agent descriptors."""

    def run_streamed(
        self,
        descriptor: AgentDescriptor,
        prompt: str,
        max_turns: int,
    ) -> RunStream:
        ...


# ----- event helpers ---------------------------------------------------


def _run_item(name: str, **item: Any) -> Dict[str, Any]:
    return {"type": "run_item_stream_event", "name": name, "item": item}


def _agent_updated(agent: AgentDescriptor) -> Dict[str, Any]:
    return {
        "type": "agent_updated_stream_event",
        "new_agent": {"name": agent.name},
    }


def _text_delta(delta: str) -> Dict[str, Any]:
    return {
        "type": "raw_model_stream_event",
        "data": {"type": "output_text_delta", "delta": delta},
    }


def _tool_definitions(agent: AgentDescriptor) -> List[Dict[str, Any]]:
    definitions = [tool.openai_schema() for tool in agent.tools]
    for handoff in agent.handoffs:
        definitions.append({
            "type": "function",
            "function": {
                "name": handoff.tool_name,
                "description": handoff.description,
                "parameters": {"type": "object", "properties": {}},
            },
        })
    return definitions


# ----- OpenAI implementation -------------------------------------------


class OpenAIRunStream:
    """
    One streamed run on the OpenAI chat completions API.

    Iterate it to drive the run.  ``final_output`` holds the
    last assistant message once iteration has finished.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        descriptor: AgentDescriptor,
        prompt: str,
        max_turns: int,
    ):
        self._client = client
        self.current_agent = descriptor
        self._prompt = prompt
        self._max_turns = max_turns
        self._finished = False
        self.final_output: Optional[str] = None

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._run()

    async def wait_completed(self) -> None:
        if not self._finished:
            raise RuntimeCompletionError(
                "Run stream was not consumed to the end"
            )

    async def _run(self) -> AsyncIterator[Any]:
        agent = self.current_agent
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": agent.instructions},
            {"role": "user", "content": self._prompt},
        ]
        yield _agent_updated(agent)

        turns = 0
        while True:
            turns += 1
            if turns > self._max_turns:
                raise MaxTurnsExceededError(
                    self._max_turns, agent_kind=agent.kind.value,
                )

            text_parts: List[str] = []
            calls: Dict[int, Dict[str, str]] = {}
            try:
                stream = await self._client.chat.completions.create(
                    model=agent.model,
                    messages=messages,
                    tools=_tool_definitions(agent),
                    stream=True,
                )
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    if delta.content:
                        if not text_parts:
                            yield _run_item(
                                "message_output_created",
                                agent={"name": agent.name},
                            )
                        text_parts.append(delta.content)
                        yield _text_delta(delta.content)
                    for tc in delta.tool_calls or []:
                        entry = calls.setdefault(
                            tc.index,
                            {"id": "", "name": "", "arguments": ""},
                        )
                        if tc.id:
                            entry["id"] = tc.id
                        if tc.function is not None:
                            entry["name"] += tc.function.name or ""
                            entry["arguments"] += tc.function.arguments or ""
            except OpenAIError as exc:
                raise RuntimeStreamError(
                    f"Model request failed: {exc}",
                    agent_kind=agent.kind.value,
                ) from exc

            text = "".join(text_parts)
            if not calls:
                self.final_output = text
                self.current_agent = agent
                self._finished = True
                return

            ordered = [calls[i] for i in sorted(calls)]
            messages.append({
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {
                            "name": call["name"],
                            "arguments": call["arguments"] or "{}",
                        },
                    }
                    for call in ordered
                ],
            })

            next_agent: Optional[AgentDescriptor] = None
            for call in ordered:
                handoff = agent.handoff(call["name"])
                if handoff is not None:
                    if next_agent is not None:
                        output = json.dumps({
                            "error": "Only one transfer per response",
                        })
                    else:
                        yield _run_item(
                            "handoff_requested",
                            raw_item={"name": call["name"]},
                        )
                        next_agent = build_handoff_target(
                            agent, handoff.target_kind,
                        )
                        output = json.dumps({"assistant": next_agent.name})
                        yield _run_item(
                            "handoff_occured",
                            source_agent={"name": agent.name},
                            target_agent={"name": next_agent.name},
                            raw_item={"name": call["name"], "output": output},
                        )
                    messages.append({
                        "role": "tool",
                        "tool_call_id": call["id"],
                        "content": output,
                    })
                    continue

                yield _run_item(
                    "tool_called",
                    raw_item={
                        "type": "function_call",
                        "name": call["name"],
                        "arguments": call["arguments"],
                    },
                )
                tool = agent.tool(call["name"])
                if tool is None:
                    output = json.dumps({
                        "success": False,
                        "error": f"Unknown tool {call['name']}",
                    })
                else:
                    output = await tool.invoke(call["arguments"])
                messages.append({
                    "role": "tool",
                    "tool_call_id": call["id"],
                    "content": output,
                })
                yield _run_item(
                    "tool_output",
                    raw_item={"name": call["name"]},
                    output=output,
                )

            if next_agent is not None:
                logger.info(
                    "[runtime] %s handed off to %s",
                    agent.name,
                    next_agent.name,
                )
                agent = next_agent
                messages[0] = {"role": "system", "content": agent.instructions}
                self.current_agent = agent
                yield _agent_updated(agent)


class OpenAIAgentRuntime:
    """
    ``AgentRuntime`` backed by ``openai.AsyncOpenAI``.

    Parameters:
        client (AsyncOpenAI, optional): Preconfigured client;
            defaults to one built from ``settings``.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        return self._client

    def run_streamed(
        self,
        descriptor: AgentDescriptor,
        prompt: str,
        max_turns: int,
    ) -> OpenAIRunStream:
        return OpenAIRunStream(self.client, descriptor, prompt, max_turns)
