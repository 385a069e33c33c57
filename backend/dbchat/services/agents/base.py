"""
Single-shot JSON agents.

A ``JsonAgent`` makes one non-streaming chat completion in
JSON mode and returns the parsed object.  Subclasses shape
the request in ``build_messages`` and post-process the reply
in ``parse``.  The streamed, tool-calling agents are
described by ``registry.AgentDescriptor`` and run by
``runtime`` instead.
"""

import json
import logging
from typing import Dict, Any, List, Optional, Type

from openai import OpenAI

from dbchat.config import settings
from dbchat.errors import DbChatError

logger = logging.getLogger(__name__)


class JsonAgent:
    """
    Base for agents that answer with one JSON object.

    Attributes:
        name (str): Identifier used in log prefixes.
        system_prompt (str): System instructions.
        temperature (float): Sampling temperature (0 – 2).
        model (str): Model name; empty means
            ``settings.openai_model``.
        error_class (type): Exception raised when the call
            fails or the reply is not a JSON object.
    """

    name: str = "json_agent"
    system_prompt: str = ""
    temperature: float = 0.7
    model: str = ""
    error_class: Type[DbChatError] = DbChatError

    def __init__(self, client: Optional[OpenAI] = None):
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=settings.openai_api_key)
        return self._client

    def build_messages(self, context: Dict[str, Any]) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": json.dumps(context, default=str)},
        ]

    def parse(
        self,
        result: Dict[str, Any],
        context: Dict[str, Any],
    ) -> Dict[str, Any]:
        return result

    def _call_llm(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Send *messages* in JSON mode and decode the reply.

        Parameters:
            messages (list[dict]): Full message list including
                the system prompt.

        Returns:
            dict: The decoded JSON object.

        Raises:
            DbChatError: ``error_class`` on request failure or
                a reply that is not a JSON object.
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model or settings.openai_model,
                messages=messages,
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            logger.error("[%s] LLM call failed: %s", self.name, exc)
            raise self.error_class(f"{self.name} call failed: {exc}") from exc

        content = response.choices[0].message.content or ""
        try:
            result = json.loads(content)
        except json.JSONDecodeError as exc:
            logger.warning(
                "[%s] LLM returned non-JSON: %s",
                self.name,
                content[:200],
            )
            raise self.error_class(
                f"{self.name} returned invalid JSON",
            ) from exc
        if not isinstance(result, dict):
            raise self.error_class(f"{self.name} returned a non-object")
        return result

    def run(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build the request, call the model, and parse the reply.

        Parameters:
            context (dict): Agent-specific input.

        Returns:
            dict: Agent-specific result payload.
        """
        result = self._call_llm(self.build_messages(context))
        return self.parse(result, context)
