"""
Chat title generator agent.

Creates a short, descriptive title for a conversation once
it has enough substance (see ``should_generate_title``).
Weak model output is replaced by a keyword fallback.
"""

import logging
import math
from typing import Dict, Any, List

from dbchat.config import settings
from dbchat.errors import TitleGenerationError
from dbchat.services.agents.base import JsonAgent

logger = logging.getLogger(__name__)


PROMPT = """\
You are a title generator.  Create a short, descriptive
title for a chat conversation about databases.

Rules:
- 3-8 words, as a noun phrase.
- Be specific about the subject matter or goal.
- Avoid generic words like "Conversation", "Chat" or
  "Question".
- Good examples: "Sales Revenue Analysis",
  "MongoDB Query Optimization", "Customer Churn by Region".

Return a JSON object:
{
  "title": "<the title>"
}
"""

FALLBACK_TITLE = "Database Query Session"
MAX_TITLE_CHARS = 80
MIN_TITLE_CHARS = 10
MIN_FIRST_MESSAGE_TOKENS = 20

GENERIC_PHRASES = (
    "conversation", "chat", "question", "help", "assistance",
    "discussion", "inquiry", "request", "general",
)

# Rough estimate: 1 token ≈ 4 characters.
_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate for *text*, rounded up."""
    return math.ceil(len(text or "") / _CHARS_PER_TOKEN)


def should_generate_title(messages: List[Dict[str, str]]) -> bool:
    """
    Decide whether a conversation is ready for a title.

    Needs at least one user and one assistant message, and
    either a substantial first user message (20+ estimated
    tokens) or two or more user messages.

    Parameters:
        messages (list[dict]): Full message list, oldest first.

    Returns:
        bool: True when a title should be generated.
    """
    if len(messages) < 2:
        return False
    user_messages = [m for m in messages if m.get("role") == "user"]
    assistant_messages = [
        m for m in messages if m.get("role") == "assistant"
    ]
    if not user_messages or not assistant_messages:
        return False

    first_tokens = estimate_tokens(user_messages[0].get("content", ""))
    return (
        first_tokens >= MIN_FIRST_MESSAGE_TOKENS
        or len(user_messages) >= 2
    )


def _context_messages(
    messages: List[Dict[str, str]],
) -> List[Dict[str, str]]:
    """First exchanges only: up to 6 messages or 3 user turns."""
    selected = []
    user_turns = 0
    for msg in messages:
        selected.append(msg)
        if msg.get("role") == "user":
            user_turns += 1
            if user_turns >= 3:
                break
        if len(selected) >= 6:
            break
    return selected


def _fallback_title(messages: List[Dict[str, str]]) -> str:
    user_text = " ".join(
        m.get("content", "") for m in messages if m.get("role") == "user"
    )
    words = [w for w in user_text.lower().split() if len(w) > 3][:3]
    if len(words) >= 2:
        return " ".join(w.capitalize() for w in words) + " Discussion"
    return FALLBACK_TITLE


def clean_title(raw: str, messages: List[Dict[str, str]]) -> str:
    """
    Apply quality checks to a model-produced title.

    Strips quotes, caps the length, and swaps generic or
    very short titles for a keyword fallback.
    """
    title = (raw or "").strip().strip("\"'").strip()
    title = title[:MAX_TITLE_CHARS]
    lowered = title.lower()
    if (
        len(title) < MIN_TITLE_CHARS
        or any(phrase in lowered for phrase in GENERIC_PHRASES)
    ):
        logger.info("[title_generator] weak title %r, using fallback", title)
        return _fallback_title(messages)
    return title


class TitleGeneratorAgent(JsonAgent):
    """
    Generate a concise title for a chat session.

    ``run({"messages": [...]})`` returns ``{"title": "..."}``
    and raises ``TitleGenerationError`` if the model call
    fails.
    """

    name = "title_generator"
    system_prompt = PROMPT
    temperature = 0.3
    model = settings.title_model
    error_class = TitleGenerationError

    def build_messages(self, context: Dict[str, Any]) -> List[Dict[str, str]]:
        messages = _context_messages(context.get("messages", []))
        conversation = "\n\n".join(
            f"{'User' if m.get('role') == 'user' else 'Assistant'}: "
            f"{m.get('content', '')}"
            for m in messages
        )
        return [
            {"role": "system", "content": self.system_prompt},
            {
                "role": "user",
                "content": (
                    "Generate a title for this conversation:\n\n"
                    f"{conversation}"
                ),
            },
        ]

    def parse(
        self,
        result: Dict[str, Any],
        context: Dict[str, Any],
    ) -> Dict[str, Any]:
        messages = _context_messages(context.get("messages", []))
        return {"title": clean_title(str(result.get("title", "")), messages)}
