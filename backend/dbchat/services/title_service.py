"""
Background chat title generation.

``TitleService.dispatch`` starts a detached asyncio task so
the streamed response never waits for the title model.  A
failure is logged and leaves the placeholder title, so a
later turn tries again.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set

from dbchat.services.agents.title_generator import (
    TitleGeneratorAgent,
    should_generate_title,
)
from dbchat.services.session_store import ChatSessionStore

logger = logging.getLogger(__name__)

# Strong references so running tasks are not garbage collected.
_background_tasks: Set[asyncio.Task] = set()


class TitleService:
    """
    Generate and store chat titles in the background.

    Parameters:
        store (ChatSessionStore): Where titles are saved.
        agent (TitleGeneratorAgent, optional): Title model.
    """

    def __init__(
        self,
        store: ChatSessionStore,
        agent: Optional[TitleGeneratorAgent] = None,
    ):
        self.store = store
        self.agent = agent or TitleGeneratorAgent()

    def dispatch(
        self,
        session_id: str,
        messages: List[Dict[str, str]],
    ) -> Optional[asyncio.Task]:
        """
        Start title generation if the conversation qualifies.

        Parameters:
            session_id (str): Session to title.
            messages (list[dict]): Full message list.

        Returns:
            asyncio.Task | None: The detached task, or None
                when no title is due.
        """
        if not should_generate_title(messages):
            return None
        task = asyncio.create_task(
            self._generate(session_id, list(messages))
        )
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    async def _generate(
        self,
        session_id: str,
        messages: List[Dict[str, str]],
    ) -> None:
        try:
            result = await asyncio.to_thread(
                self.agent.run, {"messages": messages},
            )
            title = result["title"]
            saved = await asyncio.to_thread(
                self.store.set_generated_title, session_id, title,
            )
            if saved:
                logger.info(
                    "[title_service] session %s titled %r",
                    session_id,
                    title,
                )
        except Exception:
            logger.exception(
                "[title_service] title generation failed for %s",
                session_id,
            )
