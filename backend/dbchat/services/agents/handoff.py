"""
Hand-off state machine.

Tracks which agent is active during a turn.  A
``handoff_requested`` event starts a transfer (assistant
text is suppressed until it ends); a completion naming a
different agent switches the active kind, announces it to
the client, and discards the text the previous agent
streamed so it is never persisted.
"""

import logging
from typing import List, Optional

from dbchat.services.agents.events import (
    AgentModeEvent,
    ClientEvent,
    HandoffEvent,
)
from dbchat.services.agents.registry import (
    get_agent_display_name,
    resolve_agent_kind,
)

logger = logging.getLogger(__name__)


class HandoffStateMachine:
    """
    Apply hand-off signals to a ``TurnState``.

    The machine itself is stateless; everything it changes
    lives on the turn state (``active_kind``,
    ``assistant_reply``, ``handoff_in_progress``,
    ``handoff_count``).
    """

    def request(self, state) -> List[ClientEvent]:
        """Mark a transfer as in progress."""
        state.handoff_in_progress = True
        return []

    def complete(
        self,
        destination: Optional[str],
        state,
    ) -> List[ClientEvent]:
        """
        Finish a transfer towards *destination*.

        Parameters:
            destination (str | None): Agent name, kind or
                hand-off tool name reported by the runtime.
            state (TurnState): Current turn state.

        Returns:
            list[ClientEvent]: ``agent_mode`` and ``handoff``
                on a transition, otherwise nothing.
        """
        state.handoff_in_progress = False

        kind = resolve_agent_kind(destination)
        if kind is None:
            if destination:
                logger.warning(
                    "[handoff] unknown destination %r ignored",
                    destination,
                )
            return []
        if kind == state.active_kind:
            return []

        logger.info(
            "[handoff] %s -> %s",
            state.active_kind.value,
            kind.value,
        )
        state.active_kind = kind
        state.assistant_reply = ""
        state.handoff_count += 1
        return [
            AgentModeEvent(mode=kind.value),
            HandoffEvent(
                agent=kind.value,
                message=f"Transferring to {get_agent_display_name(kind)}",
            ),
        ]
