"""
Conversation log and UI-facing events.

The log stores immutable turns by id together with an ordered id index.
Appending is the normal operation; the only edit is ``resolve``, which
replaces a pending model turn with a copy carrying its tool results.
"""

import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from adapters.llm.base import ConversationTurn, ToolCallResult

logger = logging.getLogger(__name__)


class ConversationLogError(Exception):
    """Raised on an invalid log operation."""

    pass


class ConversationLog:
    """Ordered, append-only record of conversation turns."""

    def __init__(self) -> None:
        self._turns: Dict[str, ConversationTurn] = {}
        self._order: List[str] = []

    def __len__(self) -> int:
        return len(self._order)

    def append(self, turn: ConversationTurn) -> ConversationTurn:
        if turn.id in self._turns:
            raise ConversationLogError(f"Turn {turn.id} is already in the log")
        self._turns[turn.id] = turn
        self._order.append(turn.id)
        return turn

    def resolve(self, turn_id: str, results: Sequence[ToolCallResult]) -> ConversationTurn:
        """
        Attach tool results to a pending model turn.

        Result ``i`` answers call ``i``; names must line up position by
        position.

        Args:
            turn_id: Id of the pending turn
            results: One result per requested call, in call order

        Returns:
            The resolved turn, which replaces the pending one

        Raises:
            ConversationLogError: If the turn is unknown, not pending, or the
                results do not match its calls
        """
        turn = self._turns.get(turn_id)
        if turn is None:
            raise ConversationLogError(f"Turn {turn_id} not found")
        if not turn.is_pending:
            raise ConversationLogError(f"Turn {turn_id} has no pending tool calls")
        if len(results) != len(turn.tool_calls):
            raise ConversationLogError(
                f"Turn {turn_id} requested {len(turn.tool_calls)} calls, "
                f"got {len(results)} results"
            )

        for position, (call, result) in enumerate(zip(turn.tool_calls, results)):
            if call.name != result.name:
                raise ConversationLogError(
                    f"Result {position} is for '{result.name}', expected '{call.name}'"
                )

        resolved = turn.model_copy(update={"tool_results": tuple(results)})
        self._turns[turn_id] = resolved
        return resolved

    def get(self, turn_id: str) -> Optional[ConversationTurn]:
        return self._turns.get(turn_id)

    def last(self) -> Optional[ConversationTurn]:
        if not self._order:
            return None
        return self._turns[self._order[-1]]

    def snapshot(self) -> Tuple[ConversationTurn, ...]:
        """Stable, ordered view of the log at this moment."""
        return tuple(self._turns[turn_id] for turn_id in self._order)

    def reset(self) -> None:
        self._turns.clear()
        self._order.clear()


# ============================================================================
# Events
# ============================================================================


class EventType(str, Enum):
    """Notifications for the presentation layer."""

    LOG_CHANGED = "log_changed"
    LOADING_STARTED = "loading_started"
    LOADING_ENDED = "loading_ended"


class ConversationEvent(BaseModel):
    """One notification; ``log_changed`` carries the full snapshot."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    turns: Tuple[ConversationTurn, ...] = Field(default=())


Listener = Callable[[ConversationEvent], None]


class EventHub:
    """Fan-out of conversation events to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Called synchronously with every event

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ConversationEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed on {event.type.value}: {e}", exc_info=True)
