"""Agent runtime boundary, event bus and session manager."""

from .bus import EventBus, Subscription
from .runtime import AgentRequest, AgentRuntime, AgentStream, FakeAgentRuntime, FakeAgentStream
from .sessions import AgentSessionManager, TurnCallbacks, TurnOutcome

__all__ = [
    "AgentRequest",
    "AgentRuntime",
    "AgentSessionManager",
    "AgentStream",
    "EventBus",
    "FakeAgentRuntime",
    "FakeAgentStream",
    "Subscription",
    "TurnCallbacks",
    "TurnOutcome",
]
