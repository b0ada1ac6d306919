"""Error taxonomy for the orchestration pipeline.

Each failure class maps to one propagation rule:

- ConfigurationError: agent or assignment missing. The pipeline skips the
  message instead of crashing.
- KnowledgeUnavailable: retrieval failed. Treated as zero contexts.
- ProviderFailure: a language-model backend failed. One fallback hop is
  attempted by the router, after that it surfaces and the orchestrator
  escalates.
- DispatchFailure: the channel gateway refused or failed a send. Always
  reported to the caller.

Escalation is not an error; see ``EscalationSignal`` in
``src.relay.generation.schemas``.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(RelayError):
    """Raised when an agent, assignment, or provider is not configured."""

    def __init__(self, message: str, *, agent_id: str | None = None) -> None:
        self.agent_id = agent_id
        super().__init__(message)


class KnowledgeUnavailable(RelayError):
    """Raised when the knowledge search collaborator fails or times out."""

    def __init__(self, agent_id: str, cause: str) -> None:
        self.agent_id = agent_id
        self.cause = cause
        super().__init__(f"Knowledge search failed for agent '{agent_id}': {cause}")


class ProviderFailure(RelayError):
    """Raised when language-model invocation fails after the fallback hop.

    Attributes:
        providers: Names of every provider that was attempted, in order.
        cause: Description of the last underlying error.
    """

    def __init__(self, providers: list[str], cause: str) -> None:
        self.providers = list(providers)
        self.cause = cause
        attempted = ", ".join(self.providers) or "none"
        super().__init__(f"LLM invocation failed (attempted: {attempted}): {cause}")


class DispatchFailure(RelayError):
    """Raised when an outbound reply could not be delivered to the channel."""

    def __init__(self, conversation_id: str, platform: str, error: str) -> None:
        self.conversation_id = conversation_id
        self.platform = platform
        self.error = error
        super().__init__(
            f"Failed to dispatch reply for conversation '{conversation_id}' "
            f"on {platform}: {error}"
        )
