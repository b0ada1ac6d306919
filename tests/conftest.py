"""Shared fixtures: in-memory collaborators and a fully wired engine.

Provides:
- In-memory implementations of the persistence Protocols (conversations,
  assignments, agents, handoffs, performance records, interaction log)
  with the same compare-and-set and one-open-handoff rules as the SQL
  repositories
- Scripted LLM client, knowledge search, channel sender, and notifier
- ``engine``: every service wired together the way ``build_services`` does
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone

import pytest

from src.knowledge.models import KnowledgeContext
from src.relay.analytics.aggregator import PerformanceAnalyticsAggregator
from src.relay.analytics.schemas import InteractionLogEntry, PerformanceRecord
from src.relay.conversations.schemas import (
    AgentAssignment,
    AgentType,
    AssignmentStatus,
    ConversationMessage,
    ConversationState,
    ConversationStatus,
    MessageDirection,
)
from src.relay.conversations.state import ConversationStateTracker
from src.relay.core.locks import KeyedLocks
from src.relay.escalation.schemas import OPEN_HANDOFF_STATUSES, HandoffRecord, HandoffStatus
from src.relay.escalation.workflow import EscalationWorkflow
from src.relay.generation.generator import ResponseGenerator
from src.relay.generation.retriever import KnowledgeRetriever
from src.relay.generation.schemas import AgentConfig, GenerationConfig
from src.relay.llm.router import ProviderRouter
from src.relay.llm.schemas import PAID_TIERS, LLMResult, ProviderSpec, RouterConfig
from src.relay.orchestrator.schemas import OutboundMessage, SendResult
from src.relay.orchestrator.service import AutoReplyOrchestrator

TODAY = date(2026, 3, 10)


# ── In-Memory Persistence ───────────────────────────────────────────────────


class InMemoryConversationRepository:
    def __init__(self) -> None:
        self.states: dict[str, ConversationState] = {}
        self.messages: list[ConversationMessage] = []
        self.fail_recent_messages = False

    async def get_state(self, conversation_id: str, user_id: str) -> ConversationState | None:
        state = self.states.get(conversation_id)
        if state is None or state.user_id != user_id:
            return None
        return state.model_copy(deep=True)

    async def save_state(self, state: ConversationState) -> ConversationState:
        self.states[state.conversation_id] = state.model_copy(deep=True)
        return state

    async def append_message(self, message: ConversationMessage) -> None:
        self.messages.append(message)

    async def recent_messages(
        self,
        conversation_id: str,
        user_id: str,
        limit: int,
        direction: MessageDirection | None = None,
    ) -> list[ConversationMessage]:
        if self.fail_recent_messages:
            raise ConnectionError("message log unavailable")
        matching = [
            m for m in self.messages
            if m.conversation_id == conversation_id
            and m.user_id == user_id
            and (direction is None or m.direction == direction)
        ]
        return matching[-limit:] if limit > 0 else []

    async def list_states(
        self, user_id: str, status: ConversationStatus = ConversationStatus.ACTIVE
    ) -> list[ConversationState]:
        return [
            s.model_copy(deep=True)
            for s in self.states.values()
            if s.user_id == user_id and s.status == status
        ]


class InMemoryAssignmentRepository:
    def __init__(self) -> None:
        self.assignments: dict[str, AgentAssignment] = {}
        self.disable_calls = 0

    async def get_active(self, conversation_id: str, user_id: str) -> AgentAssignment | None:
        for assignment in self.assignments.values():
            if (
                assignment.conversation_id == conversation_id
                and assignment.user_id == user_id
                and assignment.status == AssignmentStatus.ACTIVE
            ):
                return assignment.model_copy()
        return None

    async def get(self, assignment_id: str) -> AgentAssignment | None:
        assignment = self.assignments.get(assignment_id)
        return assignment.model_copy() if assignment else None

    async def create(self, assignment: AgentAssignment) -> AgentAssignment:
        for existing in self.assignments.values():
            if (
                existing.conversation_id == assignment.conversation_id
                and existing.status == AssignmentStatus.ACTIVE
            ):
                existing.status = AssignmentStatus.DISABLED
                existing.auto_response_enabled = False
        self.assignments[assignment.assignment_id] = assignment.model_copy()
        return assignment

    async def disable_auto_response(self, assignment_id: str, reason: str) -> bool:
        self.disable_calls += 1
        assignment = self.assignments.get(assignment_id)
        if assignment is None or not assignment.auto_response_enabled:
            return False
        assignment.auto_response_enabled = False
        assignment.escalation_reason = reason
        return True

    async def deactivate(self, assignment_id: str, reason: str | None = None) -> bool:
        assignment = self.assignments.get(assignment_id)
        if assignment is None or assignment.status != AssignmentStatus.ACTIVE:
            return False
        assignment.status = AssignmentStatus.DISABLED
        assignment.auto_response_enabled = False
        if reason is not None:
            assignment.escalation_reason = reason
        return True


class InMemoryAgentDirectory:
    def __init__(self) -> None:
        self.agents: dict[tuple[str, str], AgentConfig] = {}

    def add(self, agent: AgentConfig) -> None:
        self.agents[(agent.agent_id, agent.user_id)] = agent

    async def get_agent_config(self, agent_id: str, user_id: str) -> AgentConfig | None:
        return self.agents.get((agent_id, user_id))


class InMemoryHandoffRepository:
    def __init__(self) -> None:
        self.records: dict[str, HandoffRecord] = {}

    async def create(self, record: HandoffRecord) -> HandoffRecord:
        if await self.get_open_for_conversation(record.conversation_id) is not None:
            raise ValueError("duplicate open handoff")
        self.records[record.handoff_id] = record.model_copy(deep=True)
        return record

    async def get(self, handoff_id: str) -> HandoffRecord | None:
        return self.records.get(handoff_id)

    async def get_open_for_conversation(self, conversation_id: str) -> HandoffRecord | None:
        for record in self.records.values():
            if record.conversation_id == conversation_id and record.status in OPEN_HANDOFF_STATUSES:
                return record
        return None

    async def list_active(self, user_id: str) -> list[HandoffRecord]:
        active = [
            r for r in self.records.values()
            if r.user_id == user_id and r.status in OPEN_HANDOFF_STATUSES
        ]
        return sorted(active, key=lambda r: r.created_at)

    async def update_status(
        self,
        handoff_id: str,
        status: HandoffStatus,
        *,
        to_agent_id: str | None = None,
        resolution: str | None = None,
    ) -> HandoffRecord | None:
        record = self.records.get(handoff_id)
        if record is None:
            return None
        record.status = status
        if to_agent_id is not None:
            record.to_agent_id = to_agent_id
        if resolution is not None:
            record.resolution = resolution
        if status == HandoffStatus.COMPLETED:
            record.completed_at = datetime.now(timezone.utc)
        return record


class InMemoryPerformanceRepository:
    def __init__(self) -> None:
        self.records: dict[tuple[str, str, date], PerformanceRecord] = {}

    def record_for(self, agent_id: str, day: date = TODAY) -> PerformanceRecord | None:
        for (_, record_agent, record_day), record in self.records.items():
            if record_agent == agent_id and record_day == day:
                return record
        return None

    async def get_record(self, user_id: str, agent_id: str, day: date) -> PerformanceRecord | None:
        record = self.records.get((user_id, agent_id, day))
        return record.model_copy() if record else None

    async def save_record(self, record: PerformanceRecord) -> None:
        self.records[(record.user_id, record.agent_id, record.day)] = record.model_copy()

    async def list_records(
        self,
        user_id: str,
        start: date,
        end: date,
        agent_id: str | None = None,
    ) -> list[PerformanceRecord]:
        return sorted(
            (
                r for r in self.records.values()
                if r.user_id == user_id
                and start <= r.day <= end
                and (agent_id is None or r.agent_id == agent_id)
            ),
            key=lambda r: r.day,
        )


class InMemoryInteractionLog:
    def __init__(self) -> None:
        self.entries: list[InteractionLogEntry] = []

    async def append(self, entry: InteractionLogEntry) -> None:
        self.entries.append(entry)


# ── Scripted Collaborators ──────────────────────────────────────────────────


class ScriptedLLMClient:
    """Answers per provider name: a string reply or an exception to raise."""

    def __init__(self, replies: dict[str, str | Exception] | None = None) -> None:
        self.replies: dict[str, str | Exception] = replies or {}
        self.default = "Based on the context, your order ships within 2 business days."
        self.calls: list[str] = []

    async def invoke(
        self,
        provider: ProviderSpec,
        system_prompt: str,
        user_message: str,
        timeout: float,
    ) -> LLMResult:
        self.calls.append(provider.name)
        reply = self.replies.get(provider.name, self.default)
        if isinstance(reply, Exception):
            raise reply
        return LLMResult(text=reply, tokens=42, latency_ms=120)


class StaticKnowledgeSearch:
    def __init__(self, contexts: list[KnowledgeContext] | None = None) -> None:
        self.contexts = contexts if contexts is not None else [
            KnowledgeContext(
                content="Orders ship within 2 business days.",
                source="Shipping FAQ",
                similarity=0.91,
            ),
            KnowledgeContext(
                content="Express shipping is available at checkout.",
                source="Shipping FAQ",
                similarity=0.84,
            ),
        ]
        self.calls: list[tuple[str, str, str]] = []

    async def search(
        self,
        query: str,
        agent_id: str,
        user_id: str,
        k: int,
        similarity_floor: float,
    ) -> list[KnowledgeContext]:
        self.calls.append((query, agent_id, user_id))
        return list(self.contexts)


class RecordingSender:
    def __init__(self) -> None:
        self.sent: list[OutboundMessage] = []
        self.result = SendResult(success=True, message_id="gw-msg-1")
        self.error: Exception | None = None

    async def send(self, message: OutboundMessage) -> SendResult:
        if self.error is not None:
            raise self.error
        self.sent.append(message)
        return self.result


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.notified: list[HandoffRecord] = []
        self.fail = fail

    async def notify(self, record: HandoffRecord) -> None:
        if self.fail:
            raise ConnectionError("redis down")
        self.notified.append(record)


# ── Fixtures ────────────────────────────────────────────────────────────────


def make_router_config(**overrides) -> RouterConfig:
    """Groq (cheap, all tiers), OpenAI (reliable), Anthropic (paid only)."""
    providers = (
        ProviderSpec(
            name="groq", model="groq/llama-3.1-8b-instant",
            cost_weight=0.1, reliability_weight=0.7, confidence_baseline=0.85,
        ),
        ProviderSpec(
            name="openai", model="openai/gpt-4o-mini",
            cost_weight=1.0, reliability_weight=0.95, confidence_baseline=0.9,
        ),
        ProviderSpec(
            name="anthropic", model="anthropic/claude-3-5-haiku-20241022",
            cost_weight=1.2, reliability_weight=0.9, tiers=PAID_TIERS, confidence_baseline=0.9,
        ),
    )
    values = {"providers": providers, "invoke_timeout": 1.0, "fallback_enabled": True}
    values.update(overrides)
    return RouterConfig(**values)


@pytest.fixture
def router_config() -> RouterConfig:
    return make_router_config()


@pytest.fixture
def support_agent() -> AgentConfig:
    """An AI agent with one knowledge source on the free tier."""
    return AgentConfig(
        agent_id="agent-ai-1",
        user_id="acct-1",
        name="Ava",
        capabilities=["order tracking", "shipping questions"],
        knowledge_sources=["kb-shipping"],
    )


@dataclass
class Engine:
    conversations: InMemoryConversationRepository
    assignments: InMemoryAssignmentRepository
    agents: InMemoryAgentDirectory
    handoffs: InMemoryHandoffRepository
    performance: InMemoryPerformanceRepository
    interaction_log: InMemoryInteractionLog
    llm: ScriptedLLMClient
    knowledge: StaticKnowledgeSearch
    sender: RecordingSender
    notifier: RecordingNotifier
    locks: KeyedLocks
    tracker: ConversationStateTracker
    router: ProviderRouter
    generator: ResponseGenerator
    analytics: PerformanceAnalyticsAggregator
    workflow: EscalationWorkflow
    orchestrator: AutoReplyOrchestrator

    async def assign_ai(
        self, conversation_id: str = "conv-1", user_id: str = "acct-1", agent_id: str = "agent-ai-1"
    ) -> AgentAssignment:
        return await self.assignments.create(
            AgentAssignment(
                conversation_id=conversation_id,
                user_id=user_id,
                agent_id=agent_id,
                agent_type=AgentType.AI,
            )
        )


@pytest.fixture
def engine(router_config: RouterConfig, support_agent: AgentConfig) -> Engine:
    conversations = InMemoryConversationRepository()
    assignments = InMemoryAssignmentRepository()
    agents = InMemoryAgentDirectory()
    agents.add(support_agent)
    handoffs = InMemoryHandoffRepository()
    performance = InMemoryPerformanceRepository()
    interaction_log = InMemoryInteractionLog()
    llm = ScriptedLLMClient()
    knowledge = StaticKnowledgeSearch()
    sender = RecordingSender()
    notifier = RecordingNotifier()
    locks = KeyedLocks()

    tracker = ConversationStateTracker(conversations)
    router = ProviderRouter(router_config, llm)
    generator = ResponseGenerator(KnowledgeRetriever(knowledge, timeout=1.0), router, GenerationConfig())
    analytics = PerformanceAnalyticsAggregator(performance, today=lambda: TODAY)
    workflow = EscalationWorkflow(
        handoffs, conversations, assignments, tracker, locks,
        notifier=notifier, analytics=analytics,
    )
    orchestrator = AutoReplyOrchestrator(
        conversations, assignments, agents, tracker, generator, workflow, sender, locks,
        analytics=analytics, interaction_log=interaction_log, pipeline_timeout=2.0,
    )
    return Engine(
        conversations=conversations,
        assignments=assignments,
        agents=agents,
        handoffs=handoffs,
        performance=performance,
        interaction_log=interaction_log,
        llm=llm,
        knowledge=knowledge,
        sender=sender,
        notifier=notifier,
        locks=locks,
        tracker=tracker,
        router=router,
        generator=generator,
        analytics=analytics,
        workflow=workflow,
        orchestrator=orchestrator,
    )
