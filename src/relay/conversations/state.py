"""Per-conversation state machine driven by message analysis.

Provides the pure transition rules (stage, sentiment blend, stuck detection,
escalation triggers) and ConversationStateTracker, which loads state,
applies the rules for each message, and persists the result.

Stage transitions (inbound messages only, one step per message):
    initial           -> issue_identified  on a complaint
    issue_identified  -> resolving         on positive sentiment
    initial / issue_identified -> engaged  after more than 2 inbound messages
    resolving / engaged -> resolved        on an explicit compliment
    escalated is entered only by the escalation workflow and left only by
    ``reset_stage``.
"""

from __future__ import annotations

import itertools
import re
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict

from src.relay.conversations.analyzer import MessageAnalyzer
from src.relay.conversations.repository import ConversationRepository
from src.relay.conversations.schemas import (
    ConversationMessage,
    ConversationStage,
    ConversationState,
    ConversationSummary,
    EscalationFlag,
    MessageAnalysis,
    MessageDirection,
    Priority,
    Sentiment,
    Urgency,
)

if TYPE_CHECKING:
    from src.relay.config import Settings

logger = structlog.get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9']+")

POSITIVE_CUTOFF = 0.1
NEGATIVE_CUTOFF = -0.1


class TrackerConfig(BaseModel):
    """Tuning for the state tracker, injected at construction."""

    model_config = ConfigDict(frozen=True)

    stuck_window: int = 3
    stuck_similarity: float = 0.7
    sentiment_smoothing: float = 0.5
    engaged_after: int = 2
    negative_streak_after: int = 3
    assistance_after: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> TrackerConfig:
        return cls(
            stuck_window=max(3, settings.STUCK_WINDOW),
            stuck_similarity=settings.STUCK_SIMILARITY,
            sentiment_smoothing=settings.SENTIMENT_SMOOTHING,
        )


# ── Pure Rules ───────────────────────────────────────────────────────────────


def tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def message_similarity(first: str, second: str) -> float:
    """Token overlap: shared tokens over the longer message's token count."""
    tokens_a = tokenize(first)
    tokens_b = tokenize(second)
    if not tokens_a or not tokens_b:
        return 0.0
    vocabulary_b = set(tokens_b)
    common = sum(1 for token in tokens_a if token in vocabulary_b)
    return min(1.0, common / max(len(tokens_a), len(tokens_b)))


def detect_stuck(messages: Sequence[str], threshold: float = 0.7) -> bool:
    """True if any pair of ``messages`` overlaps by at least ``threshold``."""
    return any(
        message_similarity(a, b) >= threshold
        for a, b in itertools.combinations(messages, 2)
    )


def blend_sentiment(prior: float, sample: float, smoothing: float = 0.5) -> float:
    """Move ``prior`` toward ``sample`` by ``smoothing``; result stays in [-1, 1]."""
    blended = (1.0 - smoothing) * prior + smoothing * sample
    return round(max(-1.0, min(1.0, blended)), 4)


def sentiment_label(score: float) -> Sentiment:
    if score > POSITIVE_CUTOFF:
        return Sentiment.POSITIVE
    if score < NEGATIVE_CUTOFF:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def next_stage(
    stage: ConversationStage,
    analysis: MessageAnalysis,
    response_count: int,
    engaged_after: int = 2,
) -> ConversationStage:
    """Apply at most one inbound-triggered transition."""
    if stage == ConversationStage.ESCALATED:
        return stage
    if stage == ConversationStage.INITIAL and analysis.is_complaint:
        return ConversationStage.ISSUE_IDENTIFIED
    if stage == ConversationStage.ISSUE_IDENTIFIED and analysis.sentiment == Sentiment.POSITIVE:
        return ConversationStage.RESOLVING
    if (
        stage in (ConversationStage.INITIAL, ConversationStage.ISSUE_IDENTIFIED)
        and response_count > engaged_after
    ):
        return ConversationStage.ENGAGED
    if (
        stage in (ConversationStage.RESOLVING, ConversationStage.ENGAGED)
        and analysis.is_compliment
    ):
        return ConversationStage.RESOLVED
    return stage


def check_escalation_triggers(
    state: ConversationState,
    analysis: MessageAnalysis,
    negative_streak_after: int = 3,
) -> set[str]:
    """Reasons this conversation needs a human; callers union them into flags."""
    reasons: set[str] = set()
    if state.sentiment == Sentiment.NEGATIVE and state.response_count > negative_streak_after:
        reasons.add(EscalationFlag.REPEATED_NEGATIVE_SENTIMENT.value)
    if analysis.requires_human_attention:
        reasons.add(EscalationFlag.HUMAN_AGENT_REQUESTED.value)
    if analysis.urgency == Urgency.HIGH and analysis.is_complaint:
        reasons.add(EscalationFlag.URGENT_COMPLAINT.value)
    if state.is_stuck:
        reasons.add(EscalationFlag.CONVERSATION_STUCK.value)
    return reasons


def apply_inbound(
    state: ConversationState,
    analysis: MessageAnalysis,
    is_stuck: bool | None,
    config: TrackerConfig,
    now: datetime,
) -> ConversationState:
    """Return a new state reflecting one inbound message.

    ``is_stuck`` of None means stuck detection could not run; the previous
    value is kept.
    """
    updated = state.model_copy(deep=True)
    updated.response_count += 1
    updated.last_interaction = now

    updated.sentiment_score = blend_sentiment(
        state.sentiment_score, analysis.sentiment_score, config.sentiment_smoothing
    )
    updated.sentiment = sentiment_label(updated.sentiment_score)

    if analysis.is_compliment:
        updated.satisfaction = min(5, updated.satisfaction + 1)
    elif analysis.is_complaint:
        updated.satisfaction = max(1, updated.satisfaction - 1)

    if analysis.is_complaint:
        updated.tags.add("complaint")
    if analysis.urgency == Urgency.HIGH:
        updated.tags.add("urgent")

    if is_stuck is not None:
        updated.is_stuck = is_stuck

    updated.needs_assistance = analysis.requires_human_attention or (
        analysis.is_complaint and updated.response_count > config.assistance_after
    )

    updated.stage = next_stage(
        state.stage, analysis, updated.response_count, config.engaged_after
    )

    updated.escalation_flags |= check_escalation_triggers(
        updated, analysis, config.negative_streak_after
    )
    if updated.escalation_flags:
        updated.priority = Priority.HIGH

    return updated


# ── Tracker ──────────────────────────────────────────────────────────────────


class ConversationStateTracker:
    """Loads, advances, and persists conversation state for each message.

    Callers are expected to hold the conversation's lock while calling
    ``update`` or ``reset_stage``.

    Args:
        repository: Persistence collaborator for state and message log.
        analyzer: Message analyzer; defaults to the lexical analyzer.
        config: Tracker tuning.
    """

    def __init__(
        self,
        repository: ConversationRepository,
        analyzer: MessageAnalyzer | None = None,
        config: TrackerConfig | None = None,
    ) -> None:
        self._repository = repository
        self._analyzer = analyzer or MessageAnalyzer()
        self._config = config or TrackerConfig()

    async def get_state(self, conversation_id: str, user_id: str) -> ConversationState | None:
        return await self._repository.get_state(conversation_id, user_id)

    async def update(
        self,
        conversation_id: str,
        user_id: str,
        content: str,
        direction: MessageDirection,
        platform: str = "unknown",
        sender_type: str | None = None,
    ) -> ConversationState:
        """Apply one message to the conversation and persist the result.

        Analysis and stuck-detection failures are logged and degrade to safe
        defaults (neutral analysis, previous ``is_stuck``). Persistence
        failures propagate.
        """
        log = logger.bind(conversation_id=conversation_id, user_id=user_id)
        now = datetime.now(timezone.utc)

        state = await self._repository.get_state(conversation_id, user_id)
        if state is None:
            state = ConversationState(
                conversation_id=conversation_id,
                user_id=user_id,
                platform=platform,
            )
            log.info("conversation.created", platform=platform)

        if direction == MessageDirection.INBOUND:
            try:
                analysis = self._analyzer.analyze(content, direction)
            except Exception:
                log.warning("conversation.analysis_failed", exc_info=True)
                analysis = MessageAnalysis()

            is_stuck = await self._detect_stuck(conversation_id, user_id, content)
            previous_stage = state.stage
            state = apply_inbound(state, analysis, is_stuck, self._config, now)

            if state.stage != previous_stage:
                log.info(
                    "conversation.stage_changed",
                    from_stage=previous_stage.value,
                    to_stage=state.stage.value,
                )
        else:
            state = state.model_copy(update={"last_interaction": now})

        await self._repository.save_state(state)
        await self._repository.append_message(
            ConversationMessage(
                conversation_id=conversation_id,
                user_id=user_id,
                direction=direction,
                content=content,
                platform=platform,
                sender_type=sender_type
                or ("customer" if direction == MessageDirection.INBOUND else "ai_agent"),
                created_at=now,
            )
        )
        return state

    async def reset_stage(
        self,
        conversation_id: str,
        user_id: str,
        stage: ConversationStage = ConversationStage.ENGAGED,
        *,
        clear_flags: bool = True,
    ) -> ConversationState | None:
        """Explicitly move a conversation to ``stage`` (the only way out of escalated)."""
        state = await self._repository.get_state(conversation_id, user_id)
        if state is None:
            return None

        updates: dict = {"stage": stage}
        if clear_flags:
            updates.update(
                escalation_flags=set(),
                is_stuck=False,
                needs_assistance=False,
                priority=Priority.MEDIUM,
            )
        state = state.model_copy(update=updates)
        await self._repository.save_state(state)

        logger.info(
            "conversation.stage_reset",
            conversation_id=conversation_id,
            user_id=user_id,
            stage=stage.value,
        )
        return state

    async def conversations_needing_attention(self, user_id: str) -> list[ConversationState]:
        """Active conversations flagged for a human, highest priority first."""
        states = await self._repository.list_states(user_id)
        flagged = [
            state for state in states
            if state.needs_assistance or state.escalation_flags or state.is_stuck
        ]
        flagged.sort(
            key=lambda state: (
                state.priority != Priority.HIGH,
                -(state.last_interaction.timestamp() if state.last_interaction else 0.0),
            )
        )
        return flagged

    async def summarize(self, user_id: str) -> ConversationSummary:
        states = await self._repository.list_states(user_id)
        if not states:
            return ConversationSummary()

        by_stage = Counter(state.stage.value for state in states)
        by_sentiment = Counter(state.sentiment.value for state in states)
        escalated = by_stage.get(ConversationStage.ESCALATED.value, 0)

        return ConversationSummary(
            total_conversations=len(states),
            by_stage=dict(by_stage),
            by_sentiment=dict(by_sentiment),
            avg_satisfaction=round(sum(s.satisfaction for s in states) / len(states), 2),
            escalation_rate=round(escalated / len(states) * 100, 2),
        )

    async def _detect_stuck(self, conversation_id: str, user_id: str, content: str) -> bool | None:
        window = self._config.stuck_window
        try:
            previous = await self._repository.recent_messages(
                conversation_id,
                user_id,
                limit=window - 1,
                direction=MessageDirection.INBOUND,
            )
        except Exception:
            logger.warning(
                "conversation.stuck_detection_failed",
                conversation_id=conversation_id,
                exc_info=True,
            )
            return None

        messages = [message.content for message in previous] + [content]
        if len(messages) < window:
            return False
        return detect_stuck(messages, self._config.stuck_similarity)
