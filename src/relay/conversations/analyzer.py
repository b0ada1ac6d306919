"""Lexical message analysis: sentiment, urgency, and intent signals.

``MessageAnalyzer.analyze`` is a pure function of its input. It keeps no
state between calls and performs no I/O, so the same text always yields the
same ``MessageAnalysis``. The keyword sets live on the class so a subclass
(or a future classifier with the same interface) can replace them without
touching the state tracker.

Exports:
    MessageAnalyzer: Keyword-set scoring of a single message.
"""

from __future__ import annotations

import re

from src.relay.conversations.schemas import (
    MessageAnalysis,
    MessageDirection,
    Sentiment,
    Urgency,
)


def _word_pattern(words: list[str]) -> re.Pattern:
    """Match any of ``words`` at a word start (so "thank" matches "thanks")."""
    alternatives = "|".join(re.escape(word) for word in words)
    return re.compile(rf"\b(?:{alternatives})", re.IGNORECASE)


class MessageAnalyzer:
    """Turns raw message text into sentiment, urgency, and intent signals."""

    POSITIVE_WORDS: list[str] = [
        "thank",
        "great",
        "awesome",
        "perfect",
        "love",
        "excellent",
        "amazing",
        "good",
        "helpful",
    ]

    NEGATIVE_WORDS: list[str] = [
        "problem",
        "issue",
        "broken",
        "bad",
        "terrible",
        "awful",
        "hate",
        "angry",
        "frustrated",
        "disappointed",
        "fail",
        "wrong",
        "worst",
    ]

    URGENCY_WORDS: list[str] = [
        "urgent",
        "asap",
        "emergency",
        "immediately",
        "critical",
        "important",
    ]

    COMPLAINT_WORDS: list[str] = [
        "complaint",
        "complain",
        "dissatisfied",
        "unhappy",
    ]

    QUESTION_WORDS: list[str] = ["how", "what", "when", "why", "where"]

    HUMAN_REQUEST_PHRASES: list[str] = [
        "speak to human",
        "speak to a human",
        "talk to a human",
        "talk to person",
        "talk to a person",
        "real person",
        "human agent",
        "manager",
        "supervisor",
    ]

    SCORE_PER_WORD: float = 0.2
    MAX_SCORE: float = 0.8

    def __init__(self) -> None:
        self._positive = _word_pattern(self.POSITIVE_WORDS)
        self._negative = _word_pattern(self.NEGATIVE_WORDS)
        self._urgency = _word_pattern(self.URGENCY_WORDS)
        self._complaint = _word_pattern(self.COMPLAINT_WORDS)
        self._question = re.compile(
            rf"\b(?:{'|'.join(self.QUESTION_WORDS)})\b", re.IGNORECASE
        )

    def analyze(
        self,
        text: str,
        direction: MessageDirection = MessageDirection.INBOUND,
    ) -> MessageAnalysis:
        """Analyze one message.

        Outbound messages carry no customer signal and get the neutral
        default analysis.

        Args:
            text: Raw message content.
            direction: Whether the customer sent it or an agent did.

        Returns:
            MessageAnalysis with sentiment in [-1, 1] and intent booleans.
        """
        if direction != MessageDirection.INBOUND or not text.strip():
            return MessageAnalysis()

        lowered = text.lower()
        positive_count = self._count_distinct(self._positive, lowered)
        negative_count = self._count_distinct(self._negative, lowered)

        if positive_count > negative_count:
            sentiment = Sentiment.POSITIVE
            score = min(self.MAX_SCORE, positive_count * self.SCORE_PER_WORD)
        elif negative_count > positive_count:
            sentiment = Sentiment.NEGATIVE
            score = -min(self.MAX_SCORE, negative_count * self.SCORE_PER_WORD)
        else:
            sentiment = Sentiment.NEUTRAL
            score = 0.0

        urgency = Urgency.HIGH if self._urgency.search(lowered) else Urgency.MEDIUM
        is_question = "?" in lowered or bool(self._question.search(lowered))
        is_complaint = bool(self._complaint.search(lowered)) or negative_count > 1
        is_compliment = positive_count > 0 and "thank" in lowered

        requests_human = any(phrase in lowered for phrase in self.HUMAN_REQUEST_PHRASES)
        requires_human = requests_human or (
            sentiment == Sentiment.NEGATIVE and urgency == Urgency.HIGH
        )

        actions: list[str] = []
        if is_complaint:
            actions.append("acknowledge_concern")
        if is_question:
            actions.append("provide_information")
        if requires_human:
            actions.append("escalate_to_human")
        if urgency == Urgency.HIGH:
            actions.append("prioritize_response")

        return MessageAnalysis(
            sentiment=sentiment,
            sentiment_score=score,
            urgency=urgency,
            is_question=is_question,
            is_complaint=is_complaint,
            is_compliment=is_compliment,
            requires_human_attention=requires_human,
            suggested_actions=tuple(actions),
        )

    @staticmethod
    def _count_distinct(pattern: re.Pattern, text: str) -> int:
        return len({match.group(0) for match in pattern.finditer(text)})
