"""Tests for the lexical MessageAnalyzer.

Covers:
- Sentiment direction and score capping
- Urgency, question, complaint, and compliment detection
- Human-attention rules (explicit request, negative + urgent)
- Suggested action ordering
- Outbound and empty messages get the neutral default
"""

from __future__ import annotations

import pytest

from src.relay.conversations.analyzer import MessageAnalyzer
from src.relay.conversations.schemas import (
    MessageAnalysis,
    MessageDirection,
    Sentiment,
    Urgency,
)


@pytest.fixture
def analyzer() -> MessageAnalyzer:
    return MessageAnalyzer()


class TestSentiment:
    def test_urgent_payment_failure(self, analyzer: MessageAnalyzer) -> None:
        """One negative word plus an urgency word: negative, high, needs a human."""
        result = analyzer.analyze("This is urgent, my payment failed!")

        assert result.sentiment == Sentiment.NEGATIVE
        assert result.sentiment_score == pytest.approx(-0.2)
        assert result.urgency == Urgency.HIGH
        assert result.requires_human_attention is True
        assert result.is_complaint is False
        assert result.suggested_actions == ("escalate_to_human", "prioritize_response")

    def test_thanks_is_positive_compliment(self, analyzer: MessageAnalyzer) -> None:
        result = analyzer.analyze("Thanks, that was really helpful!")

        assert result.sentiment == Sentiment.POSITIVE
        assert result.sentiment_score == pytest.approx(0.4)
        assert result.is_compliment is True
        assert result.requires_human_attention is False

    def test_positive_without_thanks_is_not_compliment(self, analyzer: MessageAnalyzer) -> None:
        result = analyzer.analyze("The new dashboard looks great")

        assert result.sentiment == Sentiment.POSITIVE
        assert result.is_compliment is False

    def test_score_is_capped(self, analyzer: MessageAnalyzer) -> None:
        result = analyzer.analyze("problem issue broken bad terrible awful")

        assert result.sentiment_score == pytest.approx(-0.8)

    def test_balanced_words_are_neutral(self, analyzer: MessageAnalyzer) -> None:
        result = analyzer.analyze("good product, bad delivery")

        assert result.sentiment == Sentiment.NEUTRAL
        assert result.sentiment_score == 0.0


class TestIntent:
    def test_multiple_negative_words_is_complaint(self, analyzer: MessageAnalyzer) -> None:
        result = analyzer.analyze("I have a problem, the app is broken and I'm frustrated")

        assert result.is_complaint is True
        assert result.suggested_actions[0] == "acknowledge_concern"

    def test_complaint_keyword(self, analyzer: MessageAnalyzer) -> None:
        assert analyzer.analyze("I want to file a complaint").is_complaint is True

    def test_question_by_mark_or_word(self, analyzer: MessageAnalyzer) -> None:
        assert analyzer.analyze("Is shipping free?").is_question is True
        assert analyzer.analyze("how do I reset my password").is_question is True
        assert analyzer.analyze("Reset my password").is_question is False

    def test_explicit_human_request(self, analyzer: MessageAnalyzer) -> None:
        result = analyzer.analyze("Can I talk to a person please")

        assert result.requires_human_attention is True
        assert result.sentiment == Sentiment.NEUTRAL
        assert "escalate_to_human" in result.suggested_actions

    def test_urgency_default_is_medium(self, analyzer: MessageAnalyzer) -> None:
        assert analyzer.analyze("Where is my order").urgency == Urgency.MEDIUM


class TestDefaults:
    def test_outbound_gets_default(self, analyzer: MessageAnalyzer) -> None:
        result = analyzer.analyze("This is terrible and broken", MessageDirection.OUTBOUND)

        assert result == MessageAnalysis()

    def test_empty_text_gets_default(self, analyzer: MessageAnalyzer) -> None:
        assert analyzer.analyze("   ") == MessageAnalysis()

    def test_same_input_same_output(self, analyzer: MessageAnalyzer) -> None:
        text = "This is urgent, my payment failed!"
        assert analyzer.analyze(text) == analyzer.analyze(text)
