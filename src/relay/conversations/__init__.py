"""Conversation tracking: message analysis, per-conversation state, persistence.

Components:
- schemas: ConversationState, ConversationMessage, AgentAssignment, IncomingMessage
- analyzer: MessageAnalyzer, lexical sentiment/urgency/intent detection
- state: ConversationStateTracker and the pure stage/sentiment/stuck rules
- repository: persistence Protocols and their SQLAlchemy implementations
"""
