"""Retrieval-augmented reply generation with an escalation verdict.

Components:
- schemas: AgentConfig, GenerationConfig, GenerationResult, EscalationSignal
- retriever: KnowledgeRetriever (timeout, floor, top-k)
- prompts: system prompt assembly from personality, contexts, history
- generator: ResponseGenerator, confidence heuristics, escalation rules
"""
