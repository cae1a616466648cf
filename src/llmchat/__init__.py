"""LlmChat: a multi-session LLM chat orchestrator with tool planning."""

__version__ = "0.1.0"
