"""LLM backend adapters.  Importing this package registers every bundled provider."""

from llmchat.providers import (  # noqa: F401  (registration side effect)
    gemini,
    hosted,
)
from llmchat.providers.chat_client import (
    ChatClient,
    FallbackChatClient,
    ProviderCompatibilityError,
    ProviderError,
    fold_system,
    load_chat_client,
    register_chat_client,
)

__all__ = [
    "ChatClient",
    "FallbackChatClient",
    "ProviderCompatibilityError",
    "ProviderError",
    "fold_system",
    "load_chat_client",
    "register_chat_client",
]
