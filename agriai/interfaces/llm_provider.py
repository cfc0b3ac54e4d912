"""Abstract base class for chat-completion providers.

The RAG service makes three kinds of call (intent classification, entity
extraction, answer generation), all with the same shape: a system message,
a user message, a temperature and a token budget, returning plain text.
Any backend that can satisfy that shape can be injected.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAILLMProvider -- OpenAI or any OpenAI-compatible endpoint
# Located in: agriai/providers/llm/
class ILLMProvider(ABC):
    """Contract for chat-completion backends used by the RAG service."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> str:
        """Generate a completion for a system + user message pair.

        Parameters
        ----------
        system_prompt:
            Instruction establishing the assistant's role and rules.
        user_prompt:
            The request content.
        temperature:
            Sampling temperature; low values for classification tasks.
        max_tokens:
            Upper bound on generated tokens.

        Returns
        -------
        str
            The generated text.

        Raises
        ------
        agriai.utils.errors.LLMError
            If the call fails, times out, or returns no content.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` when credentials are configured.

        Does not perform a network round-trip.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier such as ``"openai"``."""

    def get_model_name(self) -> str:
        """Return the model used for completions; defaults to the provider name."""
        return self.get_provider_name()
