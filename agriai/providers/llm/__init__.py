"""LLM provider adapters.

    - OpenAILLMProvider -- OpenAI chat completions (also OpenAI-compatible APIs)

main.py builds the provider only when OPENAI_API_KEY is set; without one
the RAG service answers with fallback templates.
"""

from agriai.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OpenAILLMProvider"]
