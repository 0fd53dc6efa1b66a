"""
Contracts for the external AI services the memory core depends on.
"""

from typing import List, Protocol


class LanguageModel(Protocol):
    """Prompt in, plain text out. All structure is recovered by the caller."""

    async def complete(self, system_prompt: str, user_content: str) -> str:
        ...


class EmbeddingModel(Protocol):
    """Text in, fixed-length vector out."""

    async def embed(self, text: str) -> List[float]:
        ...
