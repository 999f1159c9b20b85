"""
NoteMind Backend — Abstract LLM Service Interface
===================================================

What:  Interface every text-generation provider implements.
Why:   The orchestrator only needs "prompt in, text out"; keeping that behind
       an ABC lets tests substitute a mock and lets a different provider be
       swapped in without touching NoteAIService.

Contract for implementations:
    - One upstream call per `generate()`; retrying is the caller's job.
    - Translate provider exceptions into NetworkError / LLMServiceError so
      the error kind is decided at the boundary.
    - Return an empty string (not raise) when the provider answered with no
      text; the caller decides whether that is a parsing failure.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    text: str
    usage: Optional[TokenUsage] = None


class LLMService(ABC):
    """Abstract base class for text-generation providers."""

    model_name: str

    @abstractmethod
    async def generate(self, prompt: str) -> LLMResponse:
        """
        Send `prompt` and return the generated text.

        Raises:
            NetworkError:     Connection failure or timeout
            LLMServiceError:  Provider rejected or failed the request
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True if the provider is reachable with the configured credentials."""
        ...
