"""
NoteMind Backend — Google Gemini Text Generation Service
==========================================================

What:  LLMService implementation that sends a text prompt to Google Gemini
       and returns the generated text.
Why:   Summaries and tags are produced by Gemini; this class is the single
       point where SDK exceptions are turned into application errors.
How:   One `generate_content_async` call per `generate()`. Retries are NOT
       done here; NoteAIService wraps each call in a RetryController so the
       retry state and error classification stay in one place.
Who:   Singleton `gemini_service`, injected into NoteAIService.

Error translation:
    DeadlineExceeded, ConnectionError, TimeoutError  → NetworkError  (retryable)
    Any other GoogleAPIError                         → LLMServiceError (retryable)
    Missing API key                                  → LLMServiceError
    Blocked / empty candidate                        → "" (caller decides)
"""

import asyncio
import logging
import time
import uuid
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from app.config import settings
from app.exceptions import LLMServiceError, NetworkError
from app.services.llm_base import LLMResponse, LLMService, TokenUsage

logger = logging.getLogger(__name__)


class GeminiService(LLMService):
    """Google Gemini text generation client."""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model_name = model_name or settings.gemini_model

        # The SDK keeps the key in module-level state
        if self.is_configured:
            genai.configure(api_key=self.api_key)

        self.model = genai.GenerativeModel(self.model_name)
        logger.info("GeminiService initialized with model=%s", self.model_name)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != "your_gemini_api_key_here"

    async def generate(self, prompt: str) -> LLMResponse:
        call_id = str(uuid.uuid4())[:8]

        if not self.is_configured:
            raise LLMServiceError(
                message="GEMINI_API_KEY is not configured",
                context={"call_id": call_id},
            )

        start_time = time.time()
        try:
            response = await self.model.generate_content_async(
                prompt,
                request_options={"timeout": settings.llm_request_timeout},
            )
        except google_exceptions.DeadlineExceeded as e:
            logger.warning("[%s] Gemini request timed out: %s", call_id, e)
            raise NetworkError(
                message=f"Gemini request timed out: {e}",
                context={"call_id": call_id},
            )
        except (ConnectionError, TimeoutError, asyncio.TimeoutError) as e:
            logger.warning("[%s] Gemini connection failed: %s", call_id, e)
            raise NetworkError(
                message=f"Connection to Gemini failed: {e}",
                context={"call_id": call_id, "error_type": type(e).__name__},
            )
        except google_exceptions.GoogleAPIError as e:
            logger.warning("[%s] Gemini API error: %s", call_id, e)
            raise LLMServiceError(
                message=f"Gemini API call failed: {e}",
                context={"call_id": call_id, "error_type": type(e).__name__},
            )

        duration_ms = (time.time() - start_time) * 1000
        text = self._extract_text(response, call_id)
        usage = self._extract_usage(response)

        logger.info(
            "[%s] Gemini call completed in %.0fms, %d chars, %s tokens",
            call_id,
            duration_ms,
            len(text),
            usage.total_tokens if usage else "unknown",
        )
        return LLMResponse(text=text, usage=usage)

    @staticmethod
    def _extract_text(response, call_id: str) -> str:
        # response.text raises ValueError when the candidate was blocked or empty
        try:
            return response.text or ""
        except ValueError as e:
            logger.warning("[%s] Gemini returned no text: %s", call_id, e)
            return ""

    @staticmethod
    def _extract_usage(response) -> Optional[TokenUsage]:
        metadata = getattr(response, "usage_metadata", None)
        if metadata is None:
            return None
        return TokenUsage(
            prompt_tokens=getattr(metadata, "prompt_token_count", 0) or 0,
            completion_tokens=getattr(metadata, "candidates_token_count", 0) or 0,
            total_tokens=getattr(metadata, "total_token_count", 0) or 0,
        )

    async def health_check(self) -> bool:
        """
        Lists models (no token cost) to verify key and connectivity.
        list_models is blocking, so it runs in a worker thread.
        """
        if not self.is_configured:
            return False
        try:
            models = await asyncio.to_thread(lambda: [m.name for m in genai.list_models()])
        except Exception as e:
            logger.warning("Gemini health check failed: %s", e)
            return False

        target = f"models/{self.model_name}"
        if target not in models:
            logger.warning("Configured model %s not found in available models", target)
        return True


gemini_service = GeminiService()
