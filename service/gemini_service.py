"""
Google Gemini API service wrapper for plan generation
Every call returns a GenerationResult tagged success / transient / permanent
so callers can decide about retries without catching exceptions
"""

import asyncio
import logging
import os
import time
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from logging_metrics import LLMMetrics
from plan_models import GenerationResult, FailureCause

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'gemini-2.5-flash'

LANGUAGE_INSTRUCTIONS = {
    'pt-BR': 'Responda em Português.',
    'en-US': 'Respond in English.',
}

QUOTA_SIGNALS = ('429', 'quota', 'resource_exhausted', 'resource exhausted', 'rate limit', 'rate_limit')
OVERLOAD_SIGNALS = ('503', 'overloaded', 'unavailable', 'deadline', 'timed out', 'timeout')


def classify_error(status_code: Optional[int], message: str) -> GenerationResult:
    """
    Classify an upstream failure from its status code and message

    503 / overloaded / unavailable / deadline → transient (worth retrying)
    429 / quota / rate limit                  → permanent, quota exceeded
    anything else (auth, bad request, ...)    → permanent, generic
    """
    text = (message or '').lower()

    if status_code == 429 or any(signal in text for signal in QUOTA_SIGNALS):
        return GenerationResult.permanent(message, FailureCause.QUOTA_EXCEEDED)
    if status_code in (503, 504) or any(signal in text for signal in OVERLOAD_SIGNALS):
        return GenerationResult.transient(message, FailureCause.OVERLOADED)
    return GenerationResult.permanent(message, FailureCause.GENERIC)


def classify_failure(error: Exception) -> GenerationResult:
    """Classify an exception raised by the Gemini client"""
    if isinstance(error, google_exceptions.ResourceExhausted):
        return GenerationResult.permanent(str(error), FailureCause.QUOTA_EXCEEDED)
    if isinstance(error, (google_exceptions.ServiceUnavailable, google_exceptions.DeadlineExceeded,
                          asyncio.TimeoutError)):
        return GenerationResult.transient(str(error) or type(error).__name__, FailureCause.OVERLOADED)

    status_code = getattr(error, 'code', None)
    return classify_error(status_code if isinstance(status_code, int) else None, str(error))


class GeminiService:
    """Wrapper for Google Gemini API"""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        self.model_name = model_name or os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
        self.model = None
        self._configure()

    def _configure(self):
        """Configure the Gemini API client"""
        if not self.api_key or self.api_key == "your-gemini-api-key-here":
            logger.warning("Gemini API key not configured. Plan generation is unavailable.")
            return

        try:
            genai.configure(api_key=self.api_key)
            self.model = genai.GenerativeModel(self.model_name)
            logger.info(f"✅ Gemini service initialized with model: {self.model_name}")
        except Exception as e:
            logger.error(f"❌ Failed to initialize Gemini service: {e}")
            self.model = None

    def is_configured(self) -> bool:
        """Check if Gemini is properly configured"""
        return self.model is not None

    async def generate(
        self,
        prompt: str,
        language: str = 'pt-BR',
        temperature: float = 0.4,
        max_tokens: int = 8192,
        task: str = 'PLAN'
    ) -> GenerationResult:
        """
        Generate text using Gemini API

        Args:
            prompt: The structured prompt
            language: Response language tag ('pt-BR' or 'en-US')
            temperature: Sampling temperature (0.0 to 1.0)
            max_tokens: Maximum tokens to generate
            task: Task name recorded with the call (PLAN, IMAGES, KEYWORDS)

        Returns:
            GenerationResult; never raises for upstream failures
        """
        if not self.is_configured():
            return GenerationResult.permanent(
                "Gemini API not configured. Please set GEMINI_API_KEY environment variable.")

        instruction = LANGUAGE_INSTRUCTIONS.get(language, LANGUAGE_INSTRUCTIONS['en-US'])
        full_prompt = f"{instruction}\n\n{prompt}"

        logger.info(f"Making Gemini request with {len(full_prompt)} characters")
        start_time = time.time()

        try:
            response = await self.model.generate_content_async(
                full_prompt,
                generation_config=genai.types.GenerationConfig(
                    temperature=temperature,
                    max_output_tokens=max_tokens,
                )
            )
            text = response.text
        except Exception as e:
            result = classify_failure(e)
            logger.error(f"Gemini API error ({result.status.value}/{result.cause.value}): {e}")
            LLMMetrics.log_llm_call(
                task=task, provider='gemini', model=self.model_name, temperature=temperature,
                latency_ms=int((time.time() - start_time) * 1000), prompt_length=len(full_prompt),
                response_length=0, success=False, error=str(e)
            )
            return result

        LLMMetrics.log_llm_call(
            task=task, provider='gemini', model=self.model_name, temperature=temperature,
            latency_ms=int((time.time() - start_time) * 1000), prompt_length=len(full_prompt),
            response_length=len(text or ''), success=bool(text and text.strip())
        )

        if not text or not text.strip():
            return GenerationResult.permanent("Empty response from AI")

        logger.info(f"Gemini response received: {len(text)} characters")
        return GenerationResult.success(text)
