"""
Unit tests for the Gemini service wrapper and upstream error classification
"""

import asyncio

import pytest
from google.api_core import exceptions as google_exceptions

from gemini_service import GeminiService, classify_error, classify_failure
from logging_metrics import LLMMetrics
from plan_models import FailureCause, GenerationStatus


class FakeResponse:
    def __init__(self, text):
        self.text = text


class FakeModel:
    """Stands in for genai.GenerativeModel"""

    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.prompts = []

    async def generate_content_async(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return FakeResponse(self.text)


@pytest.fixture
def unconfigured_service(monkeypatch):
    monkeypatch.delenv('GEMINI_API_KEY', raising=False)
    return GeminiService()


class TestClassifyError:
    """Status codes and messages"""

    def test_overloaded_is_transient(self):
        result = classify_error(503, 'The model is overloaded. Please try again later.')

        assert result.status == GenerationStatus.TRANSIENT
        assert result.cause == FailureCause.OVERLOADED

    def test_overloaded_message_without_code(self):
        assert classify_error(None, 'UNAVAILABLE: service unavailable').status == GenerationStatus.TRANSIENT

    def test_quota_is_permanent(self):
        result = classify_error(429, 'Resource has been exhausted (e.g. check quota).')

        assert result.status == GenerationStatus.PERMANENT
        assert result.cause == FailureCause.QUOTA_EXCEEDED

    def test_auth_is_permanent_generic(self):
        result = classify_error(401, 'API key not valid')

        assert result.status == GenerationStatus.PERMANENT
        assert result.cause == FailureCause.GENERIC


class TestClassifyFailure:
    """Client exceptions"""

    def test_service_unavailable(self):
        result = classify_failure(google_exceptions.ServiceUnavailable('model overloaded'))

        assert result.status == GenerationStatus.TRANSIENT

    def test_resource_exhausted(self):
        result = classify_failure(google_exceptions.ResourceExhausted('quota exceeded'))

        assert result.status == GenerationStatus.PERMANENT
        assert result.cause == FailureCause.QUOTA_EXCEEDED

    def test_timeout(self):
        result = classify_failure(asyncio.TimeoutError())

        assert result.status == GenerationStatus.TRANSIENT
        assert result.error == 'TimeoutError'

    def test_invalid_argument(self):
        result = classify_failure(google_exceptions.InvalidArgument('bad request'))

        assert result.status == GenerationStatus.PERMANENT
        assert result.cause == FailureCause.GENERIC


class TestGeminiService:
    """generate() never raises for upstream failures"""

    @pytest.mark.asyncio
    async def test_not_configured(self, unconfigured_service):
        assert unconfigured_service.is_configured() is False

        result = await unconfigured_service.generate('plan')

        assert result.status == GenerationStatus.PERMANENT
        assert 'GEMINI_API_KEY' in result.error

    @pytest.mark.asyncio
    async def test_success_with_language_instruction(self, unconfigured_service):
        model = FakeModel(text='{"months": {}}')
        unconfigured_service.model = model

        result = await unconfigured_service.generate('plan', language='en-US')

        assert result.ok
        assert result.text == '{"months": {}}'
        assert model.prompts[0].startswith('Respond in English.')

    @pytest.mark.asyncio
    async def test_empty_response(self, unconfigured_service):
        unconfigured_service.model = FakeModel(text='   ')

        result = await unconfigured_service.generate('plan')

        assert result.status == GenerationStatus.PERMANENT

    @pytest.mark.asyncio
    async def test_upstream_overload(self, unconfigured_service):
        unconfigured_service.model = FakeModel(error=google_exceptions.ServiceUnavailable('overloaded'))

        result = await unconfigured_service.generate('plan')

        assert result.status == GenerationStatus.TRANSIENT
        assert result.cause == FailureCause.OVERLOADED

    @pytest.mark.asyncio
    async def test_call_logged_with_task(self, unconfigured_service, monkeypatch):
        calls = []
        monkeypatch.setattr(LLMMetrics, 'log_llm_call', lambda **kwargs: calls.append(kwargs))
        unconfigured_service.model = FakeModel(text='1. Beach')

        await unconfigured_service.generate('concepts', temperature=0.8, task='IMAGES')

        assert calls[0]['task'] == 'IMAGES'
        assert calls[0]['success'] is True
