"""FastAPI dependencies wiring the pipeline services into request handlers."""

from __future__ import annotations
from typing import AsyncIterator, Optional

from fastapi import Depends, Request

from .completion_client import CompletionClient
from .evaluation import EvaluationService
from .extraction import ContentExtractor
from .routers.auth import Learner, get_current_user
from .session import SessionRegistry, StudySession
from .settings import settings
from .speech import GoogleSpeechRecognizer
from .topic_extraction import TopicExtractionService
from .topic_store import TopicStore


async def get_completion_client() -> AsyncIterator[Optional[CompletionClient]]:
	# None when no API key is configured; services raise ServiceNotConfigured on first use
	if not settings.claude_api_key:
		yield None
		return
	client = CompletionClient()
	try:
		yield client
	finally:
		await client.aclose()


def get_extractor(client: Optional[CompletionClient] = Depends(get_completion_client)) -> ContentExtractor:
	return ContentExtractor(client)


def get_topic_service(client: Optional[CompletionClient] = Depends(get_completion_client)) -> TopicExtractionService:
	return TopicExtractionService(client)


def get_evaluator(client: Optional[CompletionClient] = Depends(get_completion_client)) -> EvaluationService:
	return EvaluationService(client)


def get_speech_recognizer() -> GoogleSpeechRecognizer:
	return GoogleSpeechRecognizer()


def get_topic_store(request: Request) -> TopicStore:
	return request.app.state.topic_store


def get_registry(request: Request) -> SessionRegistry:
	return request.app.state.registry


async def get_study_session(
	user: Learner = Depends(get_current_user),
	registry: SessionRegistry = Depends(get_registry),
) -> StudySession:
	return await registry.get(user.username)
