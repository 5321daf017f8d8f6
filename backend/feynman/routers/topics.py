from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_evaluator, get_study_session, get_topic_store
from ..evaluation import EvaluationResult, EvaluationService
from ..errors import PersistenceError
from ..session import StudySession
from ..settings import settings
from ..topic_store import Topic, TopicStore


router = APIRouter(prefix="/topics", tags=["topics"])


class TopicsPayload(BaseModel):
	topics: List[Topic]


class EvaluateRequest(BaseModel):
	transcript: str


class EvaluationResponse(BaseModel):
	result: EvaluationResult
	mastered: bool
	topic: Topic
	saved: bool
	save_error: Optional[str] = None


async def persist_topics(store: TopicStore, session: StudySession) -> Optional[str]:
	"""Save the session's topics; returns the error message instead of raising.

	The in-memory update stands even when saving fails.
	"""
	try:
		await store.save(session.identity, session.topics.to_list())
	except PersistenceError as e:
		return e.message
	return None


async def evaluate_and_save(
	session: StudySession,
	store: TopicStore,
	evaluator: EvaluationService,
	name: str,
	transcript: str,
) -> EvaluationResponse:
	result, topic = await session.evaluate(name, transcript, evaluator, policy=settings.mastery_policy)
	save_error = await persist_topics(store, session)
	return EvaluationResponse(
		result=result,
		mastered=result.mastered,
		topic=topic,
		saved=save_error is None,
		save_error=save_error,
	)


@router.get("", response_model=TopicsPayload)
async def get_topics(session: StudySession = Depends(get_study_session)):
	return TopicsPayload(topics=session.topics.to_list())


@router.post("")
async def save_topics(
	req: TopicsPayload,
	session: StudySession = Depends(get_study_session),
	store: TopicStore = Depends(get_topic_store),
):
	# Client-supplied sets must already have unique names; TopicSet rejects duplicates
	session.replace_topics(req.topics)
	await store.save(session.identity, session.topics.to_list())
	return {"success": True, "count": len(session.topics)}


@router.delete("")
async def discard_topics(
	session: StudySession = Depends(get_study_session),
	store: TopicStore = Depends(get_topic_store),
):
	session.replace_topics([])
	await store.clear(session.identity)
	return {"success": True}


@router.post("/{name}/evaluate", response_model=EvaluationResponse)
async def evaluate_topic(
	name: str,
	req: EvaluateRequest,
	session: StudySession = Depends(get_study_session),
	store: TopicStore = Depends(get_topic_store),
	evaluator: EvaluationService = Depends(get_evaluator),
):
	return await evaluate_and_save(session, store, evaluator, name, req.transcript)
