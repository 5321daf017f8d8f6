from __future__ import annotations
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from ..deps import get_extractor, get_study_session, get_topic_service, get_topic_store
from ..extraction import Artifact, ContentExtractor
from ..session import StudySession
from ..topic_extraction import TopicExtractionService
from ..topic_store import Topic, TopicStore
from .auth import Learner, get_current_user
from .topics import persist_topics


router = APIRouter(prefix="/materials", tags=["materials"])

logger = logging.getLogger(__name__)


class TopicSummary(BaseModel):
	name: str
	description: str
	mastery: int


class MaterialResponse(BaseModel):
	filename: Optional[str] = None
	media_type: str
	characters: int
	topics: List[TopicSummary]
	saved: bool
	save_error: Optional[str] = None


class ExtractResponse(BaseModel):
	media_type: str
	text: str


async def read_artifact(file: UploadFile) -> Artifact:
	content = await file.read()
	return Artifact(data=content, media_type=file.content_type, filename=file.filename)


def _summary(topic: Topic) -> TopicSummary:
	return TopicSummary(name=topic.name, description=topic.description, mastery=topic.mastery)


@router.post("", response_model=MaterialResponse)
async def upload_material(
	file: UploadFile = File(...),
	session: StudySession = Depends(get_study_session),
	extractor: ContentExtractor = Depends(get_extractor),
	topic_service: TopicExtractionService = Depends(get_topic_service),
	store: TopicStore = Depends(get_topic_store),
):
	"""Extract the uploaded material, derive its topics and make them the active set."""
	artifact = await read_artifact(file)
	text = await extractor.extract(artifact)
	topics = await session.derive(text, topic_service)
	logger.info("Derived %d topics for %s from %s", len(topics), session.identity, file.filename)
	save_error = await persist_topics(store, session)
	return MaterialResponse(
		filename=file.filename,
		media_type=artifact.kind,
		characters=len(text),
		topics=[_summary(t) for t in topics],
		saved=save_error is None,
		save_error=save_error,
	)


@router.post("/extract", response_model=ExtractResponse)
async def extract_material(
	file: UploadFile = File(...),
	user: Learner = Depends(get_current_user),
	extractor: ContentExtractor = Depends(get_extractor),
):
	artifact = await read_artifact(file)
	text = await extractor.extract(artifact)
	return ExtractResponse(media_type=artifact.kind, text=text)
