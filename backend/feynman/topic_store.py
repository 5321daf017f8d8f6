from __future__ import annotations
import asyncio
import json
import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import SessionLocal
from .errors import DuplicateTopicName, PersistenceError, TopicNotFound
from .models import TopicSetRecord

logger = logging.getLogger(__name__)


MASTERY_MIN = 0
MASTERY_MAX = 100


class Topic(BaseModel):
	name: str = Field(min_length=1)
	description: str = ""
	mastery: int = Field(default=0, ge=MASTERY_MIN, le=MASTERY_MAX)
	# Full extracted text of the material the topic came from (not the truncated prompt prefix)
	source_text: Optional[str] = None


def dedupe_topic_names(topics: Iterable[Topic]) -> List[Topic]:
	"""Rename colliding topics to "Name (2)", "Name (3)", ... keeping order."""
	seen: set[str] = set()
	result: List[Topic] = []
	for topic in topics:
		name = topic.name
		n = 2
		while name in seen:
			name = f"{topic.name} ({n})"
			n += 1
		seen.add(name)
		result.append(topic if name == topic.name else topic.model_copy(update={"name": name}))
	return result


class TopicSet:
	"""Ordered in-memory table of the active topics, keyed by name."""

	def __init__(self, topics: Optional[Iterable[Topic]] = None) -> None:
		self._topics: Dict[str, Topic] = {}
		for topic in topics or ():
			self.add(topic)

	def add(self, topic: Topic) -> None:
		if topic.name in self._topics:
			raise DuplicateTopicName(topic.name)
		self._topics[topic.name] = topic

	def get(self, name: str) -> Topic:
		try:
			return self._topics[name]
		except KeyError:
			raise TopicNotFound(name)

	def replace(self, topic: Topic) -> None:
		if topic.name not in self._topics:
			raise TopicNotFound(topic.name)
		self._topics[topic.name] = topic

	def set_mastery(self, name: str, mastery: int) -> Topic:
		updated = self.get(name).model_copy(update={"mastery": max(MASTERY_MIN, min(MASTERY_MAX, int(mastery)))})
		self._topics[name] = updated
		return updated

	def names(self) -> List[str]:
		return list(self._topics)

	def to_list(self) -> List[Topic]:
		return list(self._topics.values())

	def clear(self) -> None:
		self._topics.clear()

	def __contains__(self, name: object) -> bool:
		return name in self._topics

	def __iter__(self) -> Iterator[Topic]:
		return iter(list(self._topics.values()))

	def __len__(self) -> int:
		return len(self._topics)


class TopicStore:
	"""Persistence façade for topic sets, keyed by an opaque identity.

	Loading never fails the caller: a missing or unreadable record is an empty
	topic set. Saving and clearing raise ``PersistenceError``.
	"""

	def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
		self._session_factory = session_factory

	async def load(self, identity: str) -> List[Topic]:
		return await asyncio.to_thread(self._load, identity)

	async def save(self, identity: str, topics: List[Topic]) -> None:
		await asyncio.to_thread(self._save, identity, topics)

	async def clear(self, identity: str) -> None:
		await asyncio.to_thread(self._clear, identity)

	def _load(self, identity: str) -> List[Topic]:
		try:
			with self._session_factory() as db:
				row = db.get(TopicSetRecord, identity)
				raw = row.topics_json if row else None
		except SQLAlchemyError as e:
			logger.warning("Failed to load topics for %s: %s", identity, e)
			return []
		if not raw:
			return []
		try:
			items = json.loads(raw)
			topics = [Topic.model_validate(item) for item in items]
		except (ValueError, TypeError, ValidationError) as e:
			logger.warning("Discarding unreadable topic set for %s: %s", identity, e)
			return []
		return dedupe_topic_names(topics)

	def _save(self, identity: str, topics: List[Topic]) -> None:
		payload = json.dumps([t.model_dump() for t in topics], ensure_ascii=False)
		try:
			with self._session_factory() as db:
				row = db.get(TopicSetRecord, identity)
				if row is None:
					row = TopicSetRecord(identity=identity, topics_json=payload)
				else:
					row.topics_json = payload
				db.add(row)
				db.commit()
		except SQLAlchemyError as e:
			logger.error("Failed to save %d topics for %s: %s", len(topics), identity, e)
			raise PersistenceError(f"Failed to save topics: {e}") from e

	def _clear(self, identity: str) -> None:
		try:
			with self._session_factory() as db:
				row = db.get(TopicSetRecord, identity)
				if row is not None:
					db.delete(row)
					db.commit()
		except SQLAlchemyError as e:
			logger.error("Failed to clear topics for %s: %s", identity, e)
			raise PersistenceError(f"Failed to clear topics: {e}") from e
