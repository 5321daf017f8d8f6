from __future__ import annotations
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .capture import CaptureSession, CaptureState
from .errors import EvaluationInProgress, IllegalStateTransition, TopicNotFound
from .evaluation import EvaluationResult, EvaluationService, MASTERY_POLICY_MAX, merge_mastery
from .topic_extraction import TopicExtractionService
from .topic_store import Topic, TopicSet, TopicStore

logger = logging.getLogger(__name__)


class StudySession:
	"""Everything one identity is working on: its topics and their capture sessions.

	Evaluations are serialized per topic (a second request for a topic that is
	still being evaluated is rejected) so mastery merges never race.
	"""

	def __init__(self, identity: str, topics: Optional[Iterable[Topic]] = None) -> None:
		self.identity = identity
		self.topics = TopicSet(topics)
		self.captures: Dict[str, CaptureSession] = {}
		self._evaluating: Set[str] = set()
		self.deriving = False

	def replace_topics(self, topics: Iterable[Topic]) -> None:
		new_topics = TopicSet(topics)
		for capture in self.captures.values():
			if capture.state is CaptureState.LISTENING:
				capture.stop()
		self.topics = new_topics
		self.captures = {}

	def capture_for(self, name: str) -> CaptureSession:
		self.topics.get(name)
		capture = self.captures.get(name)
		if capture is None:
			capture = self.captures[name] = CaptureSession(name)
		return capture

	def is_evaluating(self, name: str) -> bool:
		return name in self._evaluating

	async def derive(self, text: str, topic_service: TopicExtractionService) -> List[Topic]:
		"""Derive a fresh topic set from ``text``; the old set stays until derivation succeeds."""
		if self.deriving:
			raise IllegalStateTransition("derive topics", "deriving topics")
		self.deriving = True
		try:
			topics = await topic_service.derive_topics(text)
		finally:
			self.deriving = False
		self.replace_topics(topics)
		return topics

	async def evaluate(
		self,
		name: str,
		transcript: str,
		evaluator: EvaluationService,
		*,
		policy: str = MASTERY_POLICY_MAX,
	) -> Tuple[EvaluationResult, Topic]:
		topics = self.topics
		topic = topics.get(name)
		if name in self._evaluating:
			raise EvaluationInProgress(name)
		self._evaluating.add(name)
		try:
			result = await evaluator.evaluate(topic, transcript)
		finally:
			self._evaluating.discard(name)
		if self.topics is not topics:
			# The score belongs to the discarded set, even if the new one reuses the name
			logger.warning("Dropping score %d for %r (%s): topic set was replaced", result.score, name, self.identity)
			raise TopicNotFound(name)
		current = topics.get(name)
		mastery = merge_mastery(current.mastery, result.score, policy)
		updated = topics.set_mastery(name, mastery)
		logger.info("Mastery for %r (%s): %d -> %d", name, self.identity, current.mastery, updated.mastery)
		return result, updated


class SessionRegistry:
	"""One ``StudySession`` per identity, seeded from the topic store on first use."""

	def __init__(self, store: TopicStore) -> None:
		self.store = store
		self._sessions: Dict[str, StudySession] = {}
		self._lock = asyncio.Lock()

	async def get(self, identity: str) -> StudySession:
		session = self._sessions.get(identity)
		if session is not None:
			return session
		async with self._lock:
			session = self._sessions.get(identity)
			if session is None:
				topics = await self.store.load(identity)
				session = self._sessions[identity] = StudySession(identity, topics)
		return session

	def drop(self, identity: str) -> None:
		self._sessions.pop(identity, None)
