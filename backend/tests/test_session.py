import asyncio

import pytest

from feynman.capture import CaptureState
from feynman.errors import EvaluationInProgress, IllegalStateTransition, TopicNotFound
from feynman.evaluation import EvaluationResult
from feynman.session import SessionRegistry, StudySession
from feynman.topic_store import Topic


class GatedEvaluator:
	"""Evaluator whose replies are held until the test releases them."""

	def __init__(self, score=50):
		self.score = score
		self.started = asyncio.Event()
		self.release = asyncio.Event()
		self.calls = []

	async def evaluate(self, topic, transcript):
		self.calls.append((topic.name, transcript))
		self.started.set()
		await self.release.wait()
		return EvaluationResult(score=self.score, feedback="ok", followup="Why?")


class FixedTopics:
	def __init__(self, topics, gate=None):
		self.topics = topics
		self.gate = gate

	async def derive_topics(self, text):
		if self.gate is not None:
			await self.gate.wait()
		return list(self.topics)


class MemoryStore:
	def __init__(self, saved=None):
		self.saved = dict(saved or {})
		self.loads = 0

	async def load(self, identity):
		self.loads += 1
		return list(self.saved.get(identity, []))


def topics(*names):
	return [Topic(name=n) for n in names]


def test_evaluate_merges_mastery_with_max_policy():
	async def scenario():
		session = StudySession("alice", [Topic(name="A", mastery=40)])
		evaluator = GatedEvaluator(score=30)
		evaluator.release.set()
		result, topic = await session.evaluate("A", "explanation", evaluator)
		return result, topic, session

	result, topic, session = asyncio.run(scenario())
	assert result.score == 30
	assert topic.mastery == 40
	assert session.topics.get("A").mastery == 40


def test_evaluate_overwrite_policy():
	async def scenario():
		session = StudySession("alice", [Topic(name="A", mastery=40)])
		evaluator = GatedEvaluator(score=30)
		evaluator.release.set()
		await session.evaluate("A", "explanation", evaluator, policy="overwrite")
		return session

	assert asyncio.run(scenario()).topics.get("A").mastery == 30


def test_unknown_topic_is_not_found():
	with pytest.raises(TopicNotFound):
		asyncio.run(StudySession("alice").evaluate("Nope", "text", GatedEvaluator()))


def test_second_evaluation_of_same_topic_is_rejected():
	async def scenario():
		session = StudySession("alice", topics("A", "B"))
		evaluator = GatedEvaluator(score=80)
		first = asyncio.create_task(session.evaluate("A", "first", evaluator))
		await evaluator.started.wait()
		assert session.is_evaluating("A")
		with pytest.raises(EvaluationInProgress):
			await session.evaluate("A", "second", evaluator)
		evaluator.release.set()
		await first
		return session, evaluator

	session, evaluator = asyncio.run(scenario())
	assert evaluator.calls == [("A", "first")]
	assert not session.is_evaluating("A")
	assert session.topics.get("A").mastery == 80


def test_different_topics_evaluate_concurrently():
	async def scenario():
		session = StudySession("alice", topics("A", "B"))
		evaluator = GatedEvaluator(score=60)
		tasks = [asyncio.create_task(session.evaluate(name, "text", evaluator)) for name in ("A", "B")]
		while len(evaluator.calls) < 2:
			await asyncio.sleep(0)
		assert session.is_evaluating("A") and session.is_evaluating("B")
		evaluator.release.set()
		await asyncio.gather(*tasks)
		return session

	session = asyncio.run(scenario())
	assert [t.mastery for t in session.topics] == [60, 60]


def test_evaluation_failure_releases_topic():
	class Failing:
		async def evaluate(self, topic, transcript):
			raise RuntimeError("boom")

	session = StudySession("alice", topics("A"))
	with pytest.raises(RuntimeError):
		asyncio.run(session.evaluate("A", "text", Failing()))
	assert not session.is_evaluating("A")
	assert session.topics.get("A").mastery == 0


def test_derive_replaces_topics_and_resets_captures():
	async def scenario():
		session = StudySession("alice", topics("Old"))
		capture = session.capture_for("Old")
		capture.start()
		await session.derive("material", FixedTopics(topics("New 1", "New 2")))
		return session, capture

	session, old_capture = asyncio.run(scenario())
	assert session.topics.names() == ["New 1", "New 2"]
	assert session.captures == {}
	assert old_capture.state is CaptureState.IDLE


def test_concurrent_derivation_is_rejected():
	async def scenario():
		session = StudySession("alice", topics("Old"))
		gate = asyncio.Event()
		first = asyncio.create_task(session.derive("material", FixedTopics(topics("New"), gate)))
		await asyncio.sleep(0)
		with pytest.raises(IllegalStateTransition):
			await session.derive("material", FixedTopics(topics("Other")))
		assert session.topics.names() == ["Old"]
		gate.set()
		await first
		return session

	assert asyncio.run(scenario()).topics.names() == ["New"]


def test_capture_for_requires_known_topic():
	session = StudySession("alice", topics("A"))
	assert session.capture_for("A") is session.capture_for("A")
	with pytest.raises(TopicNotFound):
		session.capture_for("B")


def test_registry_loads_each_identity_once():
	store = MemoryStore({"alice": topics("A", "B")})
	registry = SessionRegistry(store)

	async def scenario():
		first, second = await asyncio.gather(registry.get("alice"), registry.get("alice"))
		other = await registry.get("bob")
		return first, second, other

	first, second, other = asyncio.run(scenario())
	assert first is second
	assert first.topics.names() == ["A", "B"]
	assert len(other.topics) == 0
	assert store.loads == 2


def test_registry_drop_forgets_session():
	store = MemoryStore()
	registry = SessionRegistry(store)
	first = asyncio.run(registry.get("alice"))
	registry.drop("alice")
	assert asyncio.run(registry.get("alice")) is not first


def test_score_is_dropped_when_topic_set_is_replaced_mid_evaluation():
	async def scenario():
		session = StudySession("alice", [Topic(name="Energy", source_text="old material")])
		evaluator = GatedEvaluator(score=90)
		pending = asyncio.create_task(session.evaluate("Energy", "explanation", evaluator))
		await evaluator.started.wait()
		session.replace_topics([Topic(name="Energy", source_text="brand new material")])
		evaluator.release.set()
		with pytest.raises(TopicNotFound):
			await pending
		return session

	session = asyncio.run(scenario())
	assert session.topics.get("Energy").mastery == 0
	assert not session.is_evaluating("Energy")
