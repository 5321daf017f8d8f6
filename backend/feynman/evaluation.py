"""
Explanation Evaluation
======================

Scores a learner's explanation of a topic with the completion service and
merges the score into the topic's mastery.

The rubric asks the model for ``{score, feedback, followup}``. Score banding
(challenge above 85, clarify from 60 to 85, hint below 60) is advice to the
model only; nothing here enforces it. Scores are clamped to 0-100 before they
touch mastery.
"""

from __future__ import annotations
import logging
import math
import re
from typing import Any, Optional

from pydantic import BaseModel, Field

from .completion_client import CompletionClient
from .errors import EmptyTranscript, MalformedEvaluationResponse, ServiceNotConfigured
from .replies import ReplyParseError, extract_json_object
from .settings import settings
from .topic_store import MASTERY_MAX, MASTERY_MIN, Topic

logger = logging.getLogger(__name__)


MASTERED = "MASTERED"

MASTERY_POLICY_MAX = "max"
MASTERY_POLICY_OVERWRITE = "overwrite"
MASTERY_POLICIES = (MASTERY_POLICY_MAX, MASTERY_POLICY_OVERWRITE)


class EvaluationResult(BaseModel):
	score: int = Field(ge=MASTERY_MIN, le=MASTERY_MAX)
	feedback: str = ""
	followup: str = ""

	@property
	def mastered(self) -> bool:
		return self.followup.strip().upper() == MASTERED


def clamp_score(value: float) -> int:
	return max(MASTERY_MIN, min(MASTERY_MAX, int(round(value))))


def merge_mastery(current: int, score: float, policy: str = MASTERY_POLICY_MAX) -> int:
	"""New mastery after an evaluation.

	``max`` never lets mastery go down across attempts; ``overwrite`` keeps the
	latest score.
	"""
	clamped = clamp_score(score)
	if policy == MASTERY_POLICY_OVERWRITE:
		return clamped
	if policy != MASTERY_POLICY_MAX:
		raise ValueError(f"Unknown mastery policy: {policy}")
	return max(clamp_score(current), clamped)


_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _coerce_score(value: Any) -> Optional[float]:
	if isinstance(value, bool):
		return None
	if isinstance(value, (int, float)):
		return float(value) if math.isfinite(value) else None
	if isinstance(value, str):
		match = _NUMBER.search(value)
		if match:
			return float(match.group(0))
	return None


def _as_text(value: Any) -> str:
	if value is None:
		return ""
	return value.strip() if isinstance(value, str) else str(value)


def parse_evaluation(raw: str) -> EvaluationResult:
	try:
		data = extract_json_object(raw)
	except ReplyParseError as e:
		raise MalformedEvaluationResponse(raw, e.reason)
	score = _coerce_score(data.get("score"))
	if score is None:
		raise MalformedEvaluationResponse(raw, "Reply did not contain a numeric score")
	return EvaluationResult(
		score=clamp_score(score),
		feedback=_as_text(data.get("feedback")),
		followup=_as_text(data.get("followup")),
	)


def build_evaluation_prompt(topic: Topic, transcript: str, *, context_chars: int = 3000) -> str:
	context = topic.source_text[:context_chars] if topic.source_text else topic.description
	clean_transcript = transcript.replace('"', '\\"').replace("\n", " ")
	return f"""You are a Socratic tutor evaluating a student's understanding of "{topic.name}".

CONTEXT FROM STUDY MATERIAL:
{context}

TOPIC: {topic.name}
DESCRIPTION: {topic.description}

STUDENT'S EXPLANATION:
"{clean_transcript}"

Evaluate their understanding and return JSON in this exact format:
{{
  "score": 0-100,
  "feedback": "Detailed feedback on what they got right and wrong",
  "followup": "If score > 85: challenging question, or {MASTERED} if nothing is left to probe. If 60-85: clarifying question. If < 60: hint and ask to re-explain"
}}

Be encouraging but honest. Point out misconceptions and missing concepts."""


class EvaluationService:
	def __init__(
		self,
		client: Optional[CompletionClient],
		*,
		model: Optional[str] = None,
		context_chars: Optional[int] = None,
	) -> None:
		self.client = client
		self.model = model or settings.evaluation_model
		self.context_chars = context_chars or settings.context_prefix_chars

	async def evaluate(self, topic: Topic, transcript: str) -> EvaluationResult:
		if not transcript or not transcript.strip():
			raise EmptyTranscript()
		if self.client is None:
			raise ServiceNotConfigured("CLAUDE_API_KEY is not configured")
		prompt = build_evaluation_prompt(topic, transcript.strip(), context_chars=self.context_chars)
		raw = await self.client.complete(prompt, model=self.model)
		try:
			result = parse_evaluation(raw)
		except MalformedEvaluationResponse as e:
			logger.warning("Malformed evaluation reply for %r (%s): %.500r", topic.name, e.message, raw)
			raise
		logger.info("Evaluated %r: score=%d mastered=%s", topic.name, result.score, result.mastered)
		return result
