from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel

from .completion_client import CompletionClient
from .errors import EmptyExtraction, MalformedTopicResponse, ServiceNotConfigured
from .replies import ReplyParseError, extract_json_array
from .settings import settings
from .topic_store import Topic, dedupe_topic_names

logger = logging.getLogger(__name__)


MIN_TOPICS = 3
MAX_TOPICS = 5
STRICT_TOPICS = 5


class TopicListOk(BaseModel):
	items: List[Dict[str, str]]


class TopicListParseError(BaseModel):
	raw: str
	reason: str


TopicListResult = Union[TopicListOk, TopicListParseError]


def build_topic_prompt(text: str, *, strict: bool = False, prefix_chars: int = 10000) -> str:
	excerpt = text[:prefix_chars]
	if strict:
		return (
			"You must respond with ONLY valid JSON. "
			f"Extract exactly {STRICT_TOPICS} key topics from this text and return them as a JSON array. "
			f"If the text has fewer distinct topics, create subtopics or related concepts to reach {STRICT_TOPICS} topics.\n\n"
			'Format: [{"name": "Topic Name", "description": "Brief description"}]\n\n'
			"Do not include any other text, explanations, or markdown formatting. "
			f"Only return the JSON array with exactly {STRICT_TOPICS} topics.\n\n"
			f"Text: {excerpt}"
		)
	return (
		"You must respond with ONLY valid JSON. "
		f"Extract {MIN_TOPICS}-{MAX_TOPICS} key topics from this text and return them as a JSON array.\n\n"
		'Format: [{"name": "Topic Name", "description": "Brief description"}]\n\n'
		"Do not include any other text, explanations, or markdown formatting.\n\n"
		f"Text: {excerpt}"
	)


def _validate_item(index: int, item: Any) -> Dict[str, str]:
	if not isinstance(item, dict):
		raise ValueError(f"Topic #{index + 1} is not an object")
	name = item.get("name")
	if not isinstance(name, str) or not name.strip():
		raise ValueError(f"Topic #{index + 1} has no name")
	description = item.get("description", "")
	if description is None:
		description = ""
	if not isinstance(description, str):
		raise ValueError(f"Topic '{name.strip()}' has a non-text description")
	return {"name": name.strip(), "description": description.strip()}


def parse_topic_list(raw: str) -> TopicListResult:
	"""Interpret a completion reply as a list of ``{name, description}`` objects.

	Fences are stripped and the outermost ``[...]`` span is tried when the
	reply carries extra prose. Any element that is not a named object makes the
	whole reply a parse error: topics are never guessed or dropped.
	"""
	try:
		items = extract_json_array(raw)
	except ReplyParseError as e:
		return TopicListParseError(raw=raw, reason=e.reason)
	if not items:
		return TopicListParseError(raw=raw, reason="Reply contained no topics")
	try:
		validated = [_validate_item(i, item) for i, item in enumerate(items)]
	except ValueError as e:
		return TopicListParseError(raw=raw, reason=str(e))
	return TopicListOk(items=validated)


class TopicExtractionService:
	def __init__(
		self,
		client: Optional[CompletionClient],
		*,
		model: Optional[str] = None,
		strict_count: Optional[bool] = None,
		prefix_chars: Optional[int] = None,
	) -> None:
		self.client = client
		self.model = model or settings.topic_model
		self.strict_count = settings.strict_topic_count if strict_count is None else strict_count
		self.prefix_chars = prefix_chars or settings.topic_prefix_chars

	async def derive_topics(self, text: str) -> List[Topic]:
		if not text or not text.strip():
			raise EmptyExtraction()
		if self.client is None:
			raise ServiceNotConfigured("CLAUDE_API_KEY is not configured")
		prompt = build_topic_prompt(text, strict=self.strict_count, prefix_chars=self.prefix_chars)
		raw = await self.client.complete(prompt, model=self.model)
		result = parse_topic_list(raw)
		if isinstance(result, TopicListParseError):
			logger.warning("Malformed topic reply (%s): %.500r", result.reason, result.raw)
			raise MalformedTopicResponse(result.raw, result.reason)
		count = len(result.items)
		low, high = (STRICT_TOPICS, STRICT_TOPICS) if self.strict_count else (MIN_TOPICS, MAX_TOPICS)
		if not low <= count <= high:
			logger.warning("Completion returned %d topics, expected %d-%d", count, low, high)
		topics = [
			Topic(name=item["name"], description=item["description"], mastery=0, source_text=text)
			for item in result.items
		]
		return dedupe_topic_names(topics)
