"""Recovery of structured data from free-text completion replies.

The completion service is asked for bare JSON but regularly wraps it in code
fences or surrounds it with prose. Nothing here talks to the network: these
helpers only reinterpret text that has already been received.
"""

from __future__ import annotations
import json
import re
from typing import Any, Optional, Tuple


_LEADING_FENCE = re.compile(r"^\s*```[A-Za-z0-9_+.-]*[ \t]*(?:\r?\n)?")
_TRAILING_FENCE = re.compile(r"(?:\r?\n)?[ \t]*```\s*$")


class ReplyParseError(ValueError):
	def __init__(self, raw: str, reason: str) -> None:
		super().__init__(reason)
		self.raw = raw
		self.reason = reason


def strip_fences(text: str) -> str:
	"""Remove leading/trailing ``` fences (with optional language tag).

	Repeats until no fence is left, so stripping is idempotent. Text without
	fences is returned unchanged.
	"""
	current = text
	while True:
		stripped = _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", current, count=1), count=1)
		if stripped == current:
			return current
		current = stripped


def _loads(candidate: str, expected: type) -> Tuple[bool, Any]:
	try:
		value = json.loads(candidate)
	except ValueError:
		return False, None
	return isinstance(value, expected), value


def _span(text: str, opener: str, closer: str) -> Optional[str]:
	first = text.find(opener)
	last = text.rfind(closer)
	if first != -1 and last != -1 and last > first:
		return text[first : last + 1]
	return None


def _recover(raw: str, expected: type, opener: str, closer: str, label: str) -> Any:
	cleaned = strip_fences(raw or "").strip()
	if not cleaned:
		raise ReplyParseError(raw, "Reply was empty")
	ok, value = _loads(cleaned, expected)
	if ok:
		return value
	candidate = _span(cleaned, opener, closer)
	if candidate is not None:
		ok, value = _loads(candidate, expected)
		if ok:
			return value
	raise ReplyParseError(raw, f"Reply did not contain a JSON {label}")


def extract_json_array(raw: str) -> list:
	"""Parse a JSON array out of ``raw``, falling back to the first-``[``/last-``]`` span."""
	return _recover(raw, list, "[", "]", "array")


def extract_json_object(raw: str) -> dict:
	"""Parse a JSON object out of ``raw``, falling back to the first-``{``/last-``}`` span."""
	return _recover(raw, dict, "{", "}", "object")
