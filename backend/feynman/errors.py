"""Error taxonomy for the ingestion and evaluation pipeline.

Every error carries the HTTP status it is rendered with and a short machine
readable ``code``. ``extra()`` adds the fields a client needs to react (the raw
reply of a malformed response, the reason of a capture failure, ...).
"""

from __future__ import annotations
from typing import Any, Dict, Optional


class FeynmanError(Exception):
	status_code: int = 500
	code: str = "internal_error"

	def __init__(self, message: str) -> None:
		super().__init__(message)
		self.message = message

	def extra(self) -> Dict[str, Any]:
		return {}


class UnsupportedMediaType(FeynmanError):
	status_code = 415
	code = "unsupported_media_type"

	def __init__(self, media_type: Optional[str]) -> None:
		super().__init__(f"Unsupported file type: {media_type or 'unknown'}")
		self.media_type = media_type

	def extra(self) -> Dict[str, Any]:
		return {"media_type": self.media_type}


class EmptyExtraction(FeynmanError):
	status_code = 422
	code = "empty_extraction"

	def __init__(self, message: str = "No text could be extracted from the file") -> None:
		super().__init__(message)


class UnreadableDocument(FeynmanError):
	status_code = 422
	code = "unreadable_document"


class UpstreamServiceError(FeynmanError):
	"""The completion service answered with an error or could not be reached.

	``status`` is the upstream HTTP status (``None`` when no response arrived);
	``message`` is the upstream message, verbatim.
	"""
	status_code = 502
	code = "upstream_error"

	def __init__(self, status: Optional[int], message: str, *, timed_out: bool = False) -> None:
		super().__init__(message)
		self.status = status
		self.timed_out = timed_out
		if timed_out:
			self.status_code = 504

	def extra(self) -> Dict[str, Any]:
		return {"upstream_status": self.status}


class ServiceNotConfigured(FeynmanError):
	status_code = 503
	code = "service_not_configured"


class _MalformedResponse(FeynmanError):
	status_code = 502

	def __init__(self, raw: str, reason: str) -> None:
		super().__init__(reason)
		self.raw = raw

	def extra(self) -> Dict[str, Any]:
		return {"raw": self.raw}


class MalformedTopicResponse(_MalformedResponse):
	code = "malformed_topic_response"


class MalformedEvaluationResponse(_MalformedResponse):
	code = "malformed_evaluation_response"


class PersistenceError(FeynmanError):
	status_code = 500
	code = "persistence_error"


class CaptureError(FeynmanError):
	"""Speech recognition failed; ``reason`` is one of the ``CaptureError`` constants."""
	status_code = 422
	code = "capture_error"

	PERMISSION_DENIED = "permission-denied"
	NO_SPEECH = "no-speech"
	RECOGNITION_FAULT = "recognition-fault"

	_MESSAGES = {
		PERMISSION_DENIED: "Microphone access denied. Please allow microphone access and try again.",
		NO_SPEECH: "No speech detected. Please try speaking again.",
		RECOGNITION_FAULT: "Speech recognition failed.",
	}

	def __init__(self, reason: str, detail: Optional[str] = None) -> None:
		if reason not in self._MESSAGES:
			reason = self.RECOGNITION_FAULT
		message = self._MESSAGES[reason]
		if detail:
			message = f"{message} ({detail})"
		super().__init__(message)
		self.reason = reason

	def extra(self) -> Dict[str, Any]:
		return {"reason": self.reason}


class IllegalStateTransition(FeynmanError):
	status_code = 409
	code = "illegal_state_transition"

	def __init__(self, action: str, state: str) -> None:
		super().__init__(f"Cannot {action} while {state}")
		self.action = action
		self.state = state

	def extra(self) -> Dict[str, Any]:
		return {"state": self.state}


class EvaluationInProgress(FeynmanError):
	status_code = 409
	code = "evaluation_in_progress"

	def __init__(self, topic: str) -> None:
		super().__init__(f"An evaluation for '{topic}' is already in progress")
		self.topic = topic

	def extra(self) -> Dict[str, Any]:
		return {"topic": self.topic}


class TopicNotFound(FeynmanError):
	status_code = 404
	code = "topic_not_found"

	def __init__(self, topic: str) -> None:
		super().__init__(f"Unknown topic: {topic}")
		self.topic = topic

	def extra(self) -> Dict[str, Any]:
		return {"topic": self.topic}


class DuplicateTopicName(FeynmanError):
	status_code = 400
	code = "duplicate_topic_name"

	def __init__(self, topic: str) -> None:
		super().__init__(f"Duplicate topic name: {topic}")
		self.topic = topic

	def extra(self) -> Dict[str, Any]:
		return {"topic": self.topic}


class EmptyTranscript(FeynmanError):
	status_code = 400
	code = "empty_transcript"

	def __init__(self) -> None:
		super().__init__("Transcript is empty")
