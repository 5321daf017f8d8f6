from __future__ import annotations
import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional, TypeVar

from pydantic import BaseModel

from .errors import CaptureError, IllegalStateTransition
from .extraction import Artifact, ContentExtractor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CaptureState(str, Enum):
	IDLE = "idle"
	LISTENING = "listening"
	PROCESSING = "processing"
	# Idle with a non-empty transcript, i.e. something to submit
	READY = "ready"


class SpeechEventKind(str, Enum):
	RESULT = "result"
	ERROR = "error"
	END = "end"


class SpeechEvent(BaseModel):
	kind: SpeechEventKind = SpeechEventKind.RESULT
	transcript: str = ""
	is_final: bool = False
	error: Optional[str] = None
	message: Optional[str] = None


# Browser SpeechRecognition error codes and their capture error reasons
_ERROR_REASONS = {
	"not-allowed": CaptureError.PERMISSION_DENIED,
	"service-not-allowed": CaptureError.PERMISSION_DENIED,
	"permission-denied": CaptureError.PERMISSION_DENIED,
	"no-speech": CaptureError.NO_SPEECH,
}


def error_reason(code: Optional[str]) -> str:
	return _ERROR_REASONS.get((code or "").strip().lower(), CaptureError.RECOGNITION_FAULT)


class CaptureSession:
	"""Accumulates one topic's explanation from speech and supplementary files.

	Speech and file ingestion are mutually exclusive: ``start`` and
	``ingest_file`` are only legal while idle. Only final speech results reach
	the transcript; interim text is kept for display and replaced on every
	event. Recognition errors drop back to idle without touching what has
	already been captured.
	"""

	def __init__(self, topic_name: str) -> None:
		self.topic_name = topic_name
		self._mode = CaptureState.IDLE
		self._segments: List[str] = []
		self.interim = ""
		self.last_error: Optional[CaptureError] = None
		self._pump: Optional[asyncio.Task] = None
		# Bumped whenever segments are dropped, so an in-flight submit knows its prefix is stale
		self._generation = 0

	@property
	def state(self) -> CaptureState:
		if self._mode is CaptureState.IDLE and self._segments:
			return CaptureState.READY
		return self._mode

	@property
	def transcript(self) -> str:
		return " ".join(self._segments)

	@property
	def segments(self) -> List[str]:
		return list(self._segments)

	def _require_idle(self, action: str) -> None:
		if self._mode is not CaptureState.IDLE:
			raise IllegalStateTransition(action, self._mode.value)

	def _append(self, text: str) -> None:
		text = (text or "").strip()
		if text:
			self._segments.append(text)

	def start(self, source: Optional[AsyncIterator[SpeechEvent]] = None) -> None:
		"""Begin listening.

		With ``source``, events are consumed by a background task (see
		``wait``); without it the caller pushes events through ``handle_event``.
		"""
		self._require_idle("start listening")
		self._mode = CaptureState.LISTENING
		self.interim = ""
		self.last_error = None
		if source is not None:
			self._pump = asyncio.get_running_loop().create_task(self._consume(source))

	def handle_event(self, event: SpeechEvent) -> None:
		if self._mode is not CaptureState.LISTENING:
			logger.debug("Ignoring %s event for %r while %s", event.kind.value, self.topic_name, self._mode.value)
			return
		if event.kind is SpeechEventKind.RESULT:
			if event.is_final:
				self._append(event.transcript)
				self.interim = ""
			else:
				self.interim = event.transcript
			return
		self._mode = CaptureState.IDLE
		self.interim = ""
		if event.kind is SpeechEventKind.ERROR:
			error = CaptureError(error_reason(event.error), event.message)
			self.last_error = error
			logger.info("Capture for %r stopped by recognition error: %s", self.topic_name, error.reason)
			raise error

	async def _consume(self, source: AsyncIterator[SpeechEvent]) -> None:
		try:
			async for event in source:
				if self._mode is not CaptureState.LISTENING:
					break
				try:
					self.handle_event(event)
				except CaptureError:
					break
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.exception("Speech source for %r failed", self.topic_name)
			self.last_error = CaptureError(CaptureError.RECOGNITION_FAULT, str(e))
		finally:
			# A consumer cancelled by stop() must not end a capture started after it
			if self._pump is asyncio.current_task() and self._mode is CaptureState.LISTENING:
				self._mode = CaptureState.IDLE
				self.interim = ""

	async def wait(self) -> None:
		"""Wait for the background speech consumer and re-raise its recognition error, if any."""
		pump = self._pump
		if pump is not None:
			await asyncio.wait({pump})
			if self._pump is pump:
				self._pump = None
		if self.last_error is not None:
			error, self.last_error = self.last_error, None
			raise error

	def stop(self) -> None:
		if self._mode is not CaptureState.LISTENING:
			raise IllegalStateTransition("stop listening", self.state.value)
		self._mode = CaptureState.IDLE
		self.interim = ""
		if self._pump is not None and not self._pump.done():
			self._pump.cancel()

	async def ingest_file(self, artifact: Artifact, extractor: ContentExtractor) -> str:
		"""Extract a supplementary file and append its text to the transcript."""
		self._require_idle("upload a file")
		self._mode = CaptureState.PROCESSING
		try:
			text = await extractor.extract(artifact)
		finally:
			self._mode = CaptureState.IDLE
		self._append(text)
		return text

	async def submit(self, handler: Callable[[str], Awaitable[T]]) -> Optional[T]:
		"""Hand the transcript to ``handler``; on success, drop what was submitted.

		Returns ``None`` without calling ``handler`` when there is nothing to
		submit. If ``handler`` raises, the transcript is left intact. Segments
		captured while ``handler`` runs are kept, and nothing is dropped if the
		transcript was cleared in the meantime.
		"""
		self._require_idle("submit")
		transcript = self.transcript
		if not transcript.strip():
			return None
		submitted = len(self._segments)
		generation = self._generation
		result = await handler(transcript)
		if self._generation == generation:
			del self._segments[:submitted]
			self._generation += 1
		else:
			logger.debug("Transcript for %r changed during submit; keeping current segments", self.topic_name)
		return result

	def clear(self) -> None:
		self._require_idle("clear the transcript")
		self._segments.clear()
		self.interim = ""
		self._generation += 1
