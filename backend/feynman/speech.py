from __future__ import annotations
import asyncio
import logging
from typing import AsyncIterator, Optional

from google.cloud import speech_v1p1beta1 as speech
from google.api_core.exceptions import GoogleAPIError, PermissionDenied

from .capture import SpeechEvent, SpeechEventKind
from .errors import CaptureError
from .settings import settings

logger = logging.getLogger(__name__)


class GoogleSpeechRecognizer:
	"""Recognizes a recorded clip with Google Cloud Speech-to-Text.

	``events`` yields the same event stream a browser recognizer produces: one
	final result per recognized segment followed by an end event, or a single
	error event.
	"""

	def __init__(
		self,
		*,
		language_code: Optional[str] = None,
		encoding: Optional[str] = None,
		sample_rate_hertz: Optional[int] = None,
		client: Optional[speech.SpeechClient] = None,
	) -> None:
		self.language_code = language_code or settings.speech_language
		self.encoding = (encoding or settings.speech_encoding).upper()
		self.sample_rate_hertz = sample_rate_hertz or settings.speech_sample_rate_hertz
		self._client = client

	def _config(self) -> speech.RecognitionConfig:
		return speech.RecognitionConfig(
			encoding=speech.RecognitionConfig.AudioEncoding[self.encoding],
			sample_rate_hertz=self.sample_rate_hertz,
			language_code=self.language_code,
			model="default",
			enable_automatic_punctuation=True,
		)

	def _recognize(self, audio_content: bytes):
		if self._client is None:
			self._client = speech.SpeechClient()
		audio = speech.RecognitionAudio(content=audio_content)
		return self._client.recognize(config=self._config(), audio=audio)

	async def events(self, audio_content: bytes) -> AsyncIterator[SpeechEvent]:
		if not audio_content:
			yield _error(CaptureError.NO_SPEECH, "Empty audio payload received.")
			return
		try:
			response = await asyncio.to_thread(self._recognize, audio_content)
		except PermissionDenied as e:
			logger.warning("Speech-to-Text refused the request: %s", e)
			yield _error(CaptureError.PERMISSION_DENIED, str(e))
			return
		except GoogleAPIError as e:
			logger.warning("Speech-to-Text API error: %s", e)
			yield _error(CaptureError.RECOGNITION_FAULT, str(e))
			return
		except Exception as e:
			# Client construction fails without credentials
			logger.warning("Speech-to-Text unavailable: %s", e)
			yield _error(CaptureError.RECOGNITION_FAULT, f"Speech recognition unavailable: {e}")
			return
		segments = [r.alternatives[0].transcript for r in response.results if r.alternatives]
		segments = [s for s in segments if s.strip()]
		if not segments:
			yield _error(CaptureError.NO_SPEECH, "No speech recognized.")
			return
		for segment in segments:
			yield SpeechEvent(kind=SpeechEventKind.RESULT, transcript=segment, is_final=True)
		yield SpeechEvent(kind=SpeechEventKind.END)


def _error(reason: str, message: str) -> SpeechEvent:
	return SpeechEvent(kind=SpeechEventKind.ERROR, error=reason, message=message)
