from __future__ import annotations
import base64
import logging
import time
import httpx
from typing import Any, Dict, List, Optional
from .errors import ServiceNotConfigured, UpstreamServiceError
from .settings import settings

logger = logging.getLogger(__name__)


def text_block(text: str) -> Dict[str, Any]:
	return {"type": "text", "text": text}


def image_block(data: bytes, media_type: str) -> Dict[str, Any]:
	return {
		"type": "image",
		"source": {"type": "base64", "media_type": media_type, "data": base64.b64encode(data).decode("ascii")},
	}


def document_block(data: bytes, media_type: str = "application/pdf") -> Dict[str, Any]:
	return {
		"type": "document",
		"source": {"type": "base64", "media_type": media_type, "data": base64.b64encode(data).decode("ascii")},
	}


class CompletionClient:
	"""Async client for the remote completion service (Messages API shape).

	One instance per request; call ``aclose()`` when done. ``transport`` lets
	tests plug in an ``httpx.MockTransport``.
	"""

	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.claude_api_key
		if not self.api_key:
			raise ServiceNotConfigured("CLAUDE_API_KEY is not configured")
		self.model = model or settings.topic_model
		root = (base_url or settings.completion_base_url).rstrip("/")
		self.url = f"{root}/v1/messages"
		self.timeout = timeout if timeout is not None else settings.completion_timeout_seconds
		self._headers = {
			"x-api-key": self.api_key,
			"anthropic-version": settings.completion_api_version,
			"Content-Type": "application/json",
		}
		self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

	async def complete(self, prompt: str, *, model: Optional[str] = None, max_tokens: Optional[int] = None) -> str:
		payload: Dict[str, Any] = {
			"model": model or self.model,
			"max_tokens": max_tokens or settings.completion_max_tokens,
			"messages": [{"role": "user", "content": [text_block(prompt)]}],
		}
		return await self._post_payload(payload)

	async def complete_blocks(
		self,
		blocks: List[Dict[str, Any]],
		*,
		role: str = "user",
		model: Optional[str] = None,
		max_tokens: Optional[int] = None,
	) -> str:
		payload: Dict[str, Any] = {
			"model": model or self.model,
			"max_tokens": max_tokens or settings.completion_max_tokens,
			"messages": [{"role": role, "content": blocks}],
		}
		return await self._post_payload(payload)

	async def _post_payload(self, payload: Dict[str, Any]) -> str:
		started = time.monotonic()
		try:
			r = await self._client.post(self.url, headers=self._headers, json=payload)
		except httpx.TimeoutException as err:
			logger.warning("Completion request to %s timed out after %.0fs", payload["model"], self.timeout)
			raise UpstreamServiceError(None, f"Completion request timed out after {self.timeout:g}s", timed_out=True) from err
		except httpx.RequestError as err:
			logger.warning("Completion request to %s failed: %s", payload["model"], err)
			raise UpstreamServiceError(None, f"Completion service unreachable: {err}") from err
		logger.debug("Completion %s answered %s in %.2fs", payload["model"], r.status_code, time.monotonic() - started)
		if r.is_error:
			message = _error_message(r)
			logger.warning("Completion service returned %s: %s", r.status_code, message)
			raise UpstreamServiceError(r.status_code, message)
		try:
			data = r.json()
			return data["content"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError):
			raise UpstreamServiceError(r.status_code, f"Unexpected completion response: {r.text}")

	async def aclose(self) -> None:
		await self._client.aclose()


def _error_message(r: httpx.Response) -> str:
	try:
		data = r.json()
	except ValueError:
		return r.text or f"HTTP {r.status_code}"
	error = data.get("error") if isinstance(data, dict) else None
	if isinstance(error, dict) and error.get("message"):
		return str(error["message"])
	if isinstance(error, str) and error:
		return error
	return "Unknown error"
