import json
import os
import tempfile

# Settings are read at import time, so the environment must be in place first.
_TMP_DIR = tempfile.mkdtemp(prefix="feynman-tests-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_TMP_DIR, "test.db")
os.environ["CLAUDE_API_KEY"] = "test-key"
os.environ["JWT_SECRET_KEY"] = "test-secret"

import httpx
import pytest

from feynman.completion_client import CompletionClient


def reply(text: str) -> httpx.Response:
	return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})


class FakeCompletion:
	"""Scripted stand-in for the completion service behind an httpx.MockTransport.

	Each queued reply is a string (sent back as the reply text), an
	``httpx.Response``, an exception to raise, or a callable taking the request
	payload and returning one of those.
	"""

	def __init__(self) -> None:
		self.replies = []
		self.requests = []

	def queue(self, *replies) -> "FakeCompletion":
		self.replies.extend(replies)
		return self

	def handler(self, request: httpx.Request) -> httpx.Response:
		payload = json.loads(request.content)
		self.requests.append({"headers": dict(request.headers), "url": str(request.url), "payload": payload})
		if not self.replies:
			raise AssertionError("Unexpected completion request")
		item = self.replies.pop(0)
		if callable(item) and not isinstance(item, httpx.Response):
			item = item(payload)
		if isinstance(item, Exception):
			raise item
		if isinstance(item, httpx.Response):
			return item
		return reply(item)

	def client(self) -> CompletionClient:
		return CompletionClient(
			api_key="test-key",
			base_url="https://completion.test",
			transport=httpx.MockTransport(self.handler),
		)

	def prompt(self, index: int = -1) -> str:
		"""Text of the request's text blocks, in order."""
		content = self.requests[index]["payload"]["messages"][0]["content"]
		return "\n".join(block["text"] for block in content if block.get("type") == "text")


@pytest.fixture
def fake_completion():
	return FakeCompletion()
