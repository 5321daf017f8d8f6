from __future__ import annotations
import asyncio
import io
import logging
import mimetypes
from typing import Optional

from pydantic import BaseModel
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from .completion_client import CompletionClient, document_block, image_block, text_block
from .errors import EmptyExtraction, ServiceNotConfigured, UnreadableDocument, UnsupportedMediaType
from .settings import settings

logger = logging.getLogger(__name__)


TEXT_MEDIA_TYPE = "text/plain"
PDF_MEDIA_TYPE = "application/pdf"
IMAGE_MEDIA_TYPES = ("image/png", "image/jpeg", "image/gif", "image/webp")
SUPPORTED_MEDIA_TYPES = (TEXT_MEDIA_TYPE, PDF_MEDIA_TYPE) + IMAGE_MEDIA_TYPES

IMAGE_INSTRUCTION = "Extract all text from this image. Return ONLY the extracted text, nothing else."
PDF_INSTRUCTION = "Extract all text from this PDF. Return ONLY the extracted text, nothing else."

_EXTENSION_TYPES = {
	".txt": TEXT_MEDIA_TYPE,
	".pdf": PDF_MEDIA_TYPE,
	".png": "image/png",
	".jpg": "image/jpeg",
	".jpeg": "image/jpeg",
	".gif": "image/gif",
	".webp": "image/webp",
}


def normalize_media_type(media_type: Optional[str], filename: Optional[str] = None) -> str:
	"""Lower-case the declared type and drop parameters; guess from the filename if undeclared."""
	kind = (media_type or "").split(";", 1)[0].strip().lower()
	if kind == "image/jpg":
		kind = "image/jpeg"
	if (not kind or kind == "application/octet-stream") and filename:
		lowered = filename.lower()
		for ext, guessed in _EXTENSION_TYPES.items():
			if lowered.endswith(ext):
				return guessed
		kind = mimetypes.guess_type(lowered)[0] or kind
	return kind


class Artifact(BaseModel):
	data: bytes
	media_type: Optional[str] = None
	filename: Optional[str] = None

	@property
	def kind(self) -> str:
		return normalize_media_type(self.media_type, self.filename)


def decode_text(data: bytes) -> str:
	"""UTF-8 with an optional BOM; undecodable bytes become U+FFFD."""
	try:
		return data.decode("utf-8-sig")
	except UnicodeDecodeError as e:
		logger.warning("Text upload is not valid UTF-8 (%s); replacing undecodable bytes", e.reason)
		return data.decode("utf-8-sig", errors="replace")


def read_pdf_text(data: bytes) -> str:
	"""Concatenate the text of every page, in page order, one page per line block."""
	try:
		reader = PdfReader(io.BytesIO(data))
		if reader.is_encrypted:
			raise UnreadableDocument("PDF is password protected")
		pages = [page.extract_text() or "" for page in reader.pages]
	except (PyPdfError, ValueError, OSError) as e:
		raise UnreadableDocument(f"PDF parsing error: {e}") from e
	return "\n".join(pages)


class ContentExtractor:
	"""Turns an uploaded artifact (text, PDF, image) into plain text."""

	def __init__(
		self,
		client: Optional[CompletionClient] = None,
		*,
		pdf_backend: Optional[str] = None,
		vision_model: Optional[str] = None,
	) -> None:
		self.client = client
		self.pdf_backend = (pdf_backend or settings.pdf_backend).lower()
		self.vision_model = vision_model or settings.vision_model

	async def extract(self, artifact: Artifact) -> str:
		kind = artifact.kind
		if kind not in SUPPORTED_MEDIA_TYPES:
			raise UnsupportedMediaType(kind or artifact.media_type)
		if kind == TEXT_MEDIA_TYPE:
			text = decode_text(artifact.data)
		elif kind == PDF_MEDIA_TYPE:
			text = await self._extract_pdf(artifact.data)
		else:
			text = await self._extract_image(artifact.data, kind)
		if not text or not text.strip():
			raise EmptyExtraction()
		logger.info("Extracted %d characters from %s (%s)", len(text), artifact.filename or "upload", kind)
		return text

	async def _extract_pdf(self, data: bytes) -> str:
		if self.pdf_backend == "completion":
			client = self._require_client()
			return await client.complete_blocks(
				[document_block(data, PDF_MEDIA_TYPE), text_block(PDF_INSTRUCTION)],
				model=self.vision_model,
				max_tokens=settings.document_max_tokens,
			)
		return await asyncio.to_thread(read_pdf_text, data)

	async def _extract_image(self, data: bytes, media_type: str) -> str:
		client = self._require_client()
		return await client.complete_blocks(
			[image_block(data, media_type), text_block(IMAGE_INSTRUCTION)],
			model=self.vision_model,
		)

	def _require_client(self) -> CompletionClient:
		if self.client is None:
			raise ServiceNotConfigured("CLAUDE_API_KEY is not configured")
		return self.client
