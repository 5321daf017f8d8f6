from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..completion_client import CompletionClient
from ..deps import get_completion_client
from ..errors import ServiceNotConfigured
from .auth import Learner, get_current_user

router = APIRouter(prefix="/completion", tags=["completion"])


class GenerateRequest(BaseModel):
	prompt: str
	model: Optional[str] = None
	max_tokens: Optional[int] = None


@router.post("/generate")
async def generate(
	req: GenerateRequest,
	user: Learner = Depends(get_current_user),
	client: Optional[CompletionClient] = Depends(get_completion_client),
):
	if client is None:
		raise ServiceNotConfigured("CLAUDE_API_KEY is not configured")
	text = await client.complete(req.prompt, model=req.model, max_tokens=req.max_tokens)
	return {"text": text}
