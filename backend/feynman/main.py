from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .db import init_db
from .errors import FeynmanError
from .evaluation import MASTERY_POLICIES
from .session import SessionRegistry
from .settings import settings
from .topic_store import TopicStore
from .routers import auth
from .routers import capture
from .routers import completion
from .routers import materials
from .routers import topics

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.mastery_policy not in MASTERY_POLICIES:
		raise ValueError(f"MASTERY_POLICY must be one of {MASTERY_POLICIES}, got {settings.mastery_policy!r}")
	init_db()
	store = TopicStore()
	app.state.topic_store = store
	app.state.registry = SessionRegistry(store)
	if not settings.claude_api_key:
		logger.warning("CLAUDE_API_KEY is not set; extraction of images, topics and evaluation are unavailable")
	yield


app = FastAPI(title="Feynman Tutor API", lifespan=lifespan)
app.include_router(auth.router)
app.include_router(materials.router)
app.include_router(topics.router)
app.include_router(capture.router)
app.include_router(completion.router)


@app.exception_handler(FeynmanError)
async def feynman_error_handler(request: Request, exc: FeynmanError):
	return JSONResponse(
		status_code=exc.status_code,
		content={"detail": exc.message, "error": exc.code, **exc.extra()},
	)


@app.get("/info")
def root():
	return {"status": "ok", "completion_configured": bool(settings.claude_api_key)}
