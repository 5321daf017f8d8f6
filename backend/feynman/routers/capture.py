"""
Capture Routes
==============

HTTP face of a topic's ``CaptureSession``. Speech can arrive two ways:

- the browser runs its own recognizer and posts its result/error/end events
  to ``/capture/{name}/events``;
- the browser posts a recorded clip to ``/capture/{name}/audio`` and the server
  recognizes it with Google Cloud Speech-to-Text.

Supplementary files go to ``/capture/{name}/file``. ``/submit`` evaluates the
transcript and updates the topic's mastery.
"""

from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from ..capture import CaptureSession, SpeechEvent
from ..deps import get_evaluator, get_extractor, get_speech_recognizer, get_study_session, get_topic_store
from ..evaluation import EvaluationService
from ..extraction import ContentExtractor
from ..session import StudySession
from ..speech import GoogleSpeechRecognizer
from ..topic_store import TopicStore
from .materials import read_artifact
from .topics import EvaluationResponse, evaluate_and_save


router = APIRouter(prefix="/capture", tags=["capture"])


class CaptureStatus(BaseModel):
	topic: str
	state: str
	transcript: str
	interim: str
	evaluating: bool


class EventsRequest(BaseModel):
	events: List[SpeechEvent]


class SubmitResponse(BaseModel):
	submitted: bool
	evaluation: Optional[EvaluationResponse] = None
	status: CaptureStatus


def _status(session: StudySession, capture: CaptureSession) -> CaptureStatus:
	return CaptureStatus(
		topic=capture.topic_name,
		state=capture.state.value,
		transcript=capture.transcript,
		interim=capture.interim,
		evaluating=session.is_evaluating(capture.topic_name),
	)


@router.get("/{name}", response_model=CaptureStatus)
async def capture_status(name: str, session: StudySession = Depends(get_study_session)):
	return _status(session, session.capture_for(name))


@router.post("/{name}/start", response_model=CaptureStatus)
async def start_capture(name: str, session: StudySession = Depends(get_study_session)):
	capture = session.capture_for(name)
	capture.start()
	return _status(session, capture)


@router.post("/{name}/events", response_model=CaptureStatus)
async def push_events(name: str, req: EventsRequest, session: StudySession = Depends(get_study_session)):
	capture = session.capture_for(name)
	for event in req.events:
		capture.handle_event(event)
	return _status(session, capture)


@router.post("/{name}/audio", response_model=CaptureStatus)
async def recognize_audio(
	name: str,
	file: UploadFile = File(...),
	session: StudySession = Depends(get_study_session),
	recognizer: GoogleSpeechRecognizer = Depends(get_speech_recognizer),
):
	capture = session.capture_for(name)
	audio = await file.read()
	capture.start(recognizer.events(audio))
	await capture.wait()
	return _status(session, capture)


@router.post("/{name}/stop", response_model=CaptureStatus)
async def stop_capture(name: str, session: StudySession = Depends(get_study_session)):
	capture = session.capture_for(name)
	capture.stop()
	return _status(session, capture)


@router.post("/{name}/file", response_model=CaptureStatus)
async def ingest_file(
	name: str,
	file: UploadFile = File(...),
	session: StudySession = Depends(get_study_session),
	extractor: ContentExtractor = Depends(get_extractor),
):
	capture = session.capture_for(name)
	artifact = await read_artifact(file)
	await capture.ingest_file(artifact, extractor)
	return _status(session, capture)


@router.post("/{name}/clear", response_model=CaptureStatus)
async def clear_capture(name: str, session: StudySession = Depends(get_study_session)):
	capture = session.capture_for(name)
	capture.clear()
	return _status(session, capture)


@router.post("/{name}/submit", response_model=SubmitResponse)
async def submit_capture(
	name: str,
	session: StudySession = Depends(get_study_session),
	store: TopicStore = Depends(get_topic_store),
	evaluator: EvaluationService = Depends(get_evaluator),
):
	capture = session.capture_for(name)

	async def _evaluate(transcript: str) -> EvaluationResponse:
		return await evaluate_and_save(session, store, evaluator, name, transcript)

	evaluation = await capture.submit(_evaluate)
	return SubmitResponse(
		submitted=evaluation is not None,
		evaluation=evaluation,
		status=_status(session, capture),
	)
