import json
import uuid
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from feynman.deps import get_completion_client, get_speech_recognizer
from feynman.main import app
from feynman.speech import GoogleSpeechRecognizer


MATERIAL = (
	"Photosynthesis converts light into chemical energy. Chlorophyll in the chloroplasts absorbs "
	"red and blue light, and the Calvin cycle fixes carbon dioxide into sugar."
)
TOPICS_REPLY = "```json\n" + json.dumps(
	[
		{"name": "Photosynthesis", "description": "Light to chemical energy"},
		{"name": "Chlorophyll", "description": "Light-absorbing pigment"},
		{"name": "Calvin Cycle", "description": "Carbon fixation"},
	]
) + "\n```"


def evaluation_reply(score, followup="What happens in the dark reactions?"):
	return json.dumps({"score": score, "feedback": "Nice work", "followup": followup})


class SpeechClient:
	def __init__(self, *segments):
		self.segments = segments

	def recognize(self, config, audio):
		return SimpleNamespace(results=[SimpleNamespace(alternatives=[SimpleNamespace(transcript=s)]) for s in self.segments])


@pytest.fixture
def api(fake_completion):
	async def completion_override():
		client = fake_completion.client()
		try:
			yield client
		finally:
			await client.aclose()

	app.dependency_overrides[get_completion_client] = completion_override
	app.dependency_overrides[get_speech_recognizer] = lambda: GoogleSpeechRecognizer(
		client=SpeechClient("Chlorophyll absorbs", "red and blue light")
	)
	with TestClient(app) as client:
		yield client
	app.dependency_overrides.clear()


def register(client):
	username = f"learner-{uuid.uuid4().hex[:8]}"
	r = client.post("/auth/register", json={"username": username, "password": "photosynthesis"})
	assert r.status_code == 201
	return username, {"Authorization": f"Bearer {r.json()['access_token']}"}


def upload(client, headers, data=MATERIAL.encode("utf-8"), filename="notes.txt", media_type="text/plain"):
	return client.post("/materials", headers=headers, files={"file": (filename, data, media_type)})


def test_info(api):
	r = api.get("/info")
	assert r.status_code == 200
	assert r.json() == {"status": "ok", "completion_configured": True}


def test_login_and_me(api):
	username, _ = register(api)
	r = api.post("/auth/token", data={"username": username, "password": "photosynthesis"})
	assert r.status_code == 200
	me = api.get("/auth/me", headers={"Authorization": f"Bearer {r.json()['access_token']}"})
	assert me.json() == {"username": username}
	assert api.post("/auth/token", data={"username": username, "password": "wrong"}).status_code == 401
	assert api.post("/auth/register", json={"username": username, "password": "x"}).status_code == 409


def test_logout_revokes_token(api):
	_, headers = register(api)
	assert api.get("/auth/me", headers=headers).status_code == 200
	assert api.post("/auth/logout", headers=headers).status_code == 204
	assert api.get("/auth/me", headers=headers).status_code == 401


def test_topics_require_auth(api):
	assert api.get("/topics").status_code == 401


def test_study_flow(api, fake_completion):
	username, headers = register(api)

	fake_completion.queue(TOPICS_REPLY)
	r = upload(api, headers)
	assert r.status_code == 200
	body = r.json()
	assert body["characters"] == len(MATERIAL)
	assert body["saved"] is True
	assert [t["name"] for t in body["topics"]] == ["Photosynthesis", "Chlorophyll", "Calvin Cycle"]
	assert all(t["mastery"] == 0 for t in body["topics"])
	assert MATERIAL in fake_completion.prompt(0)

	r = api.post("/capture/Photosynthesis/start", headers=headers)
	assert r.json()["state"] == "listening"
	r = api.post(
		"/capture/Photosynthesis/events",
		headers=headers,
		json={
			"events": [
				{"kind": "result", "transcript": "Plants use", "is_final": False},
				{"kind": "result", "transcript": "Plants use sunlight to make sugar", "is_final": True},
			]
		},
	)
	assert r.json()["transcript"] == "Plants use sunlight to make sugar"
	assert r.json()["interim"] == ""

	r = api.post("/capture/Photosynthesis/submit", headers=headers)
	assert r.status_code == 409
	assert r.json()["error"] == "illegal_state_transition"
	assert api.get("/capture/Photosynthesis", headers=headers).json()["transcript"] == "Plants use sunlight to make sugar"

	assert api.post("/capture/Photosynthesis/stop", headers=headers).json()["state"] == "ready"

	fake_completion.queue(evaluation_reply(72))
	r = api.post("/capture/Photosynthesis/submit", headers=headers)
	assert r.status_code == 200
	body = r.json()
	assert body["submitted"] is True
	assert body["evaluation"]["result"]["score"] == 72
	assert body["evaluation"]["topic"]["mastery"] == 72
	assert body["evaluation"]["mastered"] is False
	assert body["status"]["transcript"] == ""
	assert body["status"]["state"] == "idle"
	prompt = fake_completion.prompt(1)
	assert "Plants use sunlight to make sugar" in prompt
	assert MATERIAL in prompt

	fake_completion.queue(evaluation_reply(30, "MASTERED"))
	r = api.post("/topics/Photosynthesis/evaluate", headers=headers, json={"transcript": "Something weaker"})
	assert r.json()["topic"]["mastery"] == 72
	assert r.json()["mastered"] is True

	# A fresh session is seeded from the store
	app.state.registry.drop(username)
	topics = api.get("/topics", headers=headers).json()["topics"]
	assert {t["name"]: t["mastery"] for t in topics} == {"Photosynthesis": 72, "Chlorophyll": 0, "Calvin Cycle": 0}

	r = api.delete("/topics", headers=headers)
	assert r.json() == {"success": True}
	app.state.registry.drop(username)
	assert api.get("/topics", headers=headers).json()["topics"] == []


def test_submit_with_empty_transcript_is_not_submitted(api):
	_, headers = register(api)
	api.post("/topics", headers=headers, json={"topics": [{"name": "Osmosis"}]})
	r = api.post("/capture/Osmosis/submit", headers=headers)
	assert r.status_code == 200
	assert r.json()["submitted"] is False
	assert r.json()["evaluation"] is None


def test_unsupported_upload_is_415(api, fake_completion):
	_, headers = register(api)
	r = upload(api, headers, data=b"PK\x03\x04", filename="notes.doc", media_type="application/msword")
	assert r.status_code == 415
	assert r.json()["error"] == "unsupported_media_type"
	assert fake_completion.requests == []


def test_malformed_topic_reply_keeps_previous_topics(api, fake_completion):
	_, headers = register(api)
	api.post("/topics", headers=headers, json={"topics": [{"name": "Existing", "mastery": 55}]})
	fake_completion.queue("Sorry, I can only list topics as prose.")
	r = upload(api, headers)
	assert r.status_code == 502
	assert r.json()["error"] == "malformed_topic_response"
	assert r.json()["raw"] == "Sorry, I can only list topics as prose."
	topics = api.get("/topics", headers=headers).json()["topics"]
	assert [(t["name"], t["mastery"]) for t in topics] == [("Existing", 55)]


def test_upstream_error_message_reaches_client(api, fake_completion):
	_, headers = register(api)
	fake_completion.queue(httpx.Response(529, json={"error": {"type": "overloaded_error", "message": "Overloaded"}}))
	r = upload(api, headers)
	assert r.status_code == 502
	assert r.json()["detail"] == "Overloaded"
	assert r.json()["upstream_status"] == 529


def test_topic_payload_validation(api):
	_, headers = register(api)
	r = api.post("/topics", headers=headers, json={"topics": [{"name": "A"}, {"name": "A"}]})
	assert r.status_code == 400
	assert r.json()["error"] == "duplicate_topic_name"
	r = api.post("/topics", headers=headers, json={"topics": [{"name": "A"}, {"name": "B"}]})
	assert r.json() == {"success": True, "count": 2}
	assert api.post("/capture/Missing/start", headers=headers).status_code == 404
	r = api.post("/topics/A/evaluate", headers=headers, json={"transcript": "   "})
	assert r.status_code == 400
	assert r.json()["error"] == "empty_transcript"


def test_recognition_error_event(api):
	_, headers = register(api)
	api.post("/topics", headers=headers, json={"topics": [{"name": "A"}]})
	api.post("/capture/A/start", headers=headers)
	r = api.post(
		"/capture/A/events",
		headers=headers,
		json={"events": [{"kind": "result", "transcript": "kept", "is_final": True}, {"kind": "error", "error": "not-allowed"}]},
	)
	assert r.status_code == 422
	assert r.json()["reason"] == "permission-denied"
	status = api.get("/capture/A", headers=headers).json()
	assert status["state"] == "ready"
	assert status["transcript"] == "kept"


def test_audio_and_file_capture(api):
	_, headers = register(api)
	api.post("/topics", headers=headers, json={"topics": [{"name": "Chlorophyll"}]})
	r = api.post("/capture/Chlorophyll/audio", headers=headers, files={"file": ("clip.webm", b"\x1aE\xdf\xa3", "audio/webm")})
	assert r.status_code == 200
	assert r.json()["transcript"] == "Chlorophyll absorbs red and blue light"
	r = api.post("/capture/Chlorophyll/file", headers=headers, files={"file": ("extra.txt", b"It looks green.", "text/plain")})
	assert r.json()["transcript"] == "Chlorophyll absorbs red and blue light It looks green."
	r = api.post("/capture/Chlorophyll/clear", headers=headers)
	assert r.json()["state"] == "idle"


def test_extract_only(api, fake_completion):
	_, headers = register(api)
	fake_completion.queue("Text from the photo")
	r = api.post("/materials/extract", headers=headers, files={"file": ("board.png", b"\x89PNG", "image/png")})
	assert r.json() == {"media_type": "image/png", "text": "Text from the photo"}


def test_generate(api, fake_completion):
	_, headers = register(api)
	fake_completion.queue("Hi there")
	r = api.post("/completion/generate", headers=headers, json={"prompt": "Say hi"})
	assert r.json() == {"text": "Hi there"}
