import base64
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import GENERATED_1, GENERATED_2, diagnosis_payload, image_response, text_response
from hairlab.main import create_app


@pytest.fixture
def client(settings, gemini, fetcher, diagnosis_request):
    app = create_app(settings=settings, gemini=gemini, fetcher=fetcher)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_id(client, diagnosis_request) -> str:
    resp = client.post("/sessions", json=diagnosis_request.model_dump())
    assert resp.status_code == 200
    return resp.json()["session_id"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_session_prepares_attachments(client, session_id):
    body = client.get(f"/sessions/{session_id}").json()

    assert body["state"] == "attachments_ready"
    assert body["attachments"] == ["front-photo", "side-photo", "back-photo", "front-video", "back-video"]


def test_create_session_rejects_missing_slots(client):
    resp = client.post(
        "/sessions",
        json={"attachment_refs": {"front-photo": "https://a/1.jpg"}, "subject_profile": {"gender": "female"}},
    )
    assert resp.status_code == 422


def test_full_workflow(client, backend, session_id):
    backend.push(text_response(json.dumps(diagnosis_payload())))
    resp = client.post(f"/sessions/{session_id}/diagnosis")
    assert resp.status_code == 200
    diagnosis = resp.json()["diagnosis"]
    assert diagnosis["proposal"]["haircolors"]["color1"]["recommendedLevel"] == "Tone 11 (Bright Brown)"
    assert diagnosis["proposal"]["haircolors"]["color1"]["description"] == "Cool ash with a violet tint/no bleach"

    resp = client.post(f"/sessions/{session_id}/selection", json={"style_key": "style1", "color_key": "color1"})
    assert resp.json()["state"] == "style_selected"

    backend.push(image_response(GENERATED_1))
    resp = client.post(f"/sessions/{session_id}/image", json={"customization": "keep my bangs"})
    assert resp.status_code == 200
    assert base64.b64decode(resp.json()["image_base64"]) == GENERATED_1
    assert "keep my bangs" in backend.body()["contents"][0]["parts"][0]["text"]

    backend.push(image_response(GENERATED_2, mime_type="image/jpeg"))
    resp = client.post(f"/sessions/{session_id}/refinements", json={"instruction": "shorter"})
    assert resp.json()["mime_type"] == "image/jpeg"

    backend.push(image_response(b"switched"))
    resp = client.post(f"/sessions/{session_id}/color-switch")
    assert resp.json()["color_key"] == "color2"

    resp = client.delete(f"/sessions/{session_id}")
    assert resp.json()["status"] == "ended"
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_precondition_maps_to_conflict(client, backend, session_id):
    resp = client.post(f"/sessions/{session_id}/image")

    assert resp.status_code == 409
    assert resp.json()["category"] == "precondition"
    assert backend.calls == 0


def test_step_failure_maps_to_bad_gateway(client, backend, session_id):
    backend.push(httpx.Response(503), httpx.Response(503), httpx.Response(503))

    resp = client.post(f"/sessions/{session_id}/diagnosis")

    assert resp.status_code == 502
    body = resp.json()
    assert body["step"] == "diagnose"
    assert body["category"] == "backend"
    assert body["retryable"] is True


def test_unknown_session(client):
    resp = client.post("/sessions/nope/diagnosis")
    assert resp.status_code == 404
    assert resp.json()["category"] == "not_found"
