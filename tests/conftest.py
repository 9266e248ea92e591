import base64
import json

import httpx
import pytest

from hairlab.attachments import AttachmentFetcher
from hairlab.config import Settings
from hairlab.gemini import GeminiClient
from hairlab.models import DiagnosisRequest

FRONT_PHOTO = b"front-photo-bytes"
GENERATED_1 = b"generated-image-1"
GENERATED_2 = b"generated-image-2"


def data_url(data: bytes, mime_type: str = "image/jpeg") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode()}"


def diagnosis_payload() -> dict:
    return {
        "analysis": {
            "face": {
                "nose": "high bridge",
                "mouth": "full lips",
                "eyes": "double eyelid",
                "eyebrows": "soft arch",
                "forehead": "broad",
            },
            "skeleton": {
                "neckLength": "long",
                "faceShape": "oval",
                "bodyLine": "straight",
                "shoulderLine": "average",
                "faceStereoscopy": "sculpted",
                "bodyTypeFeature": "upper-body weighted",
            },
            "personalColor": {
                "baseColor": "yellow base",
                "season": "autumn",
                "brightness": "medium",
                "saturation": "low",
                "eyeColor": "dark brown",
            },
            "hairCondition": {
                "quality": "fine",
                "curlType": "wavy",
                "damageLevel": "medium",
                "volume": "average",
                "currentLevel": "Tone 7 (Medium Brown)",
            },
        },
        "proposal": {
            "hairstyles": {
                "style1": {"name": "Layered mid", "description": "Soft layers at the collarbone"},
                "style2": {"name": "Short bob", "description": "Chin length with see-through bangs"},
            },
            "haircolors": {
                "color1": {
                    "name": "Lavender ash",
                    "description": "Cool ash with a violet tint&#x2F;no bleach",
                    "recommendedLevel": "Tone 11 (Bright Brown)",
                },
                "color2": {
                    "name": "Pink beige",
                    "description": "Warm beige &amp; soft pink",
                    "recommendedLevel": "Tone 13 (Light Gold)",
                },
            },
            "bestColors": {
                "c1": {"name": "Coral", "hex": "#FF7F50"},
                "c2": {"name": "Peach", "hex": "#FFDAB9"},
                "c3": {"name": "Olive", "hex": "#808000"},
                "c4": {"name": "Camel", "hex": "#C19A6B"},
            },
            "makeup": {"eyeshadow": "golden brown", "cheek": "peach", "lip": "coral red"},
            "fashion": {
                "recommendedStyles": ["I-line", "A-line"],
                "recommendedItems": ["V-neck knit", "tapered pants"],
            },
            "comment": "A warm, soft look suits you.",
        },
    }


def text_response(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def image_response(data: bytes, mime_type: str | None = "image/png") -> dict:
    inline = {"data": base64.b64encode(data).decode()}
    if mime_type:
        inline["mimeType"] = mime_type
    return {"candidates": [{"content": {"parts": [{"text": "Here you go"}, {"inlineData": inline}]}}]}


class FakeBackend:
    """Scripted Gemini endpoint. Each queued item is a dict (200 JSON) or an httpx.Response."""

    def __init__(self, *responses):
        self.queue = list(responses)
        self.requests: list[httpx.Request] = []

    def push(self, *responses) -> None:
        self.queue.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.queue:
            raise AssertionError("unexpected backend call")
        item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def settings() -> Settings:
    return Settings(gemini_api_key="test-key", retry_base_delay=0.0, retry_max_delay=0.0)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def gemini(settings, backend) -> GeminiClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
    return GeminiClient(settings, http_client=http_client)


@pytest.fixture
def fetcher() -> AttachmentFetcher:
    return AttachmentFetcher()


@pytest.fixture
def diagnosis_request() -> DiagnosisRequest:
    return DiagnosisRequest(
        attachment_refs={
            "front-photo": data_url(FRONT_PHOTO),
            "side-photo": data_url(b"side"),
            "back-photo": data_url(b"back", "image/png"),
            "front-video": data_url(b"front-video", "video/mp4"),
            "back-video": data_url(b"back-video", "video/quicktime"),
        },
        subject_profile={"gender": "female", "free_text_request": "I want something brighter"},
    )
