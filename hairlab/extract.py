"""Pull payloads out of Gemini responses, validate and sanitize them."""

import base64
import binascii
import json
import logging
from typing import Callable, Union

import pydantic

from hairlab.errors import ExtractionError, MalformedPayloadError, ValidationError
from hairlab.models import Candidate, DiagnosisResult, GenerateContentResponse, GeneratedImage
from hairlab.prompts import DIAGNOSIS_SCHEMA, required_paths

logger = logging.getLogger(__name__)

JSONValue = Union[str, int, float, bool, None, list["JSONValue"], dict[str, "JSONValue"]]

DEFAULT_IMAGE_MIME = "image/png"

HTML_ENTITIES: tuple[tuple[str, str], ...] = (
    ("&#x2F;", "/"),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)


# --- Sanitizing ---

def decode_entities(text: str) -> str:
    """Decode the entities models like to emit, until nothing changes.

    Running to a fixed point keeps ``decode_entities`` idempotent even for
    double-encoded input such as ``&amp;#x2F;``.
    """
    while True:
        decoded = text
        for entity, char in HTML_ENTITIES:
            decoded = decoded.replace(entity, char)
        if decoded == text:
            return decoded
        text = decoded


def map_strings(value: JSONValue, fn: Callable[[str], str]) -> JSONValue:
    """Apply ``fn`` to every string in a JSON value, depth-first."""
    if isinstance(value, str):
        return fn(value)
    if isinstance(value, list):
        return [map_strings(item, fn) for item in value]
    if isinstance(value, dict):
        return {key: map_strings(item, fn) for key, item in value.items()}
    return value


def sanitize(value: JSONValue) -> JSONValue:
    return map_strings(value, decode_entities)


# --- Extraction ---

def _first_candidate(response: GenerateContentResponse) -> Candidate:
    if not response.candidates:
        raise ExtractionError("AI response contained no candidates")
    return response.candidates[0]


def _no_payload(what: str, candidate: Candidate) -> ExtractionError:
    reason = f" (finish reason: {candidate.finish_reason})" if candidate.finish_reason else ""
    return ExtractionError(f"AI response contained no {what}{reason}")


def extract_text(response: GenerateContentResponse) -> str:
    candidate = _first_candidate(response)
    parts = candidate.content.parts if candidate.content else []
    for part in parts:
        if part.thought:
            continue
        if isinstance(part.text, str) and part.text.strip():
            return part.text
    raise _no_payload("JSON text", candidate)


def extract_image(response: GenerateContentResponse) -> GeneratedImage:
    candidate = _first_candidate(response)
    parts = candidate.content.parts if candidate.content else []
    image_part = next((p for p in parts if p.inline_data and p.inline_data.data), None)
    if image_part is None:
        raise _no_payload("image data", candidate)

    try:
        data = base64.b64decode(image_part.inline_data.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ExtractionError(f"AI image data is not valid base64: {e}") from e
    return GeneratedImage(data=data, mime_type=image_part.inline_data.mime_type or DEFAULT_IMAGE_MIME)


# --- JSON payloads ---

def parse_json_payload(text: str) -> dict:
    """Strip markdown code fences if present, then parse a JSON object."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPayloadError(f"AI returned invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedPayloadError(f"AI returned JSON {type(payload).__name__}, expected an object")
    return payload


def find_missing(payload: dict, paths: list[str]) -> list[str]:
    missing: list[str] = []
    for path in paths:
        if any(path.startswith(f"{parent}.") for parent in missing):
            continue
        node = payload
        for key in path.split("."):
            if not isinstance(node, dict) or node.get(key) is None:
                node = None
                break
            node = node[key]
        if node is None:
            missing.append(path)
    return missing


def validate_required(payload: dict, schema: dict) -> None:
    missing = find_missing(payload, required_paths(schema))
    if missing:
        raise ValidationError(missing)


def extract_diagnosis(response: GenerateContentResponse) -> DiagnosisResult:
    payload = parse_json_payload(extract_text(response))
    try:
        validate_required(payload, DIAGNOSIS_SCHEMA)
    except ValidationError as e:
        logger.error("[diagnose] Parsed JSON missing required keys: %s", e.missing_paths)
        raise

    try:
        return DiagnosisResult.model_validate(sanitize(payload))
    except pydantic.ValidationError as e:
        # Present but of the wrong type, e.g. a number where a string belongs
        paths = [".".join(str(loc) for loc in err["loc"]) for err in e.errors()]
        raise ValidationError(paths) from e
