import base64
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

REQUIRED_SLOTS: tuple[str, ...] = (
    "front-photo",
    "side-photo",
    "back-photo",
    "front-video",
    "back-video",
)
OPTIONAL_SLOTS: tuple[str, ...] = ("inspiration-photo",)
ALL_SLOTS: tuple[str, ...] = REQUIRED_SLOTS + OPTIONAL_SLOTS

ORIGINAL_PHOTO_SLOT = "front-photo"
INSPIRATION_SLOT = "inspiration-photo"


# --- Domain inputs ---

class SubjectProfile(BaseModel):
    gender: Literal["female", "male", "other"]
    free_text_request: str | None = None


class DiagnosisRequest(BaseModel):
    attachment_refs: dict[str, str]
    subject_profile: SubjectProfile

    @model_validator(mode="after")
    def _check_slots(self) -> "DiagnosisRequest":
        unknown = [slot for slot in self.attachment_refs if slot not in ALL_SLOTS]
        if unknown:
            raise ValueError(f"Unknown attachment slots: {', '.join(unknown)}")
        missing = [slot for slot in REQUIRED_SLOTS if not self.attachment_refs.get(slot)]
        if missing:
            raise ValueError(f"Missing required attachments: {', '.join(missing)}")
        return self

    def ordered_refs(self) -> dict[str, str]:
        """Non-empty refs in fixed slot order, optional slots last."""
        return {
            slot: self.attachment_refs[slot]
            for slot in ALL_SLOTS
            if self.attachment_refs.get(slot)
        }


# --- Binary payloads ---

@dataclass(frozen=True)
class Attachment:
    mime_type: str
    data: bytes


@dataclass(frozen=True)
class GeneratedImage:
    data: bytes
    mime_type: str = "image/png"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


# --- Multi-modal request ---

@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class BinaryPart:
    mime_type: str
    data: bytes


Part = TextPart | BinaryPart


@dataclass
class MultiModalRequest:
    parts: list[Part]
    system_instruction: str | None = None
    output_contract: dict | None = None
    response_modalities: list[str] | None = None
    safety_settings: list[dict] = field(default_factory=list)


# --- Gemini response shape ---

class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InlineData(_WireModel):
    mime_type: str | None = None
    data: str


class ResponsePart(_WireModel):
    text: str | None = None
    thought: bool | None = None
    inline_data: InlineData | None = None


class ResponseContent(_WireModel):
    role: str | None = None
    parts: list[ResponsePart] = []


class Candidate(_WireModel):
    content: ResponseContent | None = None
    finish_reason: str | None = None


class GenerateContentResponse(_WireModel):
    candidates: list[Candidate] = []


# --- Diagnosis result ---

class _ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FaceAnalysis(_ResultModel):
    nose: str
    mouth: str
    eyes: str
    eyebrows: str
    forehead: str


class SkeletonAnalysis(_ResultModel):
    neck_length: str
    face_shape: str
    body_line: str
    shoulder_line: str
    face_stereoscopy: str
    body_type_feature: str


class PersonalColorAnalysis(_ResultModel):
    base_color: str
    season: str
    brightness: str
    saturation: str
    eye_color: str


class HairConditionAnalysis(_ResultModel):
    quality: str
    curl_type: str
    damage_level: str
    volume: str
    current_level: str


class Analysis(_ResultModel):
    face: FaceAnalysis
    skeleton: SkeletonAnalysis
    personal_color: PersonalColorAnalysis
    hair_condition: HairConditionAnalysis


class HairstyleOption(_ResultModel):
    name: str
    description: str


class HaircolorOption(_ResultModel):
    name: str
    description: str
    recommended_level: str


class PaletteColor(_ResultModel):
    name: str
    hex: str


class MakeupProposal(_ResultModel):
    eyeshadow: str
    cheek: str
    lip: str


class FashionProposal(_ResultModel):
    recommended_styles: list[str]
    recommended_items: list[str]


class Proposal(_ResultModel):
    hairstyles: dict[str, HairstyleOption]
    haircolors: dict[str, HaircolorOption]
    best_colors: dict[str, PaletteColor]
    makeup: MakeupProposal
    fashion: FashionProposal
    comment: str


class DiagnosisResult(_ResultModel):
    analysis: Analysis
    proposal: Proposal


# --- HTTP surface ---

class SelectionRequest(BaseModel):
    style_key: str
    color_key: str
    tone_override: str | None = None


class GenerateImageRequest(BaseModel):
    customization: str | None = None


class RefinementRequest(BaseModel):
    instruction: str = Field(min_length=1)


class ImageResponse(BaseModel):
    status: str
    session_id: str
    state: str
    image_base64: str
    mime_type: str
    style_key: str | None = None
    color_key: str | None = None


class DiagnosisResponse(BaseModel):
    status: str
    session_id: str
    state: str
    diagnosis: DiagnosisResult


class SessionResponse(BaseModel):
    status: str
    session_id: str
    state: str
    attachments: list[str] = []
    style_key: str | None = None
    color_key: str | None = None
    has_diagnosis: bool = False
    has_image: bool = False


class ErrorResponse(BaseModel):
    status: str = "error"
    error: str
    category: str
    step: str | None = None
    retryable: bool = True


class HealthResponse(BaseModel):
    status: str
