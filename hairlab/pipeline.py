"""Session management and orchestration: diagnose → select → generate → refine loop."""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from hairlab.attachments import AttachmentFetcher
from hairlab.errors import HairlabError, StepFailed, WorkflowStateError
from hairlab.extract import extract_diagnosis, extract_image
from hairlab.gemini import IMAGE_SAFETY_SETTINGS, GeminiClient
from hairlab.models import (
    INSPIRATION_SLOT,
    OPTIONAL_SLOTS,
    ORIGINAL_PHOTO_SLOT,
    REQUIRED_SLOTS,
    Attachment,
    BinaryPart,
    DiagnosisRequest,
    DiagnosisResult,
    GeneratedImage,
    MultiModalRequest,
    TextPart,
)
from hairlab.prompts import (
    BRIGHTNESS_LEVELS,
    build_color_switch_instruction,
    build_diagnosis_prompt,
    build_generation_prompt,
    build_refinement_prompt,
)

logger = logging.getLogger(__name__)

USER_REQUEST_KEY = "user_request"
KEEP_STYLE_KEY = "keep_style"
KEEP_COLOR_KEY = "keep_color"
SWITCHABLE_COLORS = ("color1", "color2")


class WorkflowState(str, enum.Enum):
    IDLE = "idle"
    ATTACHMENTS_READY = "attachments_ready"
    DIAGNOSED = "diagnosed"
    STYLE_SELECTED = "style_selected"
    IMAGE_GENERATED = "image_generated"
    REFINING = "refining"


@dataclass(frozen=True)
class Selection:
    style_key: str
    color_key: str
    tone_override: str | None = None


@dataclass
class SessionState:
    request: DiagnosisRequest
    state: WorkflowState = WorkflowState.IDLE
    attachments: dict[str, Attachment] = field(default_factory=dict)
    diagnosis: DiagnosisResult | None = None
    selection: Selection | None = None
    # Color key behind the current image; moves on each successful variant switch
    color_key: str | None = None
    image: GeneratedImage | None = None


class StylingSession:
    """One user's workflow. Each transition is a single awaitable step.

    A failed step leaves the state exactly as it was before the step began and
    raises StepFailed wrapping the underlying error.
    """

    def __init__(
        self,
        request: DiagnosisRequest,
        gemini: GeminiClient,
        fetcher: AttachmentFetcher,
        session_id: str | None = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.created_at = datetime.now(timezone.utc)
        self._gemini = gemini
        self._fetcher = fetcher
        self._state = SessionState(request=request)
        self._busy = False

    # --- Read-only views ---

    @property
    def state(self) -> WorkflowState:
        return self._state.state

    @property
    def diagnosis(self) -> DiagnosisResult | None:
        return self._state.diagnosis

    @property
    def selection(self) -> Selection | None:
        return self._state.selection

    @property
    def color_key(self) -> str | None:
        return self._state.color_key

    @property
    def image(self) -> GeneratedImage | None:
        return self._state.image

    @property
    def attachments(self) -> dict[str, Attachment]:
        return dict(self._state.attachments)

    def snapshot(self) -> dict:
        s = self._state
        return {
            "session_id": self.session_id,
            "state": s.state.value,
            "attachments": list(s.attachments),
            "style_key": s.selection.style_key if s.selection else None,
            "color_key": s.color_key or (s.selection.color_key if s.selection else None),
            "has_diagnosis": s.diagnosis is not None,
            "has_image": s.image is not None,
        }

    # --- Step plumbing ---

    def _require(self, step: str, *allowed: WorkflowState) -> None:
        if self._busy:
            raise WorkflowStateError(f"Cannot {step}: another step is still running")
        if self._state.state not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise WorkflowStateError(
                f"Cannot {step} in state '{self._state.state.value}' (expected one of: {expected})"
            )

    async def _run_step(self, step: str, coro):
        self._busy = True
        try:
            return await coro
        except HairlabError as e:
            logger.error("[%s] Session %s failed: %s", step, self.session_id, e)
            raise StepFailed(step, e) from e
        finally:
            self._busy = False

    async def _call_image_model(self, request: MultiModalRequest) -> GeneratedImage:
        response = await self._gemini.call(self._gemini.settings.image_model, request)
        return extract_image(response)

    # --- Transitions ---

    async def prepare_attachments(self) -> dict[str, Attachment]:
        """IDLE → ATTACHMENTS_READY: resolve every ref, all-or-nothing for required slots."""
        self._require("prepare attachments", WorkflowState.IDLE)
        refs = self._state.request.ordered_refs()
        logger.info("[attachments] Session %s: fetching %d file(s)", self.session_id, len(refs))

        attachments = await self._run_step(
            "attachments",
            self._fetcher.fetch_all(refs, REQUIRED_SLOTS, OPTIONAL_SLOTS),
        )

        self._state.attachments = attachments
        self._state.state = WorkflowState.ATTACHMENTS_READY
        return dict(attachments)

    async def diagnose(self) -> DiagnosisResult:
        """ATTACHMENTS_READY (or later) → DIAGNOSED. Re-diagnosis drops selection and image."""
        self._require(
            "diagnose",
            WorkflowState.ATTACHMENTS_READY,
            WorkflowState.DIAGNOSED,
            WorkflowState.STYLE_SELECTED,
            WorkflowState.IMAGE_GENERATED,
        )
        profile = self._state.request.subject_profile
        attachments = self._state.attachments
        has_inspiration = INSPIRATION_SLOT in attachments
        prompt = build_diagnosis_prompt(profile.gender, profile.free_text_request, has_inspiration)

        parts = [TextPart(prompt.instruction_text)]
        for slot in REQUIRED_SLOTS + OPTIONAL_SLOTS:
            if slot in attachments:
                parts.append(BinaryPart(attachments[slot].mime_type, attachments[slot].data))
        request = MultiModalRequest(
            parts=parts,
            system_instruction=prompt.system_instruction,
            output_contract=prompt.output_contract,
        )

        logger.info("[diagnose] Session %s: requesting diagnosis", self.session_id)

        async def _diagnose() -> DiagnosisResult:
            response = await self._gemini.call(self._gemini.settings.diagnosis_model, request)
            return extract_diagnosis(response)

        result = await self._run_step("diagnose", _diagnose())

        self._state.diagnosis = result
        self._state.selection = None
        self._state.color_key = None
        self._state.image = None
        self._state.state = WorkflowState.DIAGNOSED
        return result

    def select(self, style_key: str, color_key: str, tone_override: str | None = None) -> Selection:
        """DIAGNOSED (or later) → STYLE_SELECTED."""
        self._require(
            "select a style",
            WorkflowState.DIAGNOSED,
            WorkflowState.STYLE_SELECTED,
            WorkflowState.IMAGE_GENERATED,
        )
        if not style_key or not color_key:
            raise WorkflowStateError("Both a hairstyle and a hair color must be selected")

        proposal = self._state.diagnosis.proposal
        has_inspiration = INSPIRATION_SLOT in self._state.attachments

        if style_key not in proposal.hairstyles and style_key not in (USER_REQUEST_KEY, KEEP_STYLE_KEY):
            raise WorkflowStateError(f"Unknown hairstyle: {style_key}")
        if color_key not in proposal.haircolors and color_key not in (USER_REQUEST_KEY, KEEP_COLOR_KEY):
            raise WorkflowStateError(f"Unknown hair color: {color_key}")
        if USER_REQUEST_KEY in (style_key, color_key) and not has_inspiration:
            raise WorkflowStateError("Copying the desired style requires an inspiration photo")
        if tone_override is not None and tone_override not in BRIGHTNESS_LEVELS:
            raise WorkflowStateError(f"Unknown brightness level: {tone_override}")

        selection = Selection(style_key, color_key, tone_override)
        self._state.selection = selection
        self._state.color_key = None
        self._state.image = None
        self._state.state = WorkflowState.STYLE_SELECTED
        return selection

    async def generate_image(self, customization: str | None = None) -> GeneratedImage:
        """STYLE_SELECTED → IMAGE_GENERATED, editing the original front photo."""
        self._require("generate an image", WorkflowState.STYLE_SELECTED, WorkflowState.IMAGE_GENERATED)
        selection = self._state.selection
        if selection is None:
            raise WorkflowStateError("Select a hairstyle and a hair color first")

        proposal = self._state.diagnosis.proposal
        attachments = self._state.attachments
        inspiration = attachments.get(INSPIRATION_SLOT)

        prompt = build_generation_prompt(
            current_level=self._state.diagnosis.analysis.hair_condition.current_level,
            hairstyle=proposal.hairstyles.get(selection.style_key),
            haircolor=proposal.haircolors.get(selection.color_key),
            tone_override=selection.tone_override,
            customization=customization,
            has_inspiration=inspiration is not None,
            user_style=selection.style_key == USER_REQUEST_KEY,
            user_color=selection.color_key == USER_REQUEST_KEY,
            keep_style=selection.style_key == KEEP_STYLE_KEY,
            keep_color=selection.color_key == KEEP_COLOR_KEY,
        )

        original = attachments[ORIGINAL_PHOTO_SLOT]
        parts = [TextPart(prompt.instruction_text), BinaryPart(original.mime_type, original.data)]
        if inspiration is not None:
            parts.append(BinaryPart(inspiration.mime_type, inspiration.data))
        request = MultiModalRequest(
            parts=parts,
            response_modalities=["IMAGE"],
            safety_settings=IMAGE_SAFETY_SETTINGS,
        )

        logger.info(
            "[generate] Session %s: style=%s color=%s",
            self.session_id, selection.style_key, selection.color_key,
        )
        image = await self._run_step("generate", self._call_image_model(request))

        self._state.image = image
        self._state.color_key = selection.color_key
        self._state.state = WorkflowState.IMAGE_GENERATED
        return image

    async def refine(self, instruction: str) -> GeneratedImage:
        """IMAGE_GENERATED → REFINING → IMAGE_GENERATED on the current generated image."""
        self._require("refine the image", WorkflowState.IMAGE_GENERATED)
        if not instruction or not instruction.strip():
            raise WorkflowStateError("Describe the change to apply")
        return await self._refine("refine", instruction)

    async def switch_color(self) -> GeneratedImage:
        """Reapply the other proposed hair color to the current image (repeatable toggle)."""
        self._require("switch the hair color", WorkflowState.IMAGE_GENERATED)
        current = self._state.color_key
        if current not in SWITCHABLE_COLORS:
            raise WorkflowStateError("Only a proposed hair color can be switched to its alternative")

        target = SWITCHABLE_COLORS[1 - SWITCHABLE_COLORS.index(current)]
        haircolor = self._state.diagnosis.proposal.haircolors.get(target)
        if haircolor is None:
            raise WorkflowStateError(f"No alternative hair color '{target}' in the proposal")

        image = await self._refine("switch_color", build_color_switch_instruction(haircolor))
        self._state.color_key = target
        return image

    async def _refine(self, step: str, instruction: str) -> GeneratedImage:
        prompt = build_refinement_prompt(instruction)
        base = self._state.image
        request = MultiModalRequest(
            parts=[TextPart(prompt.instruction_text), BinaryPart(base.mime_type, base.data)],
            response_modalities=["IMAGE"],
            safety_settings=IMAGE_SAFETY_SETTINGS,
        )

        logger.info("[%s] Session %s: %s", step, self.session_id, instruction[:80])
        self._state.state = WorkflowState.REFINING
        try:
            image = await self._run_step(step, self._call_image_model(request))
        finally:
            self._state.state = WorkflowState.IMAGE_GENERATED

        self._state.image = image
        return image


class SessionRegistry:
    """In-memory sessions for the HTTP layer, expired after a TTL."""

    def __init__(self, ttl_seconds: int):
        self._ttl_seconds = ttl_seconds
        self._sessions: dict[str, StylingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: StylingSession) -> StylingSession:
        self._cleanup_expired()
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> StylingSession | None:
        self._cleanup_expired()
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def _cleanup_expired(self) -> None:
        """Remove sessions older than TTL."""
        now = datetime.now(timezone.utc)
        expired = [
            sid for sid, s in self._sessions.items()
            if (now - s.created_at).total_seconds() > self._ttl_seconds
        ]
        for sid in expired:
            del self._sessions[sid]
