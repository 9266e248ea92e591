from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hairlab.attachments import AttachmentFetcher
from hairlab.config import Settings, configure_logging
from hairlab.errors import StepFailed, WorkflowStateError
from hairlab.gemini import GeminiClient
from hairlab.models import (
    DiagnosisRequest, DiagnosisResponse, ErrorResponse,
    GenerateImageRequest, HealthResponse, ImageResponse,
    RefinementRequest, SelectionRequest, SessionResponse,
)
from hairlab.pipeline import SessionRegistry, StylingSession


class SessionNotFound(Exception):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found or expired")


def create_app(
    settings: Settings | None = None,
    gemini: GeminiClient | None = None,
    fetcher: AttachmentFetcher | None = None,
) -> FastAPI:
    """Build the app. Dependencies left out are created from the environment at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or Settings.from_env()
        configure_logging(resolved)
        client = gemini or GeminiClient(resolved)
        app.state.settings = resolved
        app.state.gemini = client
        app.state.fetcher = fetcher or AttachmentFetcher(timeout=resolved.fetch_timeout_seconds)
        app.state.sessions = SessionRegistry(resolved.session_ttl_seconds)
        yield
        if gemini is None:
            await client.aclose()

    app = FastAPI(title="hairlab", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionNotFound)
    async def _not_found(request: Request, exc: SessionNotFound) -> JSONResponse:
        body = ErrorResponse(error=str(exc), category="not_found", retryable=False)
        return JSONResponse(status_code=404, content=body.model_dump())

    @app.exception_handler(WorkflowStateError)
    async def _precondition(request: Request, exc: WorkflowStateError) -> JSONResponse:
        body = ErrorResponse(error=exc.message, category=exc.category, retryable=False)
        return JSONResponse(status_code=409, content=body.model_dump())

    @app.exception_handler(StepFailed)
    async def _step_failed(request: Request, exc: StepFailed) -> JSONResponse:
        body = ErrorResponse(
            error=f"{exc.user_message} ({exc.cause.message})",
            category=exc.category,
            step=exc.step,
            retryable=exc.retryable,
        )
        return JSONResponse(status_code=502, content=body.model_dump())

    def _session(request: Request, session_id: str) -> StylingSession:
        session = request.app.state.sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _image_response(session: StylingSession) -> ImageResponse:
        snapshot = session.snapshot()
        return ImageResponse(
            status="success",
            session_id=session.session_id,
            state=snapshot["state"],
            image_base64=session.image.to_base64(),
            mime_type=session.image.mime_type,
            style_key=snapshot["style_key"],
            color_key=snapshot["color_key"],
        )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/sessions", response_model=SessionResponse)
    async def create_session(payload: DiagnosisRequest, request: Request) -> SessionResponse:
        session = StylingSession(payload, request.app.state.gemini, request.app.state.fetcher)
        await session.prepare_attachments()
        request.app.state.sessions.add(session)
        return SessionResponse(status="success", **session.snapshot())

    @app.get("/sessions/{session_id}", response_model=SessionResponse)
    async def get_session(session_id: str, request: Request) -> SessionResponse:
        return SessionResponse(status="success", **_session(request, session_id).snapshot())

    @app.delete("/sessions/{session_id}", response_model=SessionResponse)
    async def end_session(session_id: str, request: Request) -> SessionResponse:
        session = _session(request, session_id)
        request.app.state.sessions.discard(session_id)
        return SessionResponse(status="ended", **session.snapshot())

    @app.post("/sessions/{session_id}/diagnosis", response_model=DiagnosisResponse)
    async def diagnose(session_id: str, request: Request) -> DiagnosisResponse:
        session = _session(request, session_id)
        result = await session.diagnose()
        return DiagnosisResponse(
            status="success",
            session_id=session.session_id,
            state=session.state.value,
            diagnosis=result,
        )

    @app.post("/sessions/{session_id}/selection", response_model=SessionResponse)
    async def select(session_id: str, payload: SelectionRequest, request: Request) -> SessionResponse:
        session = _session(request, session_id)
        session.select(payload.style_key, payload.color_key, payload.tone_override)
        return SessionResponse(status="success", **session.snapshot())

    @app.post("/sessions/{session_id}/image", response_model=ImageResponse)
    async def generate_image(
        session_id: str,
        request: Request,
        payload: GenerateImageRequest | None = None,
    ) -> ImageResponse:
        session = _session(request, session_id)
        await session.generate_image(payload.customization if payload else None)
        return _image_response(session)

    @app.post("/sessions/{session_id}/refinements", response_model=ImageResponse)
    async def refine(session_id: str, payload: RefinementRequest, request: Request) -> ImageResponse:
        session = _session(request, session_id)
        await session.refine(payload.instruction)
        return _image_response(session)

    @app.post("/sessions/{session_id}/color-switch", response_model=ImageResponse)
    async def switch_color(session_id: str, request: Request) -> ImageResponse:
        session = _session(request, session_id)
        await session.switch_color()
        return _image_response(session)

    return app


app = create_app()
