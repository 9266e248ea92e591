"""Error taxonomy shared by the fetcher, the Gemini client and the pipeline."""


class HairlabError(Exception):
    category = "internal"
    user_message = "Something went wrong. Please try again."
    retryable = True

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(HairlabError):
    category = "configuration"
    user_message = "The service is not configured correctly. Please contact support."
    retryable = False


class FetchError(HairlabError):
    category = "fetch"
    user_message = "One of your photos or videos could not be loaded. Please try again."

    def __init__(self, message: str, slot: str | None = None, status: int | None = None):
        super().__init__(message)
        self.slot = slot
        self.status = status


class BackendError(HairlabError):
    category = "backend"
    user_message = "The AI service is not responding right now. Please try again in a moment."

    def __init__(
        self,
        message: str,
        status: int | None = None,
        body: str | None = None,
        attempts: int = 1,
    ):
        super().__init__(message)
        self.status = status
        self.body = body
        self.attempts = attempts

    def __str__(self) -> str:
        detail = self.message
        if self.status is not None:
            detail = f"{detail} (status {self.status})"
        if self.attempts > 1:
            detail = f"{detail} after {self.attempts} attempts"
        return detail


class ExtractionError(HairlabError):
    category = "extraction"
    user_message = "The AI returned no usable result. Please try again."


class MalformedPayloadError(HairlabError):
    category = "malformed_payload"
    user_message = "The AI returned a result in an unexpected format. Please try again."


class ValidationError(HairlabError):
    category = "validation"
    user_message = "The AI diagnosis was incomplete. Please try again."

    def __init__(self, missing_paths: list[str]):
        super().__init__(f"Missing required fields: {', '.join(missing_paths)}")
        self.missing_paths = missing_paths


class WorkflowStateError(HairlabError):
    """A transition was requested from a state that does not allow it."""

    category = "precondition"
    user_message = "That step is not available yet."


class StepFailed(HairlabError):
    """A workflow step failed; wraps the underlying typed error."""

    def __init__(self, step: str, cause: HairlabError):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause
        self.category = cause.category
        self.user_message = cause.user_message
        self.retryable = cause.retryable
