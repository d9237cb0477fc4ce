"""Domain exception hierarchy for the module pipeline.

Services raise these instead of bare ``ValueError`` so that the global
exception handler in ``main.py`` can map them to the correct HTTP status
code, and so the pipeline can tell a timeout apart from a remote refusal
without string matching.
"""


class PipelineError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(PipelineError):
    """A credential or required setting is missing.  Never retried."""

    def __init__(self, message: str = "Service not configured"):
        super().__init__(message, status_code=500)


class NotFoundError(PipelineError):
    """Resource not found (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class BadRequestError(PipelineError):
    """Client sent an invalid request (400)."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, status_code=400)


class UnsafePathError(BadRequestError):
    """A generated file path is absolute or escapes the project root."""

    def __init__(self, path: str):
        super().__init__(f"Unsafe file path: {path!r}")
        self.path = path


class RemoteError(PipelineError):
    """A remote host answered with an error, or could not be reached.

    ``remote_status`` holds the HTTP status of the remote response, or
    ``None`` for network-level failures.
    """

    def __init__(self, message: str = "Remote service error", *, remote_status: int | None = None):
        super().__init__(message, status_code=502)
        self.remote_status = remote_status

    @property
    def transient(self) -> bool:
        return self.remote_status is None or self.remote_status in (429, 500, 502, 503, 504)


class ConflictError(RemoteError):
    """The remote resource already exists (repository or project name)."""

    def __init__(self, message: str = "Already exists"):
        super().__init__(message, remote_status=409)
        self.status_code = 409


class StageTimeoutError(PipelineError):
    """A stage exceeded its wall-clock ceiling.

    Remote side effects (a created repository, a triggered build) may
    outlive this error.
    """

    def __init__(self, stage: str, seconds: float, message: str | None = None):
        super().__init__(
            message or f"{stage} timed out after {seconds:g}s",
            status_code=504,
        )
        self.stage = stage
        self.seconds = seconds


class DeployTimeoutError(StageTimeoutError):
    """Build polling ran out without observing a terminal state."""

    def __init__(self, deployment_id: str, polls: int, seconds: float):
        super().__init__(
            "deploy",
            seconds,
            f"Deployment {deployment_id} did not reach a terminal state "
            f"after {polls} polls",
        )
        self.deployment_id = deployment_id
        self.polls = polls


class BuildFailedError(PipelineError):
    """The deployment host reported ERROR or CANCELED for a build."""

    def __init__(
        self,
        error_message: str,
        *,
        build_error: object = None,
        inspector_url: str | None = None,
        deployment_id: str | None = None,
    ):
        self.error_message = error_message
        self.build_error = build_error
        self.inspector_url = inspector_url
        self.deployment_id = deployment_id
        super().__init__(self._describe(), status_code=502)

    def _describe(self) -> str:
        parts = [f"Deployment failed: {self.error_message}"]
        if self.build_error:
            parts.append(f"Build error: {self.build_error}")
        if self.inspector_url:
            parts.append(f"Logs: {self.inspector_url}")
        return "\n".join(parts)


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string or validation error list.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
