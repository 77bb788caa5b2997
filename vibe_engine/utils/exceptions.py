from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Failure taxonomy surfaced on failed tasks and API error bodies."""

    API_KEY_MISSING = "API_KEY_MISSING"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK = "NETWORK"
    CONTENT_POLICY = "CONTENT_POLICY"
    TIMEOUT = "TIMEOUT"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    NO_PROVIDER_AVAILABLE = "NO_PROVIDER_AVAILABLE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    UNKNOWN = "UNKNOWN"


class VibeError(Exception):
    """Base exception for the orchestration engine."""

    kind: ErrorKind = ErrorKind.UNKNOWN


# ---------------------------------------------------------------------------
# Task graph
# ---------------------------------------------------------------------------


class TaskNotFoundError(VibeError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class BoardNotFoundError(VibeError):
    def __init__(self, board_id: str):
        self.board_id = board_id
        super().__init__(f"Board not found: {board_id}")


class InvalidBoardError(VibeError):
    pass


class CyclicDependencyError(InvalidBoardError):
    """Raised when a board's dependency relation is not a DAG."""


class InvalidTransitionError(VibeError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, task_id: str, old_status: str, new_status: str, detail: str = ""):
        self.task_id = task_id
        self.old_status = old_status
        self.new_status = new_status
        message = f"Illegal transition for task {task_id}: {old_status} -> {new_status}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ConcurrentTransitionError(InvalidTransitionError):
    """A second transition arrived for a task whose previous one is still applying."""


class StaleAttemptError(VibeError):
    def __init__(self, task_id: str, attempt: int, current_attempt: int):
        self.task_id = task_id
        self.attempt = attempt
        self.current_attempt = current_attempt
        super().__init__(
            f"Result for task {task_id} belongs to attempt {attempt}, "
            f"current attempt is {current_attempt}"
        )


# ---------------------------------------------------------------------------
# Providers and requests
# ---------------------------------------------------------------------------


class LLMError(VibeError):
    def __init__(self, provider: str, detail: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        self.provider = provider
        self.detail = detail
        self.kind = kind
        super().__init__(f"LLM error ({provider}): {detail}")


class ApiKeyMissingError(LLMError):
    def __init__(self, provider: str):
        super().__init__(
            provider,
            "API key is not configured. Set it in your settings or .env file.",
            ErrorKind.API_KEY_MISSING,
        )


class ModelLoadError(LLMError):
    def __init__(self, model_id: str, detail: str):
        self.model_id = model_id
        super().__init__("local", f"Failed to load model {model_id}: {detail}", ErrorKind.MODEL_UNAVAILABLE)


class NoProviderAvailableError(VibeError):
    kind = ErrorKind.NO_PROVIDER_AVAILABLE

    def __init__(self, requested: str, reasons: dict[str, str]):
        self.requested = requested
        self.reasons = reasons
        details = "; ".join(f"{pid}: {reason}" for pid, reason in reasons.items())
        super().__init__(
            f"No AI provider available (requested '{requested}'). "
            f"Check provider configuration: {details or 'no providers registered'}"
        )


class RequestTimeoutError(VibeError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, timeout: float, label: str | None = None):
        self.timeout = timeout
        self.label = label
        super().__init__(f"Request timed out after {timeout:g}s")


class RequestCancelledError(VibeError):
    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Request cancelled: {reason}")


class ActorDisabledError(VibeError):
    def __init__(self, actor_type: str):
        self.actor_type = actor_type
        super().__init__(f"Actor '{actor_type}' is disabled")
