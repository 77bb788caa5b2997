"""Deterministic failure classification onto the :class:`ErrorKind` taxonomy.

Typed engine errors carry their kind already.  Anything else raised by a
provider SDK or transport is classified by exception type first, then by
ordered message patterns; the first matching rule wins.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx

from vibe_engine.utils.exceptions import ErrorKind, VibeError

_API_KEY_PATTERNS: tuple[str, ...] = (
    "api key",
    "api_key",
    "invalid x-api-key",
    "unauthorized",
    "authentication",
    "401",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "429",
    "quota",
    "resource_exhausted",
)
_CONTENT_POLICY_PATTERNS: tuple[str, ...] = (
    "content policy",
    "content_policy",
    "moderation",
    "safety",
    "harmful",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "deadline exceeded",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "network",
    "connection",
    "unreachable",
    "could not resolve host",
    "name or service not known",
    "dns",
)
_MODEL_UNAVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "model is not available",
    "model unavailable",
    "no such model",
    "model not loaded",
)

_RULES: tuple[tuple[str, ErrorKind, tuple[str, ...]], ...] = (
    ("api_key", ErrorKind.API_KEY_MISSING, _API_KEY_PATTERNS),
    ("rate_limit", ErrorKind.RATE_LIMIT, _RATE_LIMIT_PATTERNS),
    ("content_policy", ErrorKind.CONTENT_POLICY, _CONTENT_POLICY_PATTERNS),
    ("timeout", ErrorKind.TIMEOUT, _TIMEOUT_PATTERNS),
    ("network", ErrorKind.NETWORK, _NETWORK_PATTERNS),
    ("model_unavailable", ErrorKind.MODEL_UNAVAILABLE, _MODEL_UNAVAILABLE_PATTERNS),
)


@dataclass(slots=True)
class ClassifiedError:
    """Normalized failure classification result."""

    kind: ErrorKind
    message: str
    matched_rule: str
    matched_pattern: str | None = None

    def task_error(self) -> str:
        """Render the message stored on a failed task."""
        return format_task_error(self.kind, self.message)


def classify_error(exc: BaseException) -> ClassifiedError:
    """Classify *exc* into an :class:`ErrorKind`."""

    message = str(exc) or type(exc).__name__

    if isinstance(exc, VibeError) and exc.kind != ErrorKind.UNKNOWN:
        return ClassifiedError(kind=exc.kind, message=message, matched_rule="typed")

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ClassifiedError(kind=ErrorKind.TIMEOUT, message=message, matched_rule="timeout_type")

    if isinstance(exc, (ConnectionError, httpx.TransportError)):
        return ClassifiedError(kind=ErrorKind.NETWORK, message=message, matched_rule="network_type")

    return classify_message(message)


def classify_message(message: str) -> ClassifiedError:
    """Classify a bare error message by ordered pattern tables."""

    haystack = message.lower()
    for rule, kind, patterns in _RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return ClassifiedError(
                kind=kind,
                message=message,
                matched_rule=rule,
                matched_pattern=pattern,
            )
    return ClassifiedError(kind=ErrorKind.UNKNOWN, message=message, matched_rule="fallback_unknown")


def format_task_error(kind: ErrorKind, message: str) -> str:
    return f"[{kind.value}] {message}"


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
