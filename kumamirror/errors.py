"""Error taxonomy for the preload pipeline and the fallback/propagation policy."""

import logging
from typing import Optional

logger = logging.getLogger("kumamirror.errors")

SNIPPET_LIMIT = 200

STAGE_CONFIG = "config"
STAGE_MAINTENANCE = "maintenance"
STAGE_INCIDENT = "incident"
STAGE_MONITOR = "monitor"


def truncate(text: Optional[str], limit: int = SNIPPET_LIMIT) -> str:
    """Shorten a payload for logging, marking the cut."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... ({len(text)} chars)"


class MirrorError(Exception):
    """Base class for every failure raised by the extraction pipeline."""


class FetchError(MirrorError):
    """Raised when an upstream endpoint is unreachable or answers non-2xx.

    ``status`` is None when no response was received at all.
    """

    def __init__(self, endpoint: str, status: Optional[int], reason: str):
        self.endpoint = endpoint
        self.status = status
        self.reason = reason
        if status is None:
            message = f"Upstream unreachable ({endpoint}): {reason}"
        else:
            message = f"Upstream returned {status} ({endpoint}): {reason}"
        super().__init__(message)

    @property
    def unreachable(self) -> bool:
        return self.status is None


class PayloadNotFoundError(MirrorError):
    """Raised when no preload payload could be located in the HTML."""

    def __init__(self, html_preview: str, script_ids: list[str]):
        self.html_preview = html_preview
        self.script_ids = script_ids
        super().__init__(
            f"Preload payload not found (scripts seen: {', '.join(script_ids) or 'none'})"
        )


class SanitizationError(MirrorError):
    """Raised when sanitized text still fails strict JSON parsing."""

    def __init__(self, message: str, snippet: str = ""):
        self.snippet = snippet
        super().__init__(message)


class ValidationError(MirrorError):
    """Raised when a required field is missing or has the wrong type."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class ApiDataError(MirrorError):
    """Raised when upstream API data violates the expected shape."""


class BaseConfigError(Exception):
    """Raised when the generated base configuration cannot be loaded."""

    def __init__(self, path: str, errors: list[str]):
        self.path = path
        self.errors = errors
        super().__init__(f"Invalid base configuration {path}: {'; '.join(errors)}")


def should_degrade(error: BaseException, stage: str) -> bool:
    """Return True when ``error`` at ``stage`` may be replaced by a fallback value."""
    if isinstance(error, (FetchError, PayloadNotFoundError)):
        return False
    if stage in (STAGE_MAINTENANCE, STAGE_INCIDENT):
        return isinstance(error, MirrorError)
    if stage == STAGE_CONFIG:
        return isinstance(error, (ValidationError, SanitizationError))
    if stage == STAGE_MONITOR:
        return isinstance(error, ApiDataError)
    return False


def log_degradation(
    stage: str,
    error: BaseException,
    endpoint: str,
    payload: Optional[str] = None,
) -> None:
    """Log a degraded stage with its endpoint and a bounded payload snippet."""
    snippet = payload
    if snippet is None:
        snippet = getattr(error, "snippet", None) or getattr(error, "html_preview", None)
    logger.warning(
        "Degrading %s (endpoint=%s): %s: %s | payload: %s",
        stage,
        endpoint,
        type(error).__name__,
        error,
        truncate(snippet) or "<none>",
    )
