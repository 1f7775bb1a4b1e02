"""Error types raised by the StudyForge services.

The calling layer maps each class to its own response: NotFoundError -> 404,
UnauthorizedError -> 403, AttemptAlreadyGradedError and ConcurrentUpdateError
-> 409, input errors -> 400, ProviderError -> 502/500.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


class StudyForgeError(Exception):
    """Base class for service errors."""


class NotFoundError(StudyForgeError):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class UnauthorizedError(StudyForgeError):
    """The user does not own the course the resource belongs to."""


class AttemptAlreadyGradedError(StudyForgeError):
    def __init__(self, attempt_id: str):
        super().__init__(f"Attempt already graded: {attempt_id}")
        self.attempt_id = attempt_id


class ConcurrentUpdateError(StudyForgeError):
    """A row kept changing under a compare-and-swap update."""


class InvalidInputError(StudyForgeError):
    """Request data the core cannot act on (missing answer, bad file, ...)."""


class ImportFailedError(StudyForgeError):
    """Content was accepted but nothing could be extracted from it."""


@dataclass
class ProviderError(Exception):
    """Structured error from an embedding or LLM provider."""
    kind: str  # timeout | unavailable | http_error | invalid_response | not_configured
    message: str
    details: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"
