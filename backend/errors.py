"""
Error taxonomy for the task dependency core.

Core operations raise these exceptions; the HTTP layer in main.py maps each
kind to a status code:

- NotFoundError      -> 404
- ValidationError    -> 400 (sub-tagged, see ValidationTag)
- ConflictError      -> 409
- AuthorizationError -> 403
- InternalError      -> 500
"""

from enum import Enum
from typing import List, Optional


class ValidationTag(str, Enum):
    SELF_DEPENDENCY = "self-dependency"
    CIRCULAR = "circular"
    ALREADY_EXISTS = "already-exists"
    MAX_DEPTH_EXCEEDED = "max-depth-exceeded"
    CIRCULAR_REFERENCE = "circular-reference"
    INVALID_REQUEST = "invalid-request"


class TrackerError(Exception):
    """Base class for every error the core surfaces to its callers."""

    kind = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class NotFoundError(TrackerError):
    kind = "not_found"


class ValidationError(TrackerError):
    """
    A request violated a graph or hierarchy invariant.

    Attributes:
        tag: Which rule was violated
        path: Offending task id path, when one is known (circular dependencies)
    """

    kind = "validation"

    def __init__(self, message: str, tag: ValidationTag, path: Optional[List[str]] = None):
        super().__init__(message)
        self.tag = tag
        self.path = path

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["tag"] = self.tag.value
        if self.path:
            data["path"] = self.path
        return data


class ConflictError(TrackerError):
    kind = "conflict"

    def __init__(self, message: str, tag: ValidationTag = ValidationTag.ALREADY_EXISTS):
        super().__init__(message)
        self.tag = tag

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["tag"] = self.tag.value
        return data


class AuthorizationError(TrackerError):
    kind = "authorization"


class InternalError(TrackerError):
    kind = "internal"
