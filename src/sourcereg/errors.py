from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    ROBOTS_DISALLOWED = "ROBOTS_DISALLOWED"
    FETCH_FAILED = "FETCH_FAILED"
    DISCOVERY_FAILED = "DISCOVERY_FAILED"
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    ASSET_NOT_FOUND = "ASSET_NOT_FOUND"
    ACTIVATION_BLOCKED = "ACTIVATION_BLOCKED"
    STORE_ERROR = "STORE_ERROR"
    INVALID_INPUT = "INVALID_INPUT"


class SourceRegError(Exception):
    """Raised for expected failure conditions outside the fetch path.

    Fetch failures never raise; they come back as a failed ``FetchResult``.
    This exception covers store failures, unknown ids, activation refusals
    and catalog discovery failures. The scan loop catches it per candidate
    and per seed and turns it into a status field plus message.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str = "",
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
