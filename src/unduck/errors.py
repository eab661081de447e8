from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    PAYLOAD_UNPARSEABLE = "PAYLOAD_UNPARSEABLE"
    STORE_CORRUPT = "STORE_CORRUPT"
    NO_DIRECTORY_AVAILABLE = "NO_DIRECTORY_AVAILABLE"


class UnduckError(Exception):
    """Raised for all expected failure conditions of the directory pipeline.

    The loader recovers from UPSTREAM_UNAVAILABLE and PAYLOAD_UNPARSEABLE
    through its fallback chain. The edge proxy turns UPSTREAM_UNAVAILABLE into
    an HTTP response carrying ``status_code``.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
