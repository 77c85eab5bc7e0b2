from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    BACKEND_REJECTED = "BACKEND_REJECTED"
    DECODE_FAILED = "DECODE_FAILED"


class ReelDataError(Exception):
    """Raised for all expected failure conditions of a backend round trip.

    The gateway raises it, the fetch coordinator propagates it unchanged and
    the pagination controller records it in its ``FAILED`` state. Nothing in
    this package retries: retry is a caller decision, guided by
    ``recoverable``.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
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
