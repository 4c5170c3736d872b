"""
Chat error taxonomy.

Services raise these; the API layer renders them with the standard error
envelope ({"error": {"code", "message", "status", "fields"}}).
"""

from __future__ import annotations

from babble_shared.schemas.common import ErrorBody, ErrorResponse


class ChatError(Exception):
    status_code = 400
    code = "CHAT_ERROR"

    def __init__(self, message: str, *, fields: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.fields = fields

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=ErrorBody(
                code=self.code,
                message=self.message,
                status=self.status_code,
                fields=self.fields,
            )
        )


class NotFoundError(ChatError):
    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(ChatError):
    status_code = 403
    code = "FORBIDDEN"


class ValidationFailedError(ChatError):
    status_code = 422
    code = "VALIDATION_FAILED"


class ConflictError(ChatError):
    status_code = 409
    code = "CONFLICT"


class NoContentError(ChatError):
    status_code = 422
    code = "NO_CONTENT"
