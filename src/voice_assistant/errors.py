"""Error taxonomy shared by the server adapters and the client."""

from __future__ import annotations

from typing import Any

from fastapi import status


class VoiceAssistantError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: Any, *, status_code: int | None = None):
        super().__init__(str(detail))
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class ValidationError(VoiceAssistantError):
    """Missing or malformed request input."""

    status_code = status.HTTP_400_BAD_REQUEST


class ServiceError(VoiceAssistantError):
    """An upstream dependency failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class InferenceTimeoutError(ServiceError):
    """The upstream model did not answer within its fixed bound."""


class CancellationError(VoiceAssistantError):
    """The user aborted an in-flight call."""

    status_code = status.HTTP_200_OK

    def __init__(self, detail: Any = "Cancelled by user", **kwargs: Any):
        super().__init__(detail, **kwargs)


class NotFoundError(VoiceAssistantError):
    """Unknown or expired cache identifier."""

    status_code = status.HTTP_404_NOT_FOUND


__all__ = [
    "CancellationError",
    "InferenceTimeoutError",
    "NotFoundError",
    "ServiceError",
    "ValidationError",
    "VoiceAssistantError",
]
