"""Errors raised while authenticating and pulling a GA4 report.

Nothing here is recovered locally; callers let these propagate and the
CLI turns them into an ``ERROR:`` line and a non-zero exit code.
"""

from __future__ import annotations

from typing import Any, Optional


class ReportError(Exception):
    """Base class for every failure in the token/report pipeline."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.endpoint = endpoint
        self.status_code = status_code
        self.payload = payload

    def __str__(self) -> str:
        parts = [self.message]
        if self.endpoint:
            parts.append(f"endpoint={self.endpoint}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return " | ".join(parts)


class CredentialError(ReportError):
    """Service account key file is missing, unreadable or cannot sign."""


class EncodingError(ReportError):
    """JWT header or claims could not be serialized."""


class NetworkError(ReportError):
    """Transport failure reaching the token or report endpoint."""


class AuthError(ReportError):
    """Token endpoint answered but did not hand back an access token."""


class ApiError(ReportError):
    """Analytics Data API answered with an error or an unusable body."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        payload: Any = None,
        status: Optional[str] = None,
    ):
        super().__init__(message, endpoint=endpoint, status_code=status_code, payload=payload)
        self.status = status

    def __str__(self) -> str:
        text = super().__str__()
        if self.status:
            text += f" | {self.status}"
        return text
