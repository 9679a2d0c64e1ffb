"""
secure_gate/core/errors.py - Exception hierarchy
Every GateError carries the HTTP status it maps to; main.py turns them into
{"success": false, "error": ...} responses. Cooldown rejections are results,
not exceptions.
"""
from __future__ import annotations


class GateError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(GateError):
    """Missing secret or endpoint. Fatal for the request, never retried."""
    status_code = 500


class RequestValidationFailure(GateError):
    status_code = 400


class StoreError(GateError):
    """The submission store could not be read or written."""
    status_code = 500


class NotificationError(GateError):
    status_code = 500


class StorageUnavailable(Exception):
    """Client-side local storage could not be read or written."""
