"""Modernizer exception hierarchy.

The normalizer never raises; everything here comes from talking to the remote store.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence


class ModernizerError(Exception):
    """Base exception, wraps the original error as __cause__."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause


class ConnectionInactiveError(ModernizerError):
    """Raised when the configured server connection is switched off."""


class RemoteStoreError(ModernizerError):
    """Raised when the remote store rejects a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[List[Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause)
        self.status_code = status_code
        self.errors = errors or []


class CompileError(ModernizerError):
    """Raised when the remote compiler reports one or more errors."""

    def __init__(self, message: str, documents: Sequence[str], errors: List[Any]):
        super().__init__(message)
        self.documents = list(documents)
        self.errors = errors
