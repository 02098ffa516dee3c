"""Base exceptions for the domain layer."""

from __future__ import annotations

from typing import List, Optional


class DomainError(Exception):
    """Base class for all domain level exceptions."""


class ValidationError(DomainError):
    """Raised when data fails domain validation rules."""


class ConfigurationError(DomainError):
    """Raised at construction time when credentials or connection details are missing."""


class ConnectivityError(DomainError):
    """Raised when the document store cannot be reached or times out."""


class StoreError(DomainError):
    """Raised when the document store rejects a request."""


class IngestError(DomainError):
    """Raised when a bulk ingestion batch contains rejected documents.

    The whole batch is considered failed. ``imported`` counts documents from
    batches that completed before the failing one.
    """

    def __init__(
        self,
        batch_index: int,
        failed_ids: Optional[List[str]] = None,
        imported: int = 0,
        reason: str = "",
    ) -> None:
        self.batch_index = batch_index
        self.failed_ids = list(failed_ids or [])
        self.imported = imported
        message = f"Batch {batch_index} failed ({len(self.failed_ids)} rejected documents)"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


# Alias to keep a generic name for error type hints
Error = DomainError

__all__ = [
    "DomainError",
    "ValidationError",
    "ConfigurationError",
    "ConnectivityError",
    "StoreError",
    "IngestError",
    "Error",
]
