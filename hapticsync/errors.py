"""Exception hierarchy for the haptic sync pipeline."""

from __future__ import annotations


class HapticSyncError(Exception):
    pass


class FetchError(HapticSyncError):
    """Raised once every download attempt has failed."""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class ExtractionError(HapticSyncError):
    pass


class OperationCancelled(HapticSyncError):
    """Cooperative cancellation; never treated as a failure."""


__all__ = ["ExtractionError", "FetchError", "HapticSyncError", "OperationCancelled"]
