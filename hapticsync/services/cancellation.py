"""Cancellation tokens threaded through every blocking step."""

from __future__ import annotations

import threading

from ..errors import OperationCancelled


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation cancelled")

    def sleep(self, seconds: float) -> None:
        """Wait up to ``seconds``; raises as soon as the token is cancelled."""
        if seconds > 0 and self._event.wait(timeout=seconds):
            raise OperationCancelled("operation cancelled")
        self.raise_if_cancelled()


def acquire_cancellable(lock: threading.Lock, token: CancellationToken, *, poll: float = 0.05) -> None:
    """Block on ``lock`` while honouring ``token``."""
    while not lock.acquire(timeout=poll):
        token.raise_if_cancelled()
    if token.cancelled:
        lock.release()
        token.raise_if_cancelled()


__all__ = ["CancellationToken", "acquire_cancellable"]
