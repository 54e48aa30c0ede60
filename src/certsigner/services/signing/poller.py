from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from certsigner.config.const import POLL_INTERVAL_SECONDS
from certsigner.services.crypto.pki import CertificateChain
from certsigner.services.errors import (
    PollCancelledError,
    PollTimeoutError,
    SigningServiceError,
    SigningServiceUnavailable,
)
from certsigner.services.signing.client import SigningClient

__all__ = ["Poller"]


def _is_retryable(exc: SigningServiceError) -> bool:
    return isinstance(exc, SigningServiceUnavailable) or exc.status_code >= 500


@dataclass
class Poller:
    """Slow polling loop that waits for the authority to approve a request.

    The interval is fixed. ``timeout`` bounds the total wait and a
    ``threading.Event`` passed to :meth:`await_approval` aborts it.
    """

    interval: float = POLL_INTERVAL_SECONDS
    timeout: float | None = None
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("certsigner.poller"))

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError("poll interval must be positive")
        if self.timeout is not None and self.timeout < 0:
            raise ValueError("poll timeout must not be negative")

    def await_approval(
        self,
        request_id: str,
        signing_client: SigningClient,
        *,
        cancel: threading.Event | None = None,
    ) -> CertificateChain:
        deadline = None if self.timeout is None else self.clock() + self.timeout
        attempt = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise PollCancelledError(f"Polling for request {request_id} was cancelled")
            attempt += 1
            # RequestRejectedError is not a SigningServiceError and propagates untouched
            try:
                chain = signing_client.retrieve(request_id)
            except SigningServiceError as exc:
                if not _is_retryable(exc):
                    raise
                self.logger.warning("Polling request %s failed (attempt %d): %s; will retry", request_id, attempt, exc)
                chain = None
            if chain:
                self.logger.debug("Request %s approved after %d attempt(s)", request_id, attempt)
                return list(chain)

            delay = self.interval
            if deadline is not None:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    raise PollTimeoutError(f"Request {request_id} was not approved within {self.timeout:g} seconds")
                delay = min(delay, remaining)
            self.logger.debug("Request %s not approved yet; next poll in %gs", request_id, delay)
            self._wait(delay, cancel, request_id)

    def _wait(self, delay: float, cancel: threading.Event | None, request_id: str) -> None:
        if cancel is None:
            self.sleep(delay)
            return
        if cancel.wait(delay):
            raise PollCancelledError(f"Polling for request {request_id} was cancelled")
