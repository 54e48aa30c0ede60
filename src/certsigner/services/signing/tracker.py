"""Durable record of the outstanding certificate signing request."""
from __future__ import annotations

import contextlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from certsigner.services.crypto.pki import IdentityDescriptor, PrivateKey, csr_to_der, make_csr
from certsigner.services.errors import PersistenceError
from certsigner.services.signing.client import SigningClient

__all__ = ["RequestTracker"]


@dataclass
class RequestTracker:
    """Submits a CSR once and remembers the request id across restarts.

    The presence of the tracker file is the only signal used to decide
    between resuming and submitting a fresh request.
    """

    path: Path
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("certsigner.tracker"))

    def pending(self) -> str | None:
        if not self.path.exists():
            return None
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Failed to read request id from {self.path}: {exc}") from exc
        request_id = lines[0].strip() if lines else ""
        if not request_id:
            raise PersistenceError(f"Request id file {self.path} is empty; remove it to submit a new request")
        return request_id

    def submit(self, private_key: PrivateKey, identity: IdentityDescriptor, signing_client: SigningClient) -> str:
        existing = self.pending()
        if existing is not None:
            self.logger.info("Resuming certificate signing request %s", existing)
            return existing

        csr = make_csr(identity, private_key)
        request_id = signing_client.submit(csr_to_der(csr))
        if not request_id:
            raise PersistenceError("Signing authority returned an empty request id")
        self._persist(request_id)
        return request_id

    def _persist(self, request_id: str) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        replaced = False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as handle:
                handle.write(request_id + "\n")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp, self.path)
            replaced = True
        except OSError as exc:
            self.logger.error(
                "Request %s was submitted but could not be recorded in %s; record it manually before retrying",
                request_id,
                self.path,
            )
            raise PersistenceError(
                f"Failed to persist request id {request_id} to {self.path}: {exc}",
                request_id=request_id,
            ) from exc
        finally:
            if not replaced:
                with contextlib.suppress(OSError):
                    tmp.unlink()
