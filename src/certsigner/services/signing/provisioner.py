"""End-to-end provisioning of the node's TLS identity.

Checks the key store for the identity certificate. If it is missing, a key
pair is loaded or generated, a certificate signing request is submitted (or
the persisted one resumed), the authority is polled until it approves, and
the returned chain is installed into the trust store and the key store.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from certsigner.config.const import IDENTITY_CA_ALIAS, IDENTITY_PRIVATE_KEY_ALIAS, ROOT_CA_ALIAS
from certsigner.services.crypto.keystore import SecureStore
from certsigner.services.crypto.pki import (
    CertificateChain,
    PrivateKey,
    certificate_matches_key,
    generate_key,
    make_self_signed_ca,
)
from certsigner.services.errors import ChainMismatchError, StorageAccessError, StorageWriteError
from certsigner.services.node_config import CertSignerConfig
from certsigner.services.signing.client import SigningClient
from certsigner.services.signing.poller import Poller
from certsigner.services.signing.tracker import RequestTracker

__all__ = ["ProvisioningState", "ProvisioningResult", "ProvisioningStatus", "Provisioner"]


class ProvisioningState(str, Enum):
    NO_IDENTITY = "no_identity"
    REQUEST_PENDING = "request_pending"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    INSTALLED = "installed"


@dataclass(slots=True)
class ProvisioningResult:
    state: ProvisioningState
    installed: bool
    request_id: str | None = None
    chain: CertificateChain = field(default_factory=list)
    repaired_trust_store: bool = False


@dataclass(slots=True)
class ProvisioningStatus:
    state: ProvisioningState
    request_id: str | None = None
    subject: str | None = None
    not_valid_after: datetime | None = None


class Provisioner:
    """Drives ``NoIdentity -> RequestPending -> AwaitingApproval -> Approved -> Installed``."""

    def __init__(
        self,
        config: CertSignerConfig,
        signing_client: SigningClient,
        *,
        poller: Poller | None = None,
        tracker: RequestTracker | None = None,
        logger: logging.Logger | None = None,
        on_state: Callable[[ProvisioningState], None] | None = None,
    ) -> None:
        self.config = config
        self.signing_client = signing_client
        self.log = logger or logging.getLogger("certsigner.provisioner")
        self.poller = poller or Poller(
            interval=config.poll_interval_seconds,
            timeout=config.poll_timeout_seconds,
            logger=self.log.getChild("poller"),
        )
        self.tracker = tracker or RequestTracker(config.request_id_path(), logger=self.log.getChild("tracker"))
        self._on_state = on_state
        self._store_log = self.log.getChild("keystore")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def provision(self, *, cancel: threading.Event | None = None) -> ProvisioningResult:
        cfg = self.config
        self._ensure_certificates_dir()
        key_store = SecureStore.load_or_create(cfg.key_store_path(), cfg.key_store_password, logger=self._store_log)

        if key_store.contains_alias(IDENTITY_CA_ALIAS):
            repaired = self._ensure_trust_store(key_store)
            self.log.debug("Certificate already exists, nothing to provision")
            return ProvisioningResult(
                state=ProvisioningState.INSTALLED,
                installed=False,
                chain=key_store.get_chain(IDENTITY_PRIVATE_KEY_ALIAS) or [],
                repaired_trust_store=repaired,
            )

        self._transition(ProvisioningState.NO_IDENTITY)
        self.log.info("No certificate found in key store, creating certificate signing request...")
        identity = cfg.identity
        private_key = self._load_or_create_key(key_store, identity.legal_name)
        self._transition(ProvisioningState.REQUEST_PENDING)

        self.log.info("Submitting certificate signing request to %s", cfg.certificate_signing_service)
        request_id = self.tracker.submit(private_key, identity, self.signing_client)
        self.log.info("Certificate signing request registered, request id: %s", request_id)
        self._transition(ProvisioningState.AWAITING_APPROVAL)

        self.log.info("Polling signing authority every %gs for approval of %s", self.poller.interval, request_id)
        chain = self.poller.await_approval(request_id, self.signing_client, cancel=cancel)
        if not certificate_matches_key(chain[0], private_key):
            raise ChainMismatchError(
                f"Leaf certificate returned for request {request_id} does not match the local key pair"
            )
        self._transition(ProvisioningState.APPROVED)

        self.log.info("Certificate signing request approved, installing new certificates.")
        self._install(key_store, private_key, chain)
        self._transition(ProvisioningState.INSTALLED)
        return ProvisioningResult(
            state=ProvisioningState.INSTALLED,
            installed=True,
            request_id=request_id,
            chain=list(chain),
        )

    def status(self) -> ProvisioningStatus:
        cfg = self.config
        key_store = SecureStore.load_or_create(cfg.key_store_path(), cfg.key_store_password, logger=self._store_log)
        request_id = self.tracker.pending()
        if key_store.contains_alias(IDENTITY_CA_ALIAS):
            leaf = key_store.get_certificate(IDENTITY_CA_ALIAS)
            return ProvisioningStatus(
                state=ProvisioningState.INSTALLED,
                request_id=request_id,
                subject=leaf.subject.rfc4514_string() if leaf is not None else None,
                not_valid_after=leaf.not_valid_after_utc if leaf is not None else None,
            )
        if request_id is not None:
            return ProvisioningStatus(state=ProvisioningState.AWAITING_APPROVAL, request_id=request_id)
        if key_store.contains_alias(IDENTITY_PRIVATE_KEY_ALIAS):
            return ProvisioningStatus(state=ProvisioningState.REQUEST_PENDING)
        return ProvisioningStatus(state=ProvisioningState.NO_IDENTITY)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _transition(self, state: ProvisioningState) -> None:
        self.log.debug("provisioning state -> %s", state.value)
        if self._on_state:
            self._on_state(state)

    def _ensure_certificates_dir(self) -> None:
        path = self.config.certificates_path()
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageWriteError(f"Failed to create certificates directory {path}: {exc}") from exc

    def _load_or_create_key(self, key_store: SecureStore, legal_name: str) -> PrivateKey:
        cfg = self.config
        private_key = key_store.get_key(IDENTITY_PRIVATE_KEY_ALIAS, cfg.key_store_password)
        if private_key is not None:
            self.log.info("Reusing key pair stored under %r", IDENTITY_PRIVATE_KEY_ALIAS)
            return private_key
        private_key = generate_key(cfg.key_algorithm)
        placeholder = make_self_signed_ca(legal_name, private_key)
        key_store.add_or_replace_key(IDENTITY_PRIVATE_KEY_ALIAS, private_key, cfg.key_store_password, [placeholder])
        key_store.save(cfg.key_store_path(), cfg.key_store_password)
        self.log.info("Generated new %s key pair and stored it in %s", cfg.key_algorithm, cfg.key_store_path())
        return private_key

    def _install(self, key_store: SecureStore, private_key: PrivateKey, chain: CertificateChain) -> None:
        cfg = self.config
        trust_store = SecureStore.load_or_create(cfg.trust_store_path(), cfg.trust_store_password, logger=self._store_log)

        # chain[0] is the node certificate, chain[-1] the authority root
        trust_store.add_or_replace_certificate(ROOT_CA_ALIAS, chain[-1])
        key_store.add_or_replace_key(IDENTITY_PRIVATE_KEY_ALIAS, private_key, cfg.key_store_password, chain)
        key_store.add_or_replace_certificate(IDENTITY_CA_ALIAS, chain[0])

        # The key store is written last: its identity alias marks the run as complete.
        trust_store.save(cfg.trust_store_path(), cfg.trust_store_password)
        key_store.save(cfg.key_store_path(), cfg.key_store_password)
        self.log.info(
            "Installed certificate chain of %d certificate(s) into %s and %s",
            len(chain),
            cfg.key_store_path(),
            cfg.trust_store_path(),
        )

    def _ensure_trust_store(self, key_store: SecureStore) -> bool:
        cfg = self.config
        trust_store = SecureStore.load_or_create(cfg.trust_store_path(), cfg.trust_store_password, logger=self._store_log)
        if trust_store.contains_alias(ROOT_CA_ALIAS):
            return False
        chain = key_store.get_chain(IDENTITY_PRIVATE_KEY_ALIAS)
        if not chain:
            raise StorageAccessError(
                f"Key store {cfg.key_store_path()} holds {IDENTITY_CA_ALIAS!r} without a certificate chain"
            )
        self.log.warning("Trust store %s is missing %r; restoring it from the installed chain", cfg.trust_store_path(), ROOT_CA_ALIAS)
        trust_store.add_or_replace_certificate(ROOT_CA_ALIAS, chain[-1])
        trust_store.save(cfg.trust_store_path(), cfg.trust_store_password)
        return True
