from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certsigner.services.crypto.keystore import SecureStore
from certsigner.services.errors import RequestRejectedError
from certsigner.services.node_config import CertSignerConfig
from certsigner.services.signing.poller import Poller


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _ca_cert(subject: str, key, issuer_name: x509.Name, issuer_key) -> x509.Certificate:
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(_name(subject))
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(issuer_key, hashes.SHA256())
    )


def make_chain(public_key, subject: x509.Name, *, with_intermediate: bool = False) -> list[x509.Certificate]:
    """Issue ``[leaf, (intermediate,) root]`` for ``public_key``."""
    root_key = ec.generate_private_key(ec.SECP256R1())
    root = _ca_cert("Test Root CA", root_key, _name("Test Root CA"), root_key)
    issuer_cert, issuer_key = root, root_key
    intermediates: list[x509.Certificate] = []
    if with_intermediate:
        inter_key = ec.generate_private_key(ec.SECP256R1())
        inter = _ca_cert("Test Intermediate CA", inter_key, root.subject, root_key)
        intermediates.append(inter)
        issuer_cert, issuer_key = inter, inter_key
    now = datetime.now(timezone.utc)
    leaf = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_cert.subject)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(issuer_key, hashes.SHA256())
    )
    return [leaf, *intermediates, root]


class FakeSigningAuthority:
    """In-process signing authority that signs the CSRs it receives."""

    def __init__(
        self,
        *,
        request_id: str = "req-42",
        pending_polls: int = 0,
        reject: bool = False,
        with_intermediate: bool = False,
    ) -> None:
        self.request_id = request_id
        self.pending_polls = pending_polls
        self.reject = reject
        self.with_intermediate = with_intermediate
        self.submitted: list[x509.CertificateSigningRequest] = []
        self.retrieve_calls: list[str] = []
        self.requests: dict[str, x509.CertificateSigningRequest] = {}
        self.issued: dict[str, list[x509.Certificate]] = {}

    def submit(self, csr: bytes) -> str:
        request = x509.load_der_x509_csr(csr)
        assert request.is_signature_valid
        self.submitted.append(request)
        self.requests[self.request_id] = request
        return self.request_id

    def retrieve(self, request_id: str) -> Optional[list[x509.Certificate]]:
        self.retrieve_calls.append(request_id)
        if self.reject:
            raise RequestRejectedError(f"request {request_id} rejected", request_id=request_id)
        if len(self.retrieve_calls) <= self.pending_polls:
            return None
        if request_id not in self.issued:
            request = self.requests[request_id]
            self.issued[request_id] = make_chain(
                request.public_key(), request.subject, with_intermediate=self.with_intermediate
            )
        return list(self.issued[request_id])


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture(autouse=True)
def _fast_store_kdf(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(SecureStore, "iterations", 1_000)


@pytest.fixture(autouse=True)
def _reset_certsigner_logger():
    yield
    logger = logging.getLogger("certsigner")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture()
def node_config(tmp_path: Path) -> CertSignerConfig:
    return CertSignerConfig(
        base_dir=tmp_path / "node",
        my_legal_name="Test LLC",
        nearest_city="London",
        email_address="ops@test.com",
        certificate_signing_service="https://signer.test",
    )


@pytest.fixture()
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def poller(sleeper: RecordingSleep) -> Poller:
    return Poller(interval=60.0, sleep=sleeper)


@pytest.fixture()
def authority_factory():
    return FakeSigningAuthority


@pytest.fixture()
def chain_factory():
    return make_chain
