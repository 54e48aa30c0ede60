# src/certsigner/services/signing/client.py
from __future__ import annotations

import io
import ssl
import zipfile
from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping, Optional, Protocol, runtime_checkable

import httpx

from certsigner.services.crypto.pki import CertificateChain, load_certificate
from certsigner.services.errors import RequestRejectedError, SigningServiceError, SigningServiceUnavailable

__all__ = ["SigningClient", "HttpSigningClient", "parse_chain_archive"]


@runtime_checkable
class SigningClient(Protocol):
    """Capability to submit CSRs and query their approval status."""

    def submit(self, csr: bytes) -> str:
        """Submit a DER encoded CSR and return the authority's request id."""

    def retrieve(self, request_id: str) -> Optional[CertificateChain]:
        """Return the chain once approved, ``None`` while pending.

        Raises :class:`RequestRejectedError` when the authority rejected the request.
        """


def parse_chain_archive(data: bytes) -> CertificateChain:
    """Decode a ZIP archive whose entries are the chain certificates, leaf first."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            members = [info for info in archive.infolist() if not info.is_dir()]
            chain = [load_certificate(archive.read(info)) for info in members]
    except (zipfile.BadZipFile, ValueError) as exc:
        raise SigningServiceError(f"Signing authority returned an unreadable certificate archive: {exc}") from exc
    if not chain:
        raise SigningServiceError("Signing authority returned an empty certificate archive")
    return chain


@dataclass(slots=True)
class HttpSigningClient:
    """HTTP client for the certificate signing authority."""

    base_url: str
    timeout: float = 15.0
    verify: str | bool | ssl.SSLContext = True
    client_version: str = "1"
    default_headers: dict[str, str] = field(default_factory=dict)
    transport: httpx.BaseTransport | None = None

    @classmethod
    def from_settings(cls, settings: Any, *, transport: httpx.BaseTransport | None = None) -> "HttpSigningClient":
        """
        Factory that extracts the service URL, TLS verification and client version.

        Expected settings fields:
          - settings.certificate_signing_service
          - settings.tls_verify() (optional)
          - settings.client_version (optional)
        """
        base_url = getattr(settings, "certificate_signing_service", None)
        if not base_url:
            raise SigningServiceError("certificate_signing_service is not configured")
        tls_verify = getattr(settings, "tls_verify", None)
        verify: str | bool | ssl.SSLContext = tls_verify() if callable(tls_verify) else True
        if isinstance(verify, str):
            verify = ssl.create_default_context(cafile=verify)
        client_version = str(getattr(settings, "client_version", None) or "1")
        return cls(base_url=str(base_url), verify=verify, client_version=client_version, transport=transport)

    # ---------- capability ----------------------------------------------------
    def submit(self, csr: bytes) -> str:
        response = self._request(
            "POST",
            "/api/certificate",
            content=csr,
            headers={"Content-Type": "application/octet-stream", "Client-Version": self.client_version},
        )
        if response.status_code == 200:
            request_id = response.text.strip()
            if not request_id:
                raise SigningServiceError("Signing authority returned an empty request id", status_code=200)
            return request_id
        if response.status_code == 403:
            raise SigningServiceError(
                f"Client version {self.client_version} is forbidden from accessing the signing authority, please upgrade",
                status_code=403,
            )
        raise self._unexpected(response)

    def retrieve(self, request_id: str) -> Optional[CertificateChain]:
        response = self._request("GET", f"/api/certificate/{request_id}")
        if response.status_code == 200:
            return parse_chain_archive(response.content)
        if response.status_code == 204:
            return None
        if response.status_code == 401:
            detail = response.text.strip() or "no reason given"
            raise RequestRejectedError(
                f"Certificate signing request {request_id} has been rejected: {detail}",
                request_id=request_id,
            )
        raise self._unexpected(response)

    # ---------- transport -----------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        merged_headers: MutableMapping[str, str] = dict(self.default_headers)
        if headers:
            merged_headers.update({str(k): str(v) for k, v in headers.items()})
        client_kwargs: dict[str, Any] = {
            "base_url": self.base_url.rstrip("/"),
            "timeout": self.timeout,
            "verify": self.verify,
        }
        if self.transport is not None:
            client_kwargs["transport"] = self.transport
        try:
            with httpx.Client(**client_kwargs) as client:
                return client.request(method, path, content=content, headers=merged_headers)
        except httpx.RequestError as exc:
            raise SigningServiceUnavailable(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _unexpected(response: httpx.Response) -> SigningServiceError:
        detail = response.text.strip() or f"HTTP {response.status_code}"
        return SigningServiceError(
            f"Unexpected response from signing authority ({response.status_code}): {detail}",
            status_code=response.status_code,
        )
