"""Password-protected keyed container for private keys, chains and trusted certificates.

The on-disk document is JSON. Private keys are stored as PKCS#8 PEM encrypted
with their own entry password, certificates as PEM in chain order. The whole
entry table is covered by an HMAC-SHA256 tag keyed with a PBKDF2 derivation of
the store password, so a wrong store password or a tampered file is detected
on load.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from certsigner.services.crypto.pki import (
    CertificateChain,
    PrivateKey,
    certificate_from_pem,
    certificate_to_pem,
    chain_from_pem,
    chain_to_pem,
    decrypt_private_key,
    encrypt_private_key,
)
from certsigner.services.errors import StorageAccessError, StorageWriteError

__all__ = ["SecureStore", "PrivateKeyEntry", "TrustedCertificateEntry"]

_log = logging.getLogger("certsigner.keystore")

STORE_FORMAT = "certsigner-keystore"
STORE_VERSION = 1
MAX_ITERATIONS = 10_000_000


@dataclass(slots=True)
class PrivateKeyEntry:
    encrypted_key: str
    chain: CertificateChain = field(default_factory=list)

    def as_json(self) -> dict[str, Any]:
        return {
            "type": "private_key",
            "key": self.encrypted_key,
            "chain": chain_to_pem(self.chain),
        }


@dataclass(slots=True)
class TrustedCertificateEntry:
    certificate: x509.Certificate

    def as_json(self) -> dict[str, Any]:
        return {"type": "trusted_certificate", "certificate": certificate_to_pem(self.certificate)}


Entry = PrivateKeyEntry | TrustedCertificateEntry


def _derive_mac_key(password: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
    return kdf.derive(password.encode("utf-8"))


def _canonical(document: Mapping[str, Any]) -> bytes:
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=True).encode("ascii")


def _entry_from_json(alias: str, data: Any) -> Entry:
    if not isinstance(data, Mapping):
        raise ValueError(f"entry {alias!r} is not an object")
    kind = data.get("type")
    if kind == "private_key":
        key = data.get("key")
        chain = data.get("chain") or []
        if not isinstance(key, str) or not isinstance(chain, list):
            raise ValueError(f"entry {alias!r} is malformed")
        return PrivateKeyEntry(encrypted_key=key, chain=chain_from_pem(str(item) for item in chain))
    if kind == "trusted_certificate":
        cert = data.get("certificate")
        if not isinstance(cert, str):
            raise ValueError(f"entry {alias!r} is malformed")
        return TrustedCertificateEntry(certificate=certificate_from_pem(cert))
    raise ValueError(f"entry {alias!r} has unknown type {kind!r}")


class SecureStore:
    """In-memory view of a secure container; persist with :meth:`save`.

    Not safe for concurrent mutation, callers serialize access.
    """

    iterations: int = 100_000

    def __init__(self, entries: Mapping[str, Entry] | None = None, *, logger: logging.Logger | None = None) -> None:
        self._entries: dict[str, Entry] = dict(entries or {})
        self.log = logger or _log

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    @classmethod
    def load_or_create(cls, path: Path, password: str, *, logger: logging.Logger | None = None) -> "SecureStore":
        path = Path(path)
        if not path.exists():
            (logger or _log).debug("secure store %s does not exist; starting empty", path)
            return cls(logger=logger)
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise StorageAccessError(f"Failed to read secure store {path}: {exc}") from exc
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageAccessError(f"Secure store {path} is corrupt: {exc}") from exc
        return cls._from_document(path, document, password, logger=logger)

    @classmethod
    def _from_document(
        cls, path: Path, document: Any, password: str, *, logger: logging.Logger | None = None
    ) -> "SecureStore":
        if not isinstance(document, Mapping) or document.get("format") != STORE_FORMAT:
            raise StorageAccessError(f"Secure store {path} has an unknown format")
        if document.get("version") != STORE_VERSION:
            raise StorageAccessError(f"Secure store {path} has unsupported version {document.get('version')!r}")
        body = {key: document.get(key) for key in ("format", "version", "salt", "iterations", "entries")}
        try:
            salt = base64.b64decode(str(body["salt"]), validate=True)
            iterations = int(body["iterations"])
            mac = bytes.fromhex(str(document.get("mac", "")))
        except (ValueError, TypeError) as exc:
            raise StorageAccessError(f"Secure store {path} is corrupt: {exc}") from exc
        if not 1 <= iterations <= MAX_ITERATIONS:
            raise StorageAccessError(f"Secure store {path} is corrupt: iteration count {iterations} out of range")
        try:
            mac_key = _derive_mac_key(password, salt, iterations)
        except (ValueError, OverflowError) as exc:
            raise StorageAccessError(f"Secure store {path} is corrupt: {exc}") from exc
        expected = hmac.new(mac_key, _canonical(body), hashlib.sha256).digest()
        if not hmac.compare_digest(mac, expected):
            raise StorageAccessError(f"Secure store {path} failed the integrity check (wrong password or tampered file)")
        entries_raw = body["entries"]
        if not isinstance(entries_raw, Mapping):
            raise StorageAccessError(f"Secure store {path} is corrupt: entries missing")
        try:
            entries = {str(alias): _entry_from_json(str(alias), data) for alias, data in entries_raw.items()}
        except ValueError as exc:
            raise StorageAccessError(f"Secure store {path} is corrupt: {exc}") from exc
        return cls(entries, logger=logger)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def contains_alias(self, alias: str) -> bool:
        return alias in self._entries

    def aliases(self) -> list[str]:
        return sorted(self._entries)

    def get_key(self, alias: str, protect_password: str) -> PrivateKey | None:
        entry = self._entries.get(alias)
        if not isinstance(entry, PrivateKeyEntry):
            return None
        try:
            return decrypt_private_key(entry.encrypted_key, protect_password)
        except (ValueError, TypeError) as exc:
            raise StorageAccessError(f"Cannot recover private key {alias!r}: {exc}") from exc

    def get_chain(self, alias: str) -> CertificateChain | None:
        entry = self._entries.get(alias)
        if not isinstance(entry, PrivateKeyEntry):
            return None
        return list(entry.chain)

    def get_certificate(self, alias: str) -> x509.Certificate | None:
        entry = self._entries.get(alias)
        if isinstance(entry, TrustedCertificateEntry):
            return entry.certificate
        if isinstance(entry, PrivateKeyEntry) and entry.chain:
            return entry.chain[0]
        return None

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def add_or_replace_key(
        self,
        alias: str,
        private_key: PrivateKey,
        protect_password: str,
        chain: Sequence[x509.Certificate],
    ) -> None:
        if not chain:
            raise ValueError("a private key entry requires at least one certificate")
        self._entries[alias] = PrivateKeyEntry(
            encrypted_key=encrypt_private_key(private_key, protect_password),
            chain=list(chain),
        )

    def add_or_replace_certificate(self, alias: str, certificate: x509.Certificate) -> None:
        self._entries[alias] = TrustedCertificateEntry(certificate=certificate)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def to_document(self, password: str) -> dict[str, Any]:
        salt = os.urandom(16)
        body: dict[str, Any] = {
            "format": STORE_FORMAT,
            "version": STORE_VERSION,
            "salt": base64.b64encode(salt).decode("ascii"),
            "iterations": self.iterations,
            "entries": {alias: entry.as_json() for alias, entry in sorted(self._entries.items())},
        }
        mac = hmac.new(_derive_mac_key(password, salt, self.iterations), _canonical(body), hashlib.sha256)
        document = dict(body)
        document["mac"] = mac.hexdigest()
        return document

    def save(self, path: Path, password: str) -> Path:
        path = Path(path)
        payload = json.dumps(self.to_document(password), ensure_ascii=False, indent=2).encode("utf-8")
        tmp_name: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile("wb", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False) as handle:
                tmp_name = handle.name
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            try:
                os.chmod(tmp_name, 0o600)
            except PermissionError:
                self.log.debug("could not restrict permissions on %s", tmp_name)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as exc:
            raise StorageWriteError(f"Failed to write secure store {path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        self.log.debug("secure store saved", extra={"path": str(path), "aliases": self.aliases()})
        return path
