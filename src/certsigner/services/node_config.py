from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from certsigner.config.const import (
    CERTIFICATES_DIRNAME,
    CONFIG_FILENAME,
    DEFAULT_CLIENT_VERSION,
    DEFAULT_KEY_STORE_PASSWORD,
    DEFAULT_SIGNING_SERVICE_URL,
    DEFAULT_TRUST_STORE_PASSWORD,
    KEY_STORE_FILENAME,
    POLL_INTERVAL_SECONDS,
    REQUEST_ID_FILENAME,
    TRUST_STORE_FILENAME,
)
from certsigner.services.crypto.pki import KEY_ALGORITHMS, IdentityDescriptor
from certsigner.services.errors import ConfigError

__all__ = ["CertSignerConfig", "load_config", "config_path"]

_log = logging.getLogger("certsigner.config")

_ENV_OVERRIDES = {
    "CERTSIGNER_KEY_STORE_PASSWORD": "key_store_password",
    "CERTSIGNER_TRUST_STORE_PASSWORD": "trust_store_password",
}


@dataclass
class CertSignerConfig:
    base_dir: Path
    my_legal_name: str = ""
    nearest_city: str = ""
    email_address: str = ""
    certificate_signing_service: str = DEFAULT_SIGNING_SERVICE_URL
    # Store relative/default-friendly path; resolve via _expand_path
    certificates_dir: str = CERTIFICATES_DIRNAME
    key_store_password: str = DEFAULT_KEY_STORE_PASSWORD
    trust_store_password: str = DEFAULT_TRUST_STORE_PASSWORD
    key_algorithm: str = "ec"
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    poll_timeout_seconds: float | None = None
    client_version: str = DEFAULT_CLIENT_VERSION
    # CA bundle used to verify the signing service TLS endpoint
    tls_ca_cert: str | None = None

    @property
    def identity(self) -> IdentityDescriptor:
        if not self.my_legal_name:
            raise ConfigError("my_legal_name is not configured; set it in certsigner.yaml")
        return IdentityDescriptor(
            legal_name=self.my_legal_name,
            nearest_city=self.nearest_city,
            email_address=self.email_address,
        )

    def certificates_path(self) -> Path:
        return self._expand_path(self.certificates_dir)

    def key_store_path(self) -> Path:
        return self.certificates_path() / KEY_STORE_FILENAME

    def trust_store_path(self) -> Path:
        return self.certificates_path() / TRUST_STORE_FILENAME

    def request_id_path(self) -> Path:
        return self.certificates_path() / REQUEST_ID_FILENAME

    def tls_verify(self) -> str | bool:
        if self.tls_ca_cert:
            ca_path = self._expand_path(self.tls_ca_cert)
            if not ca_path.is_file():
                raise ConfigError(f"tls_ca_cert bundle {ca_path} does not exist")
            return str(ca_path)
        return True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("base_dir")
        return data

    def _expand_path(self, value: str) -> Path:
        candidate = Path(str(value)).expanduser()
        if candidate.is_absolute():
            return candidate
        return self.base_dir / candidate


def config_path(base_dir: Path, config_file: Path | None = None) -> Path:
    return Path(config_file) if config_file is not None else Path(base_dir) / CONFIG_FILENAME


def _read_yaml(path: Path) -> Mapping[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _coerce(name: str, value: Any, default: Any) -> Any:
    if name in {"poll_interval_seconds", "poll_timeout_seconds"}:
        if value is None and name == "poll_timeout_seconds":
            return None
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{name} must be a number, got {value!r}") from exc
        if name == "poll_interval_seconds" and number <= 0:
            raise ConfigError("poll_interval_seconds must be positive")
        if name == "poll_timeout_seconds" and number < 0:
            raise ConfigError("poll_timeout_seconds must not be negative")
        return number
    if value is None:
        return default
    return str(value)


def load_config(base_dir: Path, config_file: Path | None = None, *, allow_missing: bool = True) -> CertSignerConfig:
    base_dir = Path(base_dir)
    path = config_path(base_dir, config_file)
    if path.exists():
        data = _read_yaml(path)
    elif allow_missing:
        _log.debug("config file %s not found; using defaults", path)
        data = {}
    else:
        raise ConfigError(f"Config file {path} does not exist")

    config = CertSignerConfig(base_dir=base_dir)
    known = {f.name: f for f in fields(CertSignerConfig) if f.name != "base_dir"}
    for key, value in data.items():
        if key not in known:
            _log.warning("Ignoring unknown configuration key %r in %s", key, path)
            continue
        setattr(config, key, _coerce(key, value, getattr(config, key)))

    for env_name, attr in _ENV_OVERRIDES.items():
        env_value = os.environ.get(env_name)
        if env_value:
            setattr(config, attr, env_value)

    if config.key_algorithm not in KEY_ALGORITHMS:
        raise ConfigError(f"key_algorithm must be one of {', '.join(KEY_ALGORITHMS)}, got {config.key_algorithm!r}")
    if not config.key_store_password or not config.trust_store_password:
        raise ConfigError("key_store_password and trust_store_password must not be empty")
    return config
