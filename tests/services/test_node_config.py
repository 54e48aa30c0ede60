from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml

from certsigner.services.errors import ConfigError
from certsigner.services.node_config import CertSignerConfig, load_config


def _write_config(base_dir: Path, data) -> Path:
    base_dir.mkdir(parents=True, exist_ok=True)
    path = base_dir / "certsigner.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clear_password_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CERTSIGNER_KEY_STORE_PASSWORD", raising=False)
    monkeypatch.delenv("CERTSIGNER_TRUST_STORE_PASSWORD", raising=False)


def test_missing_file_yields_defaults(tmp_path: Path):
    config = load_config(tmp_path)
    assert config.base_dir == tmp_path
    assert config.key_store_path() == tmp_path / "certificates" / "sslkeystore.json"
    assert config.trust_store_path() == tmp_path / "certificates" / "truststore.json"
    assert config.request_id_path() == tmp_path / "certificates" / "certificate-request-id.txt"
    assert config.poll_interval_seconds == 60.0
    assert config.poll_timeout_seconds is None
    assert config.key_algorithm == "ec"


def test_missing_file_can_be_required(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_config(tmp_path, allow_missing=False)


def test_values_are_read_from_yaml(tmp_path: Path):
    _write_config(
        tmp_path,
        {
            "my_legal_name": "Test LLC",
            "nearest_city": "London",
            "email_address": "ops@test.com",
            "certificate_signing_service": "https://signer.test",
            "certificates_dir": "/var/lib/node/certs",
            "poll_interval_seconds": 5,
            "poll_timeout_seconds": 120,
            "key_algorithm": "rsa",
        },
    )
    config = load_config(tmp_path)

    assert config.identity.legal_name == "Test LLC"
    assert config.identity.nearest_city == "London"
    assert config.certificate_signing_service == "https://signer.test"
    assert config.certificates_path() == Path("/var/lib/node/certs")
    assert config.poll_interval_seconds == 5.0
    assert config.poll_timeout_seconds == 120.0
    assert config.key_algorithm == "rsa"


def test_explicit_config_file_wins(tmp_path: Path):
    other = _write_config(tmp_path / "elsewhere", {"my_legal_name": "Other LLC"})
    _write_config(tmp_path / "node", {"my_legal_name": "Test LLC"})
    config = load_config(tmp_path / "node", other)
    assert config.my_legal_name == "Other LLC"
    assert config.base_dir == tmp_path / "node"


def test_environment_overrides_passwords(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    _write_config(tmp_path, {"key_store_password": "from-file"})
    monkeypatch.setenv("CERTSIGNER_KEY_STORE_PASSWORD", "from-env")
    config = load_config(tmp_path)
    assert config.key_store_password == "from-env"
    assert config.trust_store_password == "trustpass"


def test_unknown_keys_are_ignored_with_warning(tmp_path: Path, caplog: pytest.LogCaptureFixture):
    _write_config(tmp_path, {"my_legal_name": "Test LLC", "colour": "blue"})
    with caplog.at_level(logging.WARNING, logger="certsigner.config"):
        config = load_config(tmp_path)
    assert config.my_legal_name == "Test LLC"
    assert any("colour" in record.getMessage() for record in caplog.records)


@pytest.mark.parametrize(
    "data",
    [
        {"poll_interval_seconds": 0},
        {"poll_interval_seconds": "soon"},
        {"poll_timeout_seconds": -1},
        {"key_algorithm": "dsa"},
        {"key_store_password": ""},
        ["not", "a", "mapping"],
    ],
)
def test_invalid_values_raise_config_error(tmp_path: Path, data):
    _write_config(tmp_path, data)
    with pytest.raises(ConfigError) as excinfo:
        load_config(tmp_path)
    assert excinfo.value.exit_code == 2


def test_unparseable_yaml_raises_config_error(tmp_path: Path):
    (tmp_path / "certsigner.yaml").write_text("key: [unterminated", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path)


def test_identity_requires_legal_name(tmp_path: Path):
    with pytest.raises(ConfigError):
        CertSignerConfig(base_dir=tmp_path).identity


def test_tls_verify_resolves_relative_bundle(tmp_path: Path):
    (tmp_path / "ca.pem").write_text("bundle", encoding="utf-8")
    config = CertSignerConfig(base_dir=tmp_path, tls_ca_cert="ca.pem")
    assert config.tls_verify() == str(tmp_path / "ca.pem")
    assert CertSignerConfig(base_dir=tmp_path).tls_verify() is True


def test_tls_verify_rejects_missing_bundle(tmp_path: Path):
    config = CertSignerConfig(base_dir=tmp_path, tls_ca_cert="missing.pem")
    with pytest.raises(ConfigError) as excinfo:
        config.tls_verify()
    assert "missing.pem" in str(excinfo.value)
