# src/certsigner/config/const.py
from __future__ import annotations

# Aliases used inside the key store and trust store.
IDENTITY_PRIVATE_KEY_ALIAS: str = "identity-private-key"
IDENTITY_CA_ALIAS: str = "identity-ca"
ROOT_CA_ALIAS: str = "root-ca"

# File names under the certificates directory.
CONFIG_FILENAME: str = "certsigner.yaml"
CERTIFICATES_DIRNAME: str = "certificates"
KEY_STORE_FILENAME: str = "sslkeystore.json"
TRUST_STORE_FILENAME: str = "truststore.json"
REQUEST_ID_FILENAME: str = "certificate-request-id.txt"

# Development defaults, override them in certsigner.yaml or via environment.
DEFAULT_KEY_STORE_PASSWORD: str = "cordacadevpass"
DEFAULT_TRUST_STORE_PASSWORD: str = "trustpass"
DEFAULT_SIGNING_SERVICE_URL: str = "https://localhost:8443"
DEFAULT_CLIENT_VERSION: str = "1"

POLL_INTERVAL_SECONDS: float = 60.0
