from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

PrivateKey = Union[ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey]
CertificateChain = list[x509.Certificate]

KEY_ALGORITHMS = ("ec", "rsa")


@dataclass(frozen=True, slots=True)
class IdentityDescriptor:
    """Subject fields of the certificate signing request."""

    legal_name: str
    nearest_city: str
    email_address: str

    def subject(self) -> x509.Name:
        attributes = [x509.NameAttribute(NameOID.COMMON_NAME, self.legal_name)]
        if self.nearest_city:
            attributes.append(x509.NameAttribute(NameOID.LOCALITY_NAME, self.nearest_city))
        if self.email_address:
            attributes.append(x509.NameAttribute(NameOID.EMAIL_ADDRESS, self.email_address))
        return x509.Name(attributes)


def generate_rsa_key(bits: int = 3072) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=bits)


def generate_ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def generate_key(algorithm: str = "ec") -> PrivateKey:
    if algorithm == "ec":
        return generate_ec_key()
    if algorithm == "rsa":
        return generate_rsa_key()
    raise ValueError(f"unsupported key algorithm: {algorithm}")


def make_csr(identity: IdentityDescriptor, key: PrivateKey) -> x509.CertificateSigningRequest:
    return x509.CertificateSigningRequestBuilder().subject_name(identity.subject()).sign(key, hashes.SHA256())


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.DER)


def make_self_signed_ca(legal_name: str, key: PrivateKey, *, days: int = 3650) -> x509.Certificate:
    """Placeholder certificate stored next to a freshly generated key."""
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, legal_name)])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )


def public_key_bytes(key) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def certificate_matches_key(certificate: x509.Certificate, key: PrivateKey) -> bool:
    return public_key_bytes(certificate.public_key()) == public_key_bytes(key.public_key())


def certificate_to_pem(certificate: x509.Certificate) -> str:
    return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")


def certificate_from_pem(text: str) -> x509.Certificate:
    return x509.load_pem_x509_certificate(text.replace("\r\n", "\n").encode("ascii"))


def load_certificate(data: bytes) -> x509.Certificate:
    """Accept either PEM or DER encoded certificate bytes."""
    if data.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(data)
    return x509.load_der_x509_certificate(data)


def chain_to_pem(chain: Sequence[x509.Certificate]) -> list[str]:
    return [certificate_to_pem(cert) for cert in chain]


def chain_from_pem(items: Iterable[str]) -> CertificateChain:
    return [certificate_from_pem(item) for item in items]


def encrypt_private_key(key: PrivateKey, password: str) -> str:
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
    )
    return pem.decode("ascii")


def decrypt_private_key(pem: str, password: str) -> PrivateKey:
    return serialization.load_pem_private_key(pem.encode("ascii"), password=password.encode("utf-8"))


__all__ = [
    "PrivateKey",
    "CertificateChain",
    "KEY_ALGORITHMS",
    "IdentityDescriptor",
    "generate_rsa_key",
    "generate_ec_key",
    "generate_key",
    "make_csr",
    "csr_to_der",
    "make_self_signed_ca",
    "public_key_bytes",
    "certificate_matches_key",
    "certificate_to_pem",
    "certificate_from_pem",
    "load_certificate",
    "chain_to_pem",
    "chain_from_pem",
    "encrypt_private_key",
    "decrypt_private_key",
]
