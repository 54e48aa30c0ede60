from .keystore import PrivateKeyEntry, SecureStore, TrustedCertificateEntry

__all__ = ["PrivateKeyEntry", "SecureStore", "TrustedCertificateEntry"]
