"""Provision a node's TLS identity from a remote certificate signing authority."""

__version__ = "0.1.0"
