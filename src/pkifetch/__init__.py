"""Fetch mutual-TLS identities from a Vault PKI secrets engine."""

__version__ = "0.1.0"
