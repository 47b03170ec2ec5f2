"""Certificate material handling for the fetch client.

This module provides:
- PEM block splitting
- Leaf/key/chain consistency checks
- SHA-256 thumbprints
"""

from pkifetch.ca.crypto import CertificateInfo, CryptoError, inspect_bundle, split_pem_blocks

__all__ = ["CertificateInfo", "CryptoError", "inspect_bundle", "split_pem_blocks"]
