"""Cryptographic utilities for fetched certificate material.

Provides PEM block splitting, thumbprint computation and sanity checks on
bundles returned by the PKI backend.
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from pkifetch.domain.models import CertificateBundle

logger = logging.getLogger(__name__)

PEM_BLOCK_RE = re.compile(
    r"-----BEGIN (?P<label>[A-Z0-9 ]+)-----.*?-----END (?P=label)-----",
    re.DOTALL,
)


class CryptoError(Exception):
    """Raised when certificate material cannot be parsed or does not fit together."""

    pass


@dataclass
class CertificateInfo:
    """Summary of an issued leaf certificate."""

    subject_cn: str | None
    serial_number: str
    thumbprint: str
    not_before: datetime
    not_after: datetime


def split_pem_blocks(text: str) -> list[str]:
    """Return every PEM block in ``text`` verbatim, in order."""
    return [match.group(0) for match in PEM_BLOCK_RE.finditer(text)]


def load_certificate(cert_pem: str) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(cert_pem.encode("utf-8"))
    except Exception as e:
        raise CryptoError(f"Failed to parse certificate: {e}") from e


def compute_thumbprint(cert_pem: str) -> str:
    """Compute SHA-256 thumbprint of a certificate.

    Returns:
        Lowercase hexadecimal SHA-256 thumbprint.

    Raises:
        CryptoError: If the certificate cannot be parsed.
    """
    cert = load_certificate(cert_pem)
    der_bytes = cert.public_bytes(serialization.Encoding.DER)
    return hashlib.sha256(der_bytes).hexdigest().lower()


def is_ca_certificate(cert: x509.Certificate) -> bool:
    try:
        constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return False
    return constraints.value.ca


def load_ca_certificate(ca_pem: str) -> x509.Certificate:
    """Parse a CA certificate fetched during bootstrap.

    Raises:
        CryptoError: If the text holds no parseable certificate.
    """
    blocks = split_pem_blocks(ca_pem)
    if not blocks:
        raise CryptoError("No PEM block found in CA certificate")

    cert = load_certificate(blocks[0])
    if not is_ca_certificate(cert):
        logger.warning(
            "ca_certificate_without_ca_constraint",
            extra={"subject": cert.subject.rfc4514_string()},
        )
    return cert


def _public_key_der(key) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def inspect_bundle(bundle: CertificateBundle) -> CertificateInfo:
    """Check that a bundle is internally consistent and summarise the leaf.

    - the leaf certificate and every chain block parse
    - the private key parses and matches the leaf's public key

    Raises:
        CryptoError: On the first check that fails.
    """
    leaf = load_certificate(bundle.leaf_certificate)

    try:
        private_key = serialization.load_pem_private_key(
            bundle.private_key.encode("utf-8"), password=None
        )
    except Exception as e:
        raise CryptoError(f"Failed to parse private key: {e}") from e

    if _public_key_der(private_key.public_key()) != _public_key_der(leaf.public_key()):
        raise CryptoError("Private key does not match the issued certificate")

    for block in bundle.ca_chain:
        load_certificate(block)

    cn_attributes = leaf.subject.get_attributes_for_oid(NameOID.COMMON_NAME)

    return CertificateInfo(
        subject_cn=str(cn_attributes[0].value) if cn_attributes else None,
        serial_number=bundle.serial_number,
        thumbprint=compute_thumbprint(bundle.leaf_certificate),
        not_before=leaf.not_valid_before_utc,
        not_after=leaf.not_valid_after_utc,
    )
