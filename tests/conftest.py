"""Shared fixtures: a throwaway CA and a fake PKI backend behind httpx.MockTransport."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

DOMAIN = "example.com"
VALID_TOKEN = "hvs.valid-service-token"
EXPIRED_TOKEN = "hvs.expired-service-token"
UNPRIVILEGED_TOKEN = "hvs.other-policy-token"


def cert_to_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("utf-8").strip()


def key_to_pem(key: ec.EllipticCurvePrivateKey) -> str:
    return (
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        .decode("utf-8")
        .strip()
    )


def make_certificate(
    common_name: str,
    issuer_key: ec.EllipticCurvePrivateKey | None = None,
    issuer_cert: x509.Certificate | None = None,
    is_ca: bool = False,
    alt_names: list[str] | None = None,
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Create a certificate; self-signed when no issuer is given."""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_cert.subject if issuer_cert else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
    )
    if alt_names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in alt_names]),
            critical=False,
        )

    cert = builder.sign(issuer_key or key, hashes.SHA256())
    return cert, key


def serial_string(cert: x509.Certificate) -> str:
    raw = format(cert.serial_number, "x")
    if len(raw) % 2:
        raw = "0" + raw
    return ":".join(raw[i : i + 2] for i in range(0, len(raw), 2))


class FakeVault:
    """Just enough of the PKI secrets engine for the fetch workflow."""

    def __init__(self, ca_cert: x509.Certificate, ca_key: ec.EllipticCurvePrivateKey) -> None:
        self.ca_cert = ca_cert
        self.ca_key = ca_key
        self.requests: list[httpx.Request] = []
        self.issued: list[dict] = []
        self.warnings: list[str] | None = None

    @property
    def ca_pem(self) -> str:
        return cert_to_pem(self.ca_cert)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "GET" and path == f"/v1/pki/{DOMAIN}/ca/pem":
            return httpx.Response(200, text=self.ca_pem + "\n")

        if request.method == "POST" and path == f"/v1/pki/{DOMAIN}/issue/cert":
            return self._issue(request)

        return httpx.Response(404, json={"errors": []})

    def _issue(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("X-Vault-Token")
        if token == EXPIRED_TOKEN:
            return httpx.Response(
                403,
                json={"errors": ["2 errors occurred:\n\t* permission denied\n\t* invalid token\n\n"]},
            )
        if token != VALID_TOKEN:
            return httpx.Response(403, json={"errors": ["1 error occurred:\n\t* permission denied\n\n"]})

        body = json.loads(request.content)
        alt_names = body["alt_names"].split(",") if body.get("alt_names") else []
        cert, key = make_certificate(
            body["common_name"], self.ca_key, self.ca_cert, alt_names=alt_names
        )
        data = {
            "certificate": cert_to_pem(cert),
            "private_key": key_to_pem(key),
            "private_key_type": "ec",
            "issuing_ca": self.ca_pem,
            "ca_chain": [self.ca_pem],
            "serial_number": serial_string(cert),
            "expiration": int(cert.not_valid_after_utc.timestamp()),
        }
        self.issued.append({"request": body, "data": data})
        return httpx.Response(
            200,
            json={
                "request_id": "b7a2c1d4-0000-4000-8000-000000000000",
                "lease_id": "",
                "renewable": False,
                "lease_duration": 0,
                "data": data,
                "wrap_info": None,
                "warnings": self.warnings,
                "auth": None,
            },
        )


@pytest.fixture(scope="session")
def ca_pair() -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    return make_certificate(DOMAIN, is_ca=True)


@pytest.fixture
def fake_vault(ca_pair) -> FakeVault:
    ca_cert, ca_key = ca_pair
    return FakeVault(ca_cert, ca_key)
