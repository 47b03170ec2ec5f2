"""Domain types for the certificate fetch workflow."""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from uuid import UUID, uuid4

from .states import FetchMode, FetchState


def split_csv(value: str | None) -> frozenset[str]:
    """Split a comma-separated flag value, dropping blanks and surrounding spaces."""
    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class IssuanceRequest:
    """What to ask the issuance role for.

    The role's max_ttl is enforced by the backend, not here.
    """

    common_name: str
    ttl: str
    alt_names: frozenset[str] = frozenset()
    ip_sans: frozenset[str] = frozenset()


@dataclass(frozen=True)
class CertificateBundle:
    """A leaf certificate, its private key and the issuing chain, as PEM text."""

    leaf_certificate: str
    private_key: str
    ca_chain: tuple[str, ...]
    serial_number: str
    private_key_type: str | None = None
    expiration: datetime | None = None


@dataclass(frozen=True)
class TrustContext:
    """Caller-supplied trust flags.

    Invariant: bootstrap implies ssl_verify is False. Use ``from_flags`` to
    build one from CLI-style inputs.
    """

    bootstrap: bool = False
    ssl_verify: bool = True
    ca_path: Path | None = None

    def __post_init__(self) -> None:
        if self.bootstrap and self.ssl_verify:
            object.__setattr__(self, "ssl_verify", False)

    @classmethod
    def from_flags(
        cls, bootstrap: bool, no_ssl_verify: bool, ca_path: str | Path | None = None
    ) -> "TrustContext":
        return cls(
            bootstrap=bootstrap,
            ssl_verify=not (bootstrap or no_ssl_verify),
            ca_path=Path(ca_path) if ca_path else None,
        )


@dataclass
class FetchRun:
    """Book-keeping for one invocation. Lives only as long as the process."""

    mode: FetchMode
    run_id: UUID = field(default_factory=uuid4)
    state: FetchState = FetchState.PENDING
