from enum import StrEnum


class VerificationMode(StrEnum):
    """How the backend's own TLS identity is checked."""

    SKIP = "skip-verification"
    SUPPLIED_CA = "verify-against-supplied-ca"
    SYSTEM_TRUST_STORE = "verify-against-system-trust-store"


class FetchMode(StrEnum):
    BOOTSTRAP = "bootstrap"
    ISSUE = "issue"


class FetchState(StrEnum):
    """All possible states of a single fetch run."""

    PENDING = "pending"
    TRUST_RESOLVED = "trust_resolved"
    CA_RECEIVED = "ca_received"
    BUNDLE_RECEIVED = "bundle_received"
    COMPLETED = "completed"  # Terminal state
    FAILED = "failed"  # Terminal state


class FetchEvent(StrEnum):
    """All possible events that trigger fetch run transitions."""

    TRUST_RESOLVED = "trust_resolved"
    CA_RECEIVED = "ca_received"
    BUNDLE_RECEIVED = "bundle_received"
    ARTIFACTS_WRITTEN = "artifacts_written"
    FAILED = "failed"


class ArtifactKind(StrEnum):
    PRIVATE_KEY = "private_key"
    CERTIFICATE = "certificate"
    CA_CHAIN = "ca_chain"
    CA_CERTIFICATE = "ca_certificate"
