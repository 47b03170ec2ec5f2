"""Decide how the PKI backend's own TLS identity is verified."""

import logging
import ssl
from dataclasses import dataclass
from pathlib import Path

from opentelemetry import trace

from pkifetch.domain.models import TrustContext
from pkifetch.domain.states import VerificationMode
from pkifetch.errors import ConfigurationError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class ResolvedTrust:
    """Effective verification mode, and the CA file when one is used."""

    mode: VerificationMode
    ca_path: Path | None = None

    def httpx_verify(self) -> bool | ssl.SSLContext:
        """Value for the HTTP client's ``verify`` argument."""
        if self.mode is VerificationMode.SKIP:
            return False
        if self.mode is VerificationMode.SUPPLIED_CA:
            try:
                return ssl.create_default_context(cafile=str(self.ca_path))
            except ssl.SSLError as e:
                raise ConfigurationError(f"Cannot load CA file {self.ca_path}: {e}") from e
        return True


class TrustResolver:
    """Resolves a TrustContext before any certificate request is sent.

    Bootstrap always wins: the caller has no trust anchor yet and is fetching
    one, so verification is skipped whatever the other flags say.
    """

    def resolve(self, context: TrustContext) -> ResolvedTrust:
        """Resolve the verification mode.

        Raises:
            ConfigurationError: If the flags contradict each other or the CA
                file is missing.
        """
        with tracer.start_as_current_span("TrustResolver.resolve") as span:
            span.set_attribute("bootstrap", context.bootstrap)

            resolved = self._resolve(context)

            span.set_attribute("verification_mode", resolved.mode.value)
            logger.debug(
                "trust_resolved",
                extra={
                    "verification_mode": resolved.mode.value,
                    "ca_path": str(resolved.ca_path) if resolved.ca_path else None,
                },
            )
            return resolved

    def _resolve(self, context: TrustContext) -> ResolvedTrust:
        if context.bootstrap:
            if context.ca_path is not None:
                raise ConfigurationError(
                    "bootstrap fetches the CA certificate and cannot verify against "
                    f"a supplied CA ({context.ca_path}); drop one of the two"
                )
            return ResolvedTrust(VerificationMode.SKIP)

        if not context.ssl_verify:
            if context.ca_path is not None:
                raise ConfigurationError(
                    f"TLS verification is disabled but a CA path was supplied ({context.ca_path})"
                )
            logger.warning("TLS verification of the PKI backend is disabled")
            return ResolvedTrust(VerificationMode.SKIP)

        if context.ca_path is not None:
            if not context.ca_path.is_file():
                raise ConfigurationError(f"CA file not found: {context.ca_path}")
            return ResolvedTrust(VerificationMode.SUPPLIED_CA, context.ca_path)

        return ResolvedTrust(VerificationMode.SYSTEM_TRUST_STORE)
