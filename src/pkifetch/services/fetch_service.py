"""Fetch orchestrator: trust resolution, one backend request, artifact writes."""

import ipaddress
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from uuid import UUID

import httpx
from opentelemetry import trace

from pkifetch.ca.crypto import CertificateInfo, CryptoError, inspect_bundle, load_ca_certificate
from pkifetch.domain.models import FetchRun, IssuanceRequest, TrustContext
from pkifetch.domain.state_machines import FetchStateMachine
from pkifetch.domain.states import FetchMode, VerificationMode
from pkifetch.errors import ConfigurationError, FetchError, MalformedResponse, UnexpectedError
from pkifetch.metrics import fetch_metrics
from pkifetch.provisioning.contract import ProvisioningContract
from pkifetch.services.output_writer import OutputWriter
from pkifetch.services.trust_resolver import ResolvedTrust, TrustResolver
from pkifetch.vault.client import VaultPKIClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# A domain becomes one path segment of the mount
DOMAIN_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
# Backend duration: whole seconds, or numbers with units (1h30m, 1.5h, 720h0m0s, 30d)
TTL_RE = re.compile(r"^(?:[0-9]+|(?:[0-9]+(?:\.[0-9]+)?(?:ns|us|µs|ms|s|m|h|d))+)$")


@dataclass(frozen=True)
class FetchConfig:
    """Everything one fetch needs. Built once, at the CLI boundary."""

    vault_address: str | None
    domain: str
    component: str
    request: IssuanceRequest
    trust: TrustContext = field(default_factory=TrustContext)
    token: str | None = None
    output_dir: Path = Path(".")
    ca_output_dir: Path | None = None
    timeout: float | None = None

    @property
    def mode(self) -> FetchMode:
        return FetchMode.BOOTSTRAP if self.trust.bootstrap else FetchMode.ISSUE


@dataclass
class FetchResult:
    run_id: UUID
    mode: FetchMode
    verification_mode: VerificationMode
    paths: list[Path]
    certificate: CertificateInfo | None = None


def validate_config(config: FetchConfig) -> None:
    """Reject inconsistent settings before anything touches the network.

    Raises:
        ConfigurationError: On the first problem found.
    """
    if not config.vault_address:
        raise ConfigurationError("No backend address: pass --vault-address or set VAULT_ADDR")
    try:
        url = httpx.URL(config.vault_address)
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"Invalid backend address {config.vault_address!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(
            f"Backend address must be an http(s) URL, got {config.vault_address!r}"
        )

    if not DOMAIN_RE.match(config.domain or ""):
        raise ConfigurationError(f"Invalid domain {config.domain!r}")
    if not (config.component or "").strip():
        raise ConfigurationError("A component is required")

    if config.mode is FetchMode.BOOTSTRAP:
        return

    if not config.token:
        raise ConfigurationError("A token is required unless bootstrapping the CA")

    request = config.request
    if not request.common_name.strip():
        raise ConfigurationError("A common name is required")
    if not TTL_RE.fullmatch(request.ttl):
        raise ConfigurationError(
            f"Invalid ttl {request.ttl!r}; use e.g. 8760h, 1h30m, 30d or 3600"
        )
    for ip_san in request.ip_sans:
        try:
            ipaddress.ip_address(ip_san)
        except ValueError as e:
            raise ConfigurationError(f"Invalid IP SAN {ip_san!r}") from e


class FetchService:
    """Runs one fetch: bootstrap (CA only) or issue (key, certificate, chain).

    Stateless across runs; each call to ``run`` is independent.
    """

    def __init__(
        self,
        config: FetchConfig,
        trust_resolver: TrustResolver | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.trust_resolver = trust_resolver or TrustResolver()
        self._transport = transport

    def run(self) -> FetchResult:
        """Execute the fetch.

        Raises:
            FetchError: Classified failures (configuration, backend, payload).
            OSError: Filesystem failures while writing artifacts, unmodified.
            UnexpectedError: Anything else, with the original as its cause.
        """
        config = self.config
        fetch_run = FetchRun(mode=config.mode)
        machine = FetchStateMachine(fetch_run)
        start_time = time.monotonic()

        with tracer.start_as_current_span("FetchService.run") as span:
            span.set_attribute("run_id", str(fetch_run.run_id))
            span.set_attribute("mode", fetch_run.mode.value)
            span.set_attribute("domain", config.domain)

            try:
                result = self._run(fetch_run, machine)
            except FetchError as e:
                self._finish_failed(machine, fetch_run, e.category, start_time)
                raise
            except OSError:
                self._finish_failed(machine, fetch_run, "io_error", start_time)
                raise
            except Exception as e:
                self._finish_failed(machine, fetch_run, UnexpectedError.category, start_time)
                raise UnexpectedError(f"Unexpected failure during {fetch_run.mode} fetch: {e}") from e

            fetch_metrics.record_fetch(
                fetch_run.mode.value, "success", time.monotonic() - start_time
            )
            return result

    def _run(self, fetch_run: FetchRun, machine: FetchStateMachine) -> FetchResult:
        config = self.config
        validate_config(config)

        contract = ProvisioningContract(domain=config.domain, component=config.component)
        trust = self.trust_resolver.resolve(config.trust)
        machine.trust_resolved()

        with VaultPKIClient(
            config.vault_address or "",
            trust,
            timeout=config.timeout,
            transport=self._transport,
        ) as client:
            if fetch_run.mode is FetchMode.BOOTSTRAP:
                return self._bootstrap(fetch_run, machine, client, contract, trust)
            return self._issue(fetch_run, machine, client, contract, trust)

    def _bootstrap(
        self,
        fetch_run: FetchRun,
        machine: FetchStateMachine,
        client: VaultPKIClient,
        contract: ProvisioningContract,
        trust: ResolvedTrust,
    ) -> FetchResult:
        config = self.config
        if config.token:
            logger.debug("token_ignored", extra={"reason": "bootstrap needs no token"})

        logger.info("Fetching CA certificate for %s from %s", config.domain, client.address)
        ca_pem = client.fetch_ca_pem(contract)
        machine.received()

        try:
            load_ca_certificate(ca_pem)
        except CryptoError as e:
            raise MalformedResponse(f"{contract.ca_pem_path} returned an invalid certificate: {e}") from e

        writer = OutputWriter(config.ca_output_dir or config.output_dir)
        path = writer.write_ca(ca_pem, config.domain)
        machine.artifacts_written()

        return FetchResult(
            run_id=fetch_run.run_id,
            mode=fetch_run.mode,
            verification_mode=trust.mode,
            paths=[path],
        )

    def _issue(
        self,
        fetch_run: FetchRun,
        machine: FetchStateMachine,
        client: VaultPKIClient,
        contract: ProvisioningContract,
        trust: ResolvedTrust,
    ) -> FetchResult:
        config = self.config
        request = config.request

        logger.info(
            "Requesting certificate for %s (component %s) from %s",
            request.common_name,
            config.component,
            client.address,
        )
        bundle = client.issue_certificate(contract, config.token or "", request)
        machine.received()

        try:
            info = inspect_bundle(bundle)
        except CryptoError as e:
            raise MalformedResponse(f"{contract.issue_path} returned an unusable bundle: {e}") from e

        writer = OutputWriter(config.output_dir)
        paths = writer.write_bundle(bundle, config.component, request.common_name)
        machine.artifacts_written()

        logger.info(
            "certificate_fetched",
            extra={
                "run_id": str(fetch_run.run_id),
                "serial": info.serial_number,
                "thumbprint": info.thumbprint,
                "not_after": info.not_after.isoformat(),
            },
        )

        return FetchResult(
            run_id=fetch_run.run_id,
            mode=fetch_run.mode,
            verification_mode=trust.mode,
            paths=paths.as_list(),
            certificate=info,
        )

    @staticmethod
    def _finish_failed(
        machine: FetchStateMachine, fetch_run: FetchRun, outcome: str, start_time: float
    ) -> None:
        machine.fail()
        fetch_metrics.record_fetch(fetch_run.mode.value, outcome, time.monotonic() - start_time)
