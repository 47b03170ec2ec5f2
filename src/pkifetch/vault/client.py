"""HTTP client for the PKI backend (HashiCorp Vault's PKI secrets engine).

One request per call, no retries: issuing is not something to repeat blindly,
so retry policy belongs to whatever schedules the fetch.
"""

import logging
import ssl
from datetime import datetime, timezone

import httpx
from opentelemetry import trace
from pydantic import ValidationError as PydanticValidationError

from pkifetch.ca.crypto import split_pem_blocks
from pkifetch.domain.models import CertificateBundle, IssuanceRequest
from pkifetch.errors import (
    AuthenticationError,
    AuthorizationError,
    BackendUnavailable,
    FetchError,
    MalformedResponse,
    ValidationError,
)
from pkifetch.metrics import fetch_metrics
from pkifetch.provisioning.contract import ProvisioningContract
from pkifetch.services.trust_resolver import ResolvedTrust
from pkifetch.vault.schemas import ErrorResponse, IssueRequestBody, IssueResponse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class VaultPKIClient:
    """Requests CA certificates and leaf bundles from a PKI mount."""

    API_PREFIX = "/v1"
    TOKEN_HEADER = "X-Vault-Token"

    # Substrings of backend error messages that mean "the token itself is bad"
    TOKEN_ERROR_MARKERS = (
        "invalid token",
        "bad token",
        "token expired",
        "token is expired",
        "missing client token",
        "token not found",
    )

    def __init__(
        self,
        address: str,
        trust: ResolvedTrust,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.address = address.rstrip("/")
        self._origin = self._origin_of(httpx.URL(self.address))
        self._client = httpx.Client(
            base_url=self.address,
            verify=trust.httpx_verify(),
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
            event_hooks={"request": [self._guard_token]},
        )

    def __enter__(self) -> "VaultPKIClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def fetch_ca_pem(self, contract: ProvisioningContract) -> str:
        """Fetch the domain's CA certificate. Needs no token.

        Raises:
            BackendUnavailable, ValidationError, MalformedResponse
        """
        response = self._send("GET", contract.ca_pem_path, endpoint="ca_pem")

        blocks = split_pem_blocks(response.text)
        if not blocks:
            raise self._record(MalformedResponse(f"{contract.ca_pem_path} returned no PEM data"))
        return "\n".join(blocks)

    def issue_certificate(
        self,
        contract: ProvisioningContract,
        token: str,
        request: IssuanceRequest,
    ) -> CertificateBundle:
        """Ask the issuance role for a fresh key/certificate pair.

        Raises:
            AuthenticationError, AuthorizationError, ValidationError,
            BackendUnavailable, MalformedResponse
        """
        body = IssueRequestBody(
            common_name=request.common_name,
            ttl=request.ttl,
            alt_names=",".join(sorted(request.alt_names)) or None,
            ip_sans=",".join(sorted(request.ip_sans)) or None,
        )

        response = self._send(
            "POST",
            contract.issue_path,
            endpoint="issue",
            json=body.model_dump(exclude_none=True),
            headers={self.TOKEN_HEADER: token},
        )

        return self._parse_bundle(response, contract.issue_path)

    def _send(self, method: str, path: str, endpoint: str, **kwargs) -> httpx.Response:
        with tracer.start_as_current_span(f"VaultPKIClient.{endpoint}") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("vault.path", path)
            fetch_metrics.record_backend_request(endpoint)

            try:
                response = self._client.request(method, f"{self.API_PREFIX}/{path}", **kwargs)
            except httpx.TimeoutException as e:
                raise self._record(
                    BackendUnavailable(f"Timed out waiting for {self.address}: {e}")
                ) from e
            except httpx.TransportError as e:
                raise self._record(BackendUnavailable(self._describe_transport_error(e))) from e

            span.set_attribute("http.status_code", response.status_code)
            logger.debug(
                "backend_response",
                extra={"path": path, "status_code": response.status_code},
            )

            if not response.is_success:
                raise self._record(self._classify(response, path))
            return response

    def _classify(self, response: httpx.Response, path: str) -> FetchError:
        """Map a failed backend response onto the error taxonomy."""
        status = response.status_code
        errors = self._error_messages(response)
        detail = "; ".join(errors) or response.reason_phrase
        lowered = [message.lower() for message in errors]

        def has_token_marker() -> bool:
            return any(marker in text for text in lowered for marker in self.TOKEN_ERROR_MARKERS)

        if status == 401 or (status == 403 and has_token_marker()):
            return AuthenticationError(
                f"Token rejected by {self.address}: {detail}", status_code=status, errors=errors
            )
        if status == 403:
            return AuthorizationError(
                f"Token is not permitted to use {path}: {detail}", status_code=status, errors=errors
            )
        if status == 429 or status >= 500:
            return BackendUnavailable(
                f"Backend unavailable ({status}): {detail}", status_code=status, errors=errors
            )
        if status == 404:
            return ValidationError(
                f"{path} not found; is the domain provisioned? {detail}",
                status_code=status,
                errors=errors,
            )
        if 400 <= status < 500:
            return ValidationError(
                f"Request rejected ({status}): {detail}", status_code=status, errors=errors
            )
        return MalformedResponse(
            f"Unexpected response status {status} from {path}", status_code=status, errors=errors
        )

    @staticmethod
    def _error_messages(response: httpx.Response) -> list[str]:
        try:
            errors = ErrorResponse.model_validate(response.json()).errors
        except (ValueError, PydanticValidationError):
            return []
        # Multi-error bodies arrive as "2 errors occurred:\n\t* ..."
        return [" ".join(message.split()) for message in errors]

    def _parse_bundle(self, response: httpx.Response, path: str) -> CertificateBundle:
        try:
            payload = IssueResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            raise self._record(
                MalformedResponse(f"Unexpected payload from {path}: {e}", response.status_code)
            ) from e

        for warning in payload.warnings or []:
            logger.warning("Backend warning: %s", warning)

        data = payload.data
        leaf_blocks = split_pem_blocks(data.certificate)
        key_blocks = split_pem_blocks(data.private_key)
        if not leaf_blocks or not key_blocks:
            raise self._record(MalformedResponse(f"{path} returned no PEM certificate or key"))

        chain_sources = data.ca_chain or ([data.issuing_ca] if data.issuing_ca else [])
        chain = tuple(block for entry in chain_sources for block in split_pem_blocks(entry))
        if not chain:
            raise self._record(MalformedResponse(f"{path} returned no CA chain"))

        expiration = (
            datetime.fromtimestamp(data.expiration, tz=timezone.utc)
            if data.expiration is not None
            else None
        )

        return CertificateBundle(
            leaf_certificate=leaf_blocks[0],
            private_key=key_blocks[0],
            ca_chain=chain,
            serial_number=data.serial_number,
            private_key_type=data.private_key_type,
            expiration=expiration,
        )

    @staticmethod
    def _origin_of(url: httpx.URL) -> tuple[str, str, int | None]:
        return url.scheme, url.host, url.port

    def _guard_token(self, request: httpx.Request) -> None:
        """Request hook: the token only ever goes to the configured origin, redirects included."""
        if self.TOKEN_HEADER in request.headers and self._origin_of(request.url) != self._origin:
            raise self._record(
                BackendUnavailable(
                    f"{self.address} redirected to {request.url.host}; refusing to send the "
                    "token to another host, point --vault-address at it directly"
                )
            )

    def _describe_transport_error(self, error: httpx.TransportError) -> str:
        cause: BaseException | None = error
        while cause is not None:
            if isinstance(cause, ssl.SSLCertVerificationError):
                return (
                    f"TLS verification of {self.address} failed ({cause.verify_message}); "
                    "bootstrap the CA first or pass --ca-path"
                )
            cause = cause.__cause__ or cause.__context__
        return f"Cannot reach {self.address}: {error}"

    @staticmethod
    def _record(error: FetchError) -> FetchError:
        fetch_metrics.record_backend_error(error.category)
        return error
