"""Command-line entry point: ``pki-fetch``.

Exit codes:
    0  success
    1  classified failure (configuration, token, permissions, request
       rejected, backend unavailable, malformed response, filesystem)
    2  anything else; the full traceback goes to stderr
"""

import argparse
import json
import sys
import traceback
from pathlib import Path

import httpx
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider

from pkifetch import __version__
from pkifetch.domain.models import IssuanceRequest, TrustContext, split_csv
from pkifetch.errors import FetchError
from pkifetch.provisioning.contract import ProvisioningContract
from pkifetch.services.fetch_service import FetchConfig, FetchService
from shared.config import settings
from shared.logging import reset_logging, setup_logging
from shared.metrics import setup_metrics
from shared.tracing import setup_tracing


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNEXPECTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pki-fetch",
        description="Fetch a certificate/key pair (or bootstrap the CA) from a Vault PKI mount.",
    )
    parser.add_argument("--component", required=True, help="service category within the domain")
    parser.add_argument("--domain", required=True, help="PKI domain, mounted at pki/<domain>")
    parser.add_argument("--token", help="issuance token (not needed with --bootstrap-ca)")
    parser.add_argument("--common-name", help="certificate common name")
    parser.add_argument("--alt-names", help="comma-separated DNS subject alternative names")
    parser.add_argument("--ip-sans", help="comma-separated IP subject alternative names")
    parser.add_argument(
        "--ttl", default=settings.DEFAULT_TTL, help="requested lifetime (default: %(default)s)"
    )
    parser.add_argument("--vault-address", help="backend URL (default: $VAULT_ADDR)")
    parser.add_argument(
        "--no-ssl-verify", action="store_true", help="do not verify the backend's TLS certificate"
    )
    parser.add_argument(
        "--bootstrap-ca",
        action="store_true",
        help=(
            "fetch only the CA certificate, without TLS verification (implies --no-ssl-verify;"
            " an explicit --ca-path is rejected)"
        ),
    )
    parser.add_argument(
        "--output-dir", type=Path, default=Path("."), help="where to write key and certificates"
    )
    parser.add_argument(
        "--ca-output-dir", type=Path, help="where --bootstrap-ca writes the CA (default: --output-dir)"
    )
    parser.add_argument(
        "--ca-path", help="CA file to verify the backend against (default: $VAULT_CACERT)"
    )
    parser.add_argument(
        "--timeout", type=float, help="seconds to wait for the backend (default: no limit)"
    )
    parser.add_argument(
        "--show-contract",
        action="store_true",
        help="print the backend layout provisioning must create, then exit",
    )
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def build_config(args: argparse.Namespace) -> FetchConfig:
    """Turn parsed flags into an explicit FetchConfig.

    Environment defaults are resolved here and nowhere else.
    """
    ca_path = args.ca_path
    if ca_path is None and not (args.bootstrap_ca or args.no_ssl_verify):
        ca_path = settings.VAULT_CACERT

    return FetchConfig(
        vault_address=args.vault_address or settings.VAULT_ADDR,
        domain=args.domain,
        component=args.component,
        token=args.token,
        request=IssuanceRequest(
            common_name=args.common_name or "",
            ttl=args.ttl,
            alt_names=split_csv(args.alt_names),
            ip_sans=split_csv(args.ip_sans),
        ),
        trust=TrustContext.from_flags(
            bootstrap=args.bootstrap_ca,
            no_ssl_verify=args.no_ssl_verify,
            ca_path=ca_path,
        ),
        output_dir=args.output_dir,
        ca_output_dir=args.ca_output_dir,
        timeout=args.timeout if args.timeout is not None else settings.VAULT_TIMEOUT,
    )


def _setup_telemetry() -> list[MeterProvider | TracerProvider]:
    if not settings.TELEMETRY_CONSOLE_EXPORT:
        return []
    return [setup_tracing(settings.APP_NAME), setup_metrics(settings.APP_NAME)]


def main(argv: list[str] | None = None, transport: httpx.BaseTransport | None = None) -> int:
    """Run the CLI and return the exit code.

    ``transport`` replaces the HTTP transport (used by tests).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.common_name and not args.show_contract:
        parser.error("the following arguments are required: --common-name")

    log_provider = setup_logging("DEBUG" if args.debug else None)
    providers = _setup_telemetry()

    try:
        if args.show_contract:
            contract = ProvisioningContract(domain=args.domain, component=args.component)
            print(json.dumps(contract.as_dict(), indent=2, sort_keys=True))
            return EXIT_OK

        result = FetchService(build_config(args), transport=transport).run()
    except (FetchError, OSError) as e:
        print(f"error: {' '.join(str(e).split())}", file=sys.stderr)
        return EXIT_FAILURE
    except Exception as e:
        print("error: unexpected failure, details follow", file=sys.stderr)
        traceback.print_exception(e, file=sys.stderr)
        return EXIT_UNEXPECTED
    finally:
        for provider in providers:
            provider.shutdown()
        reset_logging()
        log_provider.shutdown()

    for path in result.paths:
        print(path)
    return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
