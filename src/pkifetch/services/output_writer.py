"""Persist fetched certificate material to disk.

Every artifact is staged in a temp file next to its final name, fsynced and
then renamed into place, so an interrupted run never leaves a half-written key
or certificate at the expected path. Filesystem errors propagate unchanged.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path

from opentelemetry import trace

from pkifetch.domain.models import CertificateBundle
from pkifetch.domain.states import ArtifactKind
from pkifetch.metrics import fetch_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# "-" joins component and common name, so it is encoded inside either part
_ENCODED_NAME_CHARS = re.compile(r"[^A-Za-z0-9._]")


def _percent_encode(match: re.Match) -> str:
    return "".join(f"%{byte:02X}" for byte in match.group(0).encode("utf-8"))


def safe_name(value: str) -> str:
    """Turn a component or common name into a file-name fragment.

    Every character outside ``[A-Za-z0-9._]`` is percent-encoded as UTF-8
    (``*.example.com`` -> ``%2A.example.com``), so distinct names never share
    a file.
    """
    return _ENCODED_NAME_CHARS.sub(_percent_encode, value)


@dataclass(frozen=True)
class BundlePaths:
    private_key: Path
    certificate: Path
    ca_chain: Path

    def as_list(self) -> list[Path]:
        return [self.private_key, self.certificate, self.ca_chain]


class OutputWriter:
    """Writes bundles and CA certificates under one output directory."""

    KEY_MODE = 0o600
    PUBLIC_MODE = 0o644
    DIR_MODE = 0o755

    def __init__(self, output_dir: str | Path) -> None:
        self.output_dir = Path(output_dir)

    def bundle_paths(self, component: str, common_name: str) -> BundlePaths:
        stem = f"{safe_name(component)}-{safe_name(common_name)}"
        return BundlePaths(
            private_key=self.output_dir / f"{stem}.key.pem",
            certificate=self.output_dir / f"{stem}.cert.pem",
            ca_chain=self.output_dir / f"{stem}.chain.pem",
        )

    def ca_path(self, domain: str) -> Path:
        return self.output_dir / f"{safe_name(domain)}-ca.pem"

    def write_bundle(self, bundle: CertificateBundle, component: str, common_name: str) -> BundlePaths:
        """Write key, leaf certificate and chain.

        All three files are staged before any of them is renamed into place.
        """
        paths = self.bundle_paths(component, common_name)
        artifacts = [
            (ArtifactKind.PRIVATE_KEY, paths.private_key, bundle.private_key + "\n", self.KEY_MODE),
            (
                ArtifactKind.CERTIFICATE,
                paths.certificate,
                bundle.leaf_certificate + "\n",
                self.PUBLIC_MODE,
            ),
            (
                ArtifactKind.CA_CHAIN,
                paths.ca_chain,
                "\n".join(bundle.ca_chain) + "\n",
                self.PUBLIC_MODE,
            ),
        ]

        with tracer.start_as_current_span("OutputWriter.write_bundle") as span:
            span.set_attribute("component", component)
            self._ensure_dir()
            self._commit(artifacts)

        logger.info(
            "Wrote key, certificate and chain for %s to %s", common_name, self.output_dir
        )
        return paths

    def write_ca(self, ca_pem: str, domain: str) -> Path:
        """Write the CA certificate fetched during bootstrap."""
        path = self.ca_path(domain)

        with tracer.start_as_current_span("OutputWriter.write_ca"):
            self._ensure_dir()
            self._commit([(ArtifactKind.CA_CERTIFICATE, path, ca_pem + "\n", self.PUBLIC_MODE)])

        logger.info("Wrote CA certificate for %s to %s", domain, path)
        return path

    def _ensure_dir(self) -> None:
        self.output_dir.mkdir(mode=self.DIR_MODE, parents=True, exist_ok=True)

    def _commit(self, artifacts: list[tuple[ArtifactKind, Path, str, int]]) -> None:
        staged: list[tuple[ArtifactKind, str, Path]] = []
        try:
            for kind, path, content, mode in artifacts:
                staged.append((kind, self._stage(path, content, mode), path))
        except BaseException:
            for _, temp_name, _ in staged:
                self._discard(temp_name)
            raise

        for index, (kind, temp_name, path) in enumerate(staged):
            try:
                os.replace(temp_name, path)
            except BaseException:
                for _, leftover, _ in staged[index:]:
                    self._discard(leftover)
                raise
            fetch_metrics.record_artifact_written(kind.value)
            logger.debug("artifact_written", extra={"kind": kind.value, "path": str(path)})

    def _stage(self, path: Path, content: str, mode: int) -> str:
        """Write content to a temp file in the target directory; return its name."""
        fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                # mkstemp creates 0600; public files are widened explicitly
                os.fchmod(f.fileno(), mode)
                f.write(content.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            self._discard(temp_name)
            raise
        return temp_name

    @staticmethod
    def _discard(temp_name: str) -> None:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
