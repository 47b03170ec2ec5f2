"""End-to-end tests for the pki-fetch command line against the fake backend."""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest

from conftest import DOMAIN, EXPIRED_TOKEN, VALID_TOKEN
from pkifetch.cli import EXIT_FAILURE, EXIT_OK, EXIT_UNEXPECTED, build_config, build_parser, main
from pkifetch.domain.states import FetchMode
from shared.config import Settings
from shared.logging import setup_logging

ADDRESS = "https://vault.example.com:8200"


@pytest.fixture(autouse=True)
def cli_settings():
    """Isolate the CLI from the caller's environment and from global log handlers."""
    test_settings = Settings(
        _env_file=None,
        VAULT_ADDR=None,
        VAULT_CACERT=None,
        VAULT_TIMEOUT=None,
        TELEMETRY_CONSOLE_EXPORT=False,
    )
    with patch("pkifetch.cli.settings", test_settings), patch(
        "pkifetch.cli.setup_logging", return_value=MagicMock()
    ):
        yield test_settings


def issue_argv(output_dir, token=VALID_TOKEN, *extra):
    argv = [
        "--component", "web",
        "--domain", DOMAIN,
        "--common-name", "svc1.example.com",
        "--ttl", "8760h",
        "--vault-address", ADDRESS,
        "--no-ssl-verify",
        "--output-dir", str(output_dir),
    ]
    if token:
        argv += ["--token", token]
    return argv + list(extra)


class TestIssue:
    """Tests for the normal fetch path."""

    def test_issue_prints_paths_and_exits_zero(self, tmp_path, fake_vault, capsys):
        exit_code = main(issue_argv(tmp_path), transport=fake_vault.transport)

        out = capsys.readouterr().out.splitlines()
        assert exit_code == EXIT_OK
        assert out == [
            str(tmp_path / "web-svc1.example.com.key.pem"),
            str(tmp_path / "web-svc1.example.com.cert.pem"),
            str(tmp_path / "web-svc1.example.com.chain.pem"),
        ]
        assert fake_vault.issued[0]["request"]["common_name"] == "svc1.example.com"

    def test_expired_token_exits_one_without_files(self, tmp_path, fake_vault, capsys):
        exit_code = main(issue_argv(tmp_path, EXPIRED_TOKEN), transport=fake_vault.transport)

        captured = capsys.readouterr()
        assert exit_code == EXIT_FAILURE
        assert captured.out == ""
        assert captured.err.startswith("error: Token rejected")
        assert len(captured.err.strip().splitlines()) == 1
        assert list(tmp_path.iterdir()) == []

    def test_missing_token_is_configuration_error(self, tmp_path, fake_vault, capsys):
        exit_code = main(issue_argv(tmp_path, None), transport=fake_vault.transport)

        assert exit_code == EXIT_FAILURE
        assert "token is required" in capsys.readouterr().err
        assert fake_vault.requests == []

    def test_unexpected_error_exits_two_with_traceback(self, tmp_path, fake_vault, capsys):
        with patch("pkifetch.cli.FetchService") as service_cls:
            service_cls.return_value.run.side_effect = RuntimeError("kaboom")
            exit_code = main(issue_argv(tmp_path), transport=fake_vault.transport)

        err = capsys.readouterr().err
        assert exit_code == EXIT_UNEXPECTED
        assert "unexpected failure" in err
        assert "Traceback" in err
        assert "kaboom" in err

    def test_missing_common_name_is_usage_error(self, tmp_path):
        argv = ["--component", "web", "--domain", DOMAIN, "--token", VALID_TOKEN]

        with pytest.raises(SystemExit) as exc_info:
            main(argv)

        assert exc_info.value.code == 2


class TestBootstrap:
    def test_bootstrap_without_token(self, tmp_path, fake_vault, capsys):
        argv = [
            "--component", "web",
            "--domain", DOMAIN,
            "--common-name", "svc1.example.com",
            "--vault-address", ADDRESS,
            "--bootstrap-ca",
            "--output-dir", str(tmp_path),
        ]

        exit_code = main(argv, transport=fake_vault.transport)

        assert exit_code == EXIT_OK
        assert capsys.readouterr().out.strip() == str(tmp_path / "example.com-ca.pem")
        assert fake_vault.issued == []

    def test_bootstrap_with_ca_path_is_rejected(self, tmp_path, fake_vault, capsys):
        ca_file = tmp_path / "ca.pem"
        ca_file.write_text(fake_vault.ca_pem + "\n")
        argv = [
            "--component", "web",
            "--domain", DOMAIN,
            "--common-name", "svc1.example.com",
            "--vault-address", ADDRESS,
            "--bootstrap-ca",
            "--ca-path", str(ca_file),
        ]

        exit_code = main(argv, transport=fake_vault.transport)

        assert exit_code == EXIT_FAILURE
        assert "bootstrap" in capsys.readouterr().err
        assert fake_vault.requests == []

    def test_bootstrap_help_mentions_ca_path_conflict(self):
        """Test that --bootstrap-ca documents that --ca-path is rejected with it."""
        action = next(a for a in build_parser()._actions if a.dest == "bootstrap_ca")

        assert "--ca-path is rejected" in action.help


class TestShowContract:
    def test_show_contract_needs_no_backend(self, capsys):
        exit_code = main(["--component", "web", "--domain", DOMAIN, "--show-contract"])

        contract = json.loads(capsys.readouterr().out)
        assert exit_code == EXIT_OK
        assert contract["pki/example.com/roles/cert"]["ou"] == ["web"]
        assert "sys/policies/acl/example.com/cert" in contract


class TestBuildConfig:
    """Tests for resolving flags and environment defaults into a FetchConfig."""

    def parse(self, *argv):
        return build_parser().parse_args(["--component", "web", "--domain", DOMAIN, *argv])

    def test_environment_defaults(self, cli_settings, tmp_path):
        cli_settings.VAULT_ADDR = ADDRESS
        cli_settings.VAULT_CACERT = str(tmp_path / "ca.pem")
        cli_settings.VAULT_TIMEOUT = 5.0

        config = build_config(self.parse("--common-name", "a.example.com"))

        assert config.vault_address == ADDRESS
        assert config.trust.ca_path == tmp_path / "ca.pem"
        assert config.timeout == 5.0
        assert config.request.ttl == "8760h"

    def test_flags_override_environment(self, cli_settings):
        cli_settings.VAULT_ADDR = "https://other:8200"
        cli_settings.VAULT_TIMEOUT = 5.0

        config = build_config(
            self.parse("--vault-address", ADDRESS, "--timeout", "1.5", "--common-name", "a")
        )

        assert config.vault_address == ADDRESS
        assert config.timeout == 1.5

    @pytest.mark.parametrize("flag", ["--bootstrap-ca", "--no-ssl-verify"])
    def test_env_ca_path_ignored_without_verification(self, cli_settings, flag):
        cli_settings.VAULT_CACERT = "/etc/pki/ca.pem"

        config = build_config(self.parse(flag))

        assert config.trust.ca_path is None

    def test_sans_are_split(self):
        config = build_config(
            self.parse(
                "--common-name", "a.example.com",
                "--alt-names", "b.example.com, c.example.com,",
                "--ip-sans", "10.0.0.1",
            )
        )

        assert config.request.alt_names == frozenset({"b.example.com", "c.example.com"})
        assert config.request.ip_sans == frozenset({"10.0.0.1"})

    def test_bootstrap_mode(self):
        config = build_config(self.parse("--bootstrap-ca"))

        assert config.mode is FetchMode.BOOTSTRAP
        assert config.trust.ssl_verify is False


class TestLoggingLifecycle:
    def test_repeated_runs_leave_root_logger_unchanged(self, cli_settings, tmp_path, fake_vault):
        """Test that each run detaches the handlers it installed."""
        root = logging.getLogger()
        handlers_before, level_before = list(root.handlers), root.level
        try:
            with patch("pkifetch.cli.setup_logging", side_effect=setup_logging), \
                 patch("shared.logging.set_logger_provider"), \
                 patch("shared.logging.settings", cli_settings):
                for _ in range(2):
                    assert main(issue_argv(tmp_path), transport=fake_vault.transport) == EXIT_OK

            assert root.handlers == handlers_before
        finally:
            root.setLevel(level_before)
