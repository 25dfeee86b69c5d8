"""Tests for DomainKeeper CLI."""

from __future__ import annotations

import json
import os
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from conftest import CNAME_TARGET

from domainkeeper.cli import main


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def cli_services(services):
    with patch("domainkeeper.cli.build_services", return_value=services):
        yield services


class TestCLIBasics:
    """Basic CLI tests."""

    def test_main_with_help(self, runner):
        """Test --help shows the command groups."""
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "Manage tenant custom domains" in result.output
        assert "domain" in result.output
        assert "subdomain" in result.output

    def test_version_command(self, runner):
        """Test version command."""
        result = runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert "Custom domains, verified and kept healthy" in result.output
        assert "Version:" in result.output
        assert "Python:" in result.output


class TestConfigCommand:
    """Tests for config show."""

    def test_show_json(self, runner):
        """Test config show --json prints every section."""
        result = runner.invoke(main, ["config", "show", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert set(data) == {"platform", "proxy", "provider", "lifecycle", "reconciler", "storage"}

    def test_show_section(self, runner):
        """Test --section narrows the output."""
        result = runner.invoke(main, ["config", "show", "--json", "--section", "lifecycle"])

        assert result.exit_code == 0
        assert list(json.loads(result.output)) == ["lifecycle"]

    def test_show_unknown_section(self, runner):
        """Test an unknown section exits with an error."""
        result = runner.invoke(main, ["config", "show", "--section", "tunnels"])

        assert result.exit_code == 1
        assert "Unknown section" in result.output

    def test_config_file_applied(self, runner, tmp_path):
        """Test --config exports file settings before the command runs."""
        path = tmp_path / "domainkeeper.yaml"
        path.write_text("reconciler:\n  suspend_threshold: 9\n")

        with patch.dict(os.environ, {}):
            os.environ.pop("DOMAINKEEPER_SUSPEND_THRESHOLD", None)
            result = runner.invoke(
                main, ["--config", str(path), "config", "show", "--json", "-s", "reconciler"]
            )

        assert result.exit_code == 0
        assert json.loads(result.output)["reconciler"]["suspend_threshold"] == 9


class TestDomainCommands:
    """Tests for the domain command group."""

    def test_add_prints_instructions(self, runner, cli_services):
        """Test domain add shows the DNS record to create."""
        result = runner.invoke(
            main, ["domain", "add", "shop.example.com", "-t", "tenant-1", "--target-id", "42"]
        )

        assert result.exit_code == 0
        assert "Domain Registered" in result.output
        assert CNAME_TARGET in result.output
        assert "_platform-verify.shop.example.com" in result.output

    def test_add_invalid_hostname(self, runner, cli_services):
        """Test a rejected hostname exits 1."""
        result = runner.invoke(main, ["domain", "add", "localhost", "-t", "tenant-1", "--target-id", "42"])

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_list_json(self, runner, cli_services):
        """Test domain list --json."""
        runner.invoke(main, ["domain", "add", "shop.example.com", "-t", "tenant-1", "--target-id", "42"])

        result = runner.invoke(main, ["domain", "list", "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [d["hostname"] for d in data] == ["shop.example.com"]
        assert data[0]["status"] == "awaiting_dns"

    def test_list_empty(self, runner, cli_services):
        """Test domain list with no domains."""
        result = runner.invoke(main, ["domain", "list"])

        assert result.exit_code == 0
        assert "No domains registered" in result.output

    def test_check_dns_failure_exits_1(self, runner, cli_services):
        """Test domain check-dns reports a failed check."""
        runner.invoke(main, ["domain", "add", "shop.example.com", "-t", "tenant-1", "--target-id", "42"])

        result = runner.invoke(main, ["domain", "check-dns", "shop.example.com"])

        assert result.exit_code == 1
        assert "DNS Check Failed" in result.output
        assert "NO_DNS_RECORDS" in result.output

    def test_allowed_denied(self, runner, cli_services):
        """Test domain allowed for an unknown hostname."""
        result = runner.invoke(main, ["domain", "allowed", "unknown.example.com"])

        assert result.exit_code == 1
        assert "denied" in result.output

    def test_status_unknown(self, runner, cli_services):
        """Test domain status for an unknown hostname."""
        result = runner.invoke(main, ["domain", "status", "unknown.example.com"])

        assert result.exit_code == 1
        assert "not found" in result.output.lower()

    def test_remove(self, runner, cli_services):
        """Test domain remove -y."""
        runner.invoke(main, ["domain", "add", "shop.example.com", "-t", "tenant-1", "--target-id", "42"])

        result = runner.invoke(main, ["domain", "remove", "shop.example.com", "-y"])

        assert result.exit_code == 0
        assert "Domain removed" in result.output
        cli_services.domains.proxy.remove_route.assert_awaited_once_with("shop.example.com")


class TestSubdomainCommands:
    """Tests for the subdomain command group."""

    def test_register_and_list(self, runner, cli_services):
        """Test subdomain register followed by list --json."""
        result = runner.invoke(
            main, ["subdomain", "register", "myshop", "-n", "shops", "--target-id", "42", "-t", "tenant-1"]
        )

        assert result.exit_code == 0
        assert "myshop.shops.platform.io" in result.output
        assert "tenant-1" in result.output

        listed = runner.invoke(main, ["subdomain", "list", "--json"])
        assert [s["slug"] for s in json.loads(listed.output)] == ["myshop"]

    def test_register_bad_namespace(self, runner, cli_services):
        """Test click rejects an unknown namespace."""
        result = runner.invoke(main, ["subdomain", "register", "myshop", "-n", "castles", "--target-id", "42"])

        assert result.exit_code == 2


class TestReconcileCommand:
    """Tests for the reconcile command."""

    def test_reconcile_prints_counters(self, runner, cli_services):
        """Test reconcile runs one sweep and prints its counters."""
        result = runner.invoke(main, ["reconcile"])

        assert result.exit_code == 0
        assert "Reconciliation" in result.output
        assert "subdomains checked" in result.output

    def test_exclusive_flags(self, runner):
        """Test --domains-only and --subdomains-only together."""
        result = runner.invoke(main, ["reconcile", "--domains-only", "--subdomains-only"])

        assert result.exit_code == 1
