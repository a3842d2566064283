#tests/test_certificates.py

"""Test domain eligibility and certificate lifecycle."""

from datetime import datetime, timedelta, timezone

import pytest

from deployment_engine.certificates.domain import is_eligible_domain
from deployment_engine.certificates.service import (
    CertificateManager,
    ObtainOutcome,
    RenewOutcome,
    parse_certificates_output,
)
from deployment_engine.core.models import CertificateRecord, CertificateState, Outcome

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)

CERTBOT_OUTPUT = """\
Saving debug log to /var/log/letsencrypt/letsencrypt.log

- - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - -
Found the following certs:
  Certificate Name: ta.example.org
    Serial Number: 4a1b
    Key Type: ECDSA
    Domains: ta.example.org
    Expiry Date: 2026-12-20 10:22:31+00:00 (VALID: 80 days)
    Certificate Path: /etc/letsencrypt/live/ta.example.org/fullchain.pem
    Private Key Path: /etc/letsencrypt/live/ta.example.org/privkey.pem
  Certificate Name: other.example.org
    Domains: other.example.org
    Expiry Date: 2026-10-10 00:00:00+00:00 (VALID: 9 days)
- - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - - -
"""


@pytest.fixture
def manager(deployment, compose, stores, tmp_path):
    return CertificateManager(deployment, compose, stores["root"], nginx_dir=tmp_path / "nginx", now=lambda: NOW)


class TestDomainEligibility:
    """Test public CA eligibility."""

    @pytest.mark.parametrize("host", [
        "localhost",
        "127.0.0.1",
        "127.1.2.3",
        "192.168.1.5",
        "::1",
        "node.local",
        "app.test",
        "foo.example",
        "bar.invalid",
        "svc.localhost",
        "intranet",
        "",
        None,
    ])
    def test_rejected(self, host):
        """Test ineligible hosts."""
        assert is_eligible_domain(host) is False

    @pytest.mark.parametrize("host", ["ta.example.org", "veriscope.shyft.network", "TA.Example.COM", "127.example.org"])
    def test_accepted(self, host):
        """Test public hostnames."""
        assert is_eligible_domain(host) is True


class TestParseCertificates:
    """Test certbot output parsing."""

    def test_records(self):
        """Test names, paths and expiry are extracted."""
        records = parse_certificates_output(CERTBOT_OUTPUT)

        assert [r.domain for r in records] == ["ta.example.org", "other.example.org"]
        assert records[0].cert_path == "/etc/letsencrypt/live/ta.example.org/fullchain.pem"
        assert records[0].expires_at == datetime(2026, 12, 20, 10, 22, 31, tzinfo=timezone.utc)
        assert records[1].key_path == "/etc/letsencrypt/live/other.example.org/privkey.pem"

    def test_empty(self):
        """Test no certificates."""
        assert parse_certificates_output("No certificates found.") == []


class TestClassify:
    """Test the certificate state machine."""

    def _record(self, days):
        return CertificateRecord("ta.example.org", "c", "k", NOW + timedelta(days=days))

    def test_states(self, manager):
        """Test absent, valid, expiring soon and expired."""
        assert manager.classify(None) == CertificateState.ABSENT
        assert manager.classify(self._record(80)) == CertificateState.VALID
        assert manager.classify(self._record(29)) == CertificateState.EXPIRING_SOON
        assert manager.classify(self._record(-1)) == CertificateState.EXPIRED

    def test_inspect_is_rederived(self, manager, executor):
        """Test state comes from certbot every time."""
        executor.when("certbot", "certificates", stdout=CERTBOT_OUTPUT)

        assert manager.current_state() == CertificateState.VALID
        assert manager.current_state() == CertificateState.VALID
        assert len(executor.commands_containing("certificates")) == 2


class TestObtain:
    """Test certificate issuance."""

    def test_ineligible_rejected_before_any_call(self, dev_deployment, compose, stores, executor):
        """Test rejection happens before contacting the authority."""
        manager = CertificateManager(dev_deployment, compose, stores["root"])

        result = manager.obtain("localhost")

        assert result.outcome == ObtainOutcome.REJECTED
        assert executor.calls == []

    def test_obtained(self, manager, executor, stores):
        """Test success records certificate paths."""
        executor.when("certbot", "certificates", stdout=CERTBOT_OUTPUT)

        result = manager.obtain()

        assert result.outcome == ObtainOutcome.OBTAINED
        assert stores["root"].get("SSL_CERT_PATH") == "/etc/letsencrypt/live/ta.example.org/fullchain.pem"
        certonly = executor.commands_containing("certonly")[0]
        assert "ta.example.org" in certonly
        assert "--webroot-path=/var/www/certbot" in certonly

    def test_proxy_must_start(self, manager, executor):
        """Test obtain fails when the challenge responder cannot start."""
        executor.when("up", "-d", "nginx", exit_code=1, stderr="port 80 in use")

        result = manager.obtain()

        assert result.outcome == ObtainOutcome.FAILED
        assert executor.commands_containing("certonly") == []

    def test_authority_failure(self, manager, executor):
        """Test authority errors are FAILED, not REJECTED."""
        executor.when("certonly", exit_code=1, stderr="Challenge failed for domain ta.example.org")

        result = manager.obtain()

        assert result.outcome == ObtainOutcome.FAILED
        assert "Challenge failed" in result.message


class TestRenew:
    """Test renewal and proxy reload."""

    def test_renewed_reloads_proxy(self, manager, executor):
        """Test reload only follows a real renewal."""
        executor.when("renew", stdout="Congratulations, all renewals succeeded")

        result = manager.renew()

        assert result.outcome == RenewOutcome.RENEWED
        assert result.proxy_reloaded
        assert executor.commands_containing("nginx", "-s", "reload")

    def test_not_due_does_not_reload(self, manager, executor):
        """Test a no-op renewal leaves the proxy alone."""
        executor.when("renew", stdout="Certificate not yet due for renewal\nNo renewals were attempted.")

        result = manager.renew()

        assert result.outcome == RenewOutcome.NOT_DUE
        assert not result.proxy_reloaded
        assert executor.commands_containing("reload") == []

    def test_failed(self, manager, executor):
        """Test a failing renewal."""
        executor.when("renew", exit_code=1, stderr="network down")

        result = manager.renew()

        assert result.outcome == RenewOutcome.FAILED
        assert executor.commands_containing("reload") == []

    def test_renews_only_named_certificate(self, manager, executor):
        """Test a domain limits renewal to that certificate."""
        manager.renew("other.example.org")

        renew = executor.commands_containing("certbot", "renew")
        assert len(renew) == 1
        argv = list(renew[0])
        assert argv[argv.index("--cert-name") + 1] == "other.example.org"

    def test_renews_all_without_domain(self, manager, executor):
        """Test no domain renews every certificate."""
        manager.renew()

        assert executor.commands_containing("--cert-name") == []

    def test_development_not_due(self, dev_deployment, compose, stores, executor):
        """Test development mode never renews."""
        result = CertificateManager(dev_deployment, compose, stores["root"]).renew()

        assert result.outcome == RenewOutcome.NOT_DUE
        assert executor.calls == []


class TestConfigureProxy:
    """Test reverse proxy configuration."""

    def test_http_only_without_certificate(self, manager, tmp_path):
        """Test missing certificate continues HTTP-only."""
        result = manager.configure_proxy()

        assert result.outcome == Outcome.SUCCESS
        assert not result.ssl_enabled
        assert not (tmp_path / "nginx" / "nginx-ssl.conf").exists()

    def test_ssl_config_written(self, manager, executor, stores, tmp_path):
        """Test an existing certificate enables HTTPS."""
        executor.when("certbot", "certificates", stdout=CERTBOT_OUTPUT)

        result = manager.configure_proxy()

        assert result.ssl_enabled
        config = (tmp_path / "nginx" / "nginx-ssl.conf").read_text()
        assert "server_name ta.example.org;" in config
        assert "$request_uri" in config
        assert stores["root"].get("SSL_KEY_PATH") == "/etc/letsencrypt/live/ta.example.org/privkey.pem"

    def test_auto_renewal_profile(self, manager, executor):
        """Test auto renewal starts certbot under the production profile."""
        assert manager.setup_auto_renewal() == Outcome.SUCCESS
        assert executor.commands_containing("--profile", "production", "certbot")
