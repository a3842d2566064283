# deployment_engine/certificates/service.py
"""
Certificate Lifecycle Manager.

Certificate state is always re-derived from certbot's own store; nothing
here caches it. The reverse proxy is reloaded only after a renewal that
actually renewed something.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from deployment_engine.certificates.domain import is_eligible_domain
from deployment_engine.certificates.proxy import render_ssl_config
from deployment_engine.core.errors import CredentialStoreError
from deployment_engine.core.models import (
    CertificateRecord,
    CertificateState,
    Deployment,
    Outcome,
)

logger = logging.getLogger(__name__)

LIVE_DIR = "/etc/letsencrypt/live"
WEBROOT = "/var/www/certbot"
EXPIRING_SOON_DAYS = 30


class ObtainOutcome(Enum):
    OBTAINED = "obtained"
    REJECTED = "rejected"
    FAILED = "failed"


class RenewOutcome(Enum):
    RENEWED = "renewed"
    NOT_DUE = "not_due"
    FAILED = "failed"


@dataclass
class ObtainResult:
    outcome: ObtainOutcome
    message: str
    record: Optional[CertificateRecord] = None


@dataclass
class RenewResult:
    outcome: RenewOutcome
    message: str
    proxy_reloaded: bool = False


@dataclass
class ProxyConfigResult:
    outcome: Outcome
    ssl_enabled: bool
    message: str
    config_path: Optional[Path] = None


def default_paths(domain: str):
    return f"{LIVE_DIR}/{domain}/fullchain.pem", f"{LIVE_DIR}/{domain}/privkey.pem"


def _parse_expiry(text: str) -> Optional[datetime]:
    # "2026-01-14 10:22:31+00:00 (VALID: 89 days)"
    stamp = text.split("(")[0].strip()
    try:
        parsed = datetime.fromisoformat(stamp)
    except ValueError:
        try:
            parsed = datetime.strptime(stamp[:10], "%Y-%m-%d")
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_certificates_output(output: str) -> List[CertificateRecord]:
    """Extract records from ``certbot certificates`` output."""
    records = []
    current = None

    def flush():
        if current and current.get("name"):
            cert_path, key_path = default_paths(current["name"])
            records.append(CertificateRecord(
                domain=current["name"],
                cert_path=current.get("cert_path", cert_path),
                key_path=current.get("key_path", key_path),
                expires_at=current.get("expires_at"),
            ))

    for raw in output.splitlines():
        line = raw.strip()
        if line.startswith("Certificate Name:"):
            flush()
            current = {"name": line.split(":", 1)[1].strip()}
        elif current is None:
            continue
        elif line.startswith("Domains:"):
            current["domains"] = line.split(":", 1)[1].split()
        elif line.startswith("Expiry Date:"):
            current["expires_at"] = _parse_expiry(line.split(":", 1)[1])
        elif line.startswith("Certificate Path:"):
            current["cert_path"] = line.split(":", 1)[1].strip()
        elif line.startswith("Private Key Path:"):
            current["key_path"] = line.split(":", 1)[1].strip()
    flush()
    return records


class CertificateManager:

    def __init__(
        self,
        deployment: Deployment,
        compose,
        root_store,
        nginx_dir: Optional[Path] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.deployment = deployment
        self.compose = compose
        self.root_store = root_store
        self.nginx_dir = Path(nginx_dir) if nginx_dir else None
        self._now = now

    # ============ INSPECTION ============

    def inspect(self, domain: Optional[str] = None) -> Optional[CertificateRecord]:
        domain = domain or self.deployment.service_host
        result = self.compose.run("certbot", "certificates", entrypoint="certbot", timeout=120)
        if not result.ok:
            logger.warning(f"Could not list certificates: {result.stderr.strip()}")
            return None
        for record in parse_certificates_output(result.stdout):
            if record.domain == domain:
                return record
        return None

    def classify(self, record: Optional[CertificateRecord], now: Optional[datetime] = None) -> CertificateState:
        if record is None:
            return CertificateState.ABSENT
        if record.expires_at is None:
            logger.warning(f"Expiry of {record.domain} unknown; treating as valid")
            return CertificateState.VALID

        now = now or self._now()
        remaining_days = (record.expires_at - now).total_seconds() / 86400
        if remaining_days < 0:
            return CertificateState.EXPIRED
        if remaining_days < EXPIRING_SOON_DAYS:
            return CertificateState.EXPIRING_SOON
        return CertificateState.VALID

    def current_state(self, domain: Optional[str] = None) -> Optional[CertificateState]:
        """State for monitoring, or None when the host cannot have a public certificate."""
        domain = domain or self.deployment.service_host
        if not is_eligible_domain(domain):
            return None
        state = self.classify(self.inspect(domain))
        if state in (CertificateState.EXPIRING_SOON, CertificateState.EXPIRED):
            logger.warning(f"⚠️  Certificate for {domain} is {state.value}")
        return state

    # ============ OBTAIN ============

    def _cleanup_stale_runs(self) -> None:
        executor = self.compose.executor
        listing = executor.run("docker", ["ps", "-a", "--filter", "name=certbot-run", "-q"], timeout=30)
        for container_id in listing.stdout.split() if listing.ok else []:
            executor.run("docker", ["rm", "-f", container_id], timeout=30)

    def obtain(self, domain: Optional[str] = None) -> ObtainResult:
        domain = domain or self.deployment.service_host

        if not is_eligible_domain(domain):
            logger.error(f"❌ {domain} is not eligible for a public certificate")
            return ObtainResult(
                ObtainOutcome.REJECTED,
                f"{domain} cannot receive a public certificate (loopback, IP, reserved or single-label name); "
                f"use HTTP-only or a self-signed certificate",
            )

        self._cleanup_stale_runs()

        proxy = self.compose.up(["nginx"], no_deps=True)
        if not proxy.ok:
            return ObtainResult(
                ObtainOutcome.FAILED,
                f"Reverse proxy could not be started for the HTTP challenge: {proxy.stderr.strip()}",
            )

        logger.info(f"🔐 Requesting certificate for {domain}")
        result = self.compose.run(
            "certbot",
            "certonly",
            "--webroot",
            f"--webroot-path={WEBROOT}",
            "--non-interactive",
            "--agree-tos",
            "--register-unsafely-without-email",
            "--preferred-challenges", "http",
            "-d", domain,
            entrypoint="certbot",
            timeout=300,
        )
        if not result.ok:
            return ObtainResult(
                ObtainOutcome.FAILED,
                f"Certificate authority request failed; check DNS for {domain} and that port 80 is reachable: "
                f"{result.stderr.strip()}",
            )

        cert_path, key_path = default_paths(domain)
        try:
            self.root_store.set_many({"SSL_CERT_PATH": cert_path, "SSL_KEY_PATH": key_path})
        except CredentialStoreError as e:
            return ObtainResult(ObtainOutcome.FAILED, f"Certificate obtained but paths not recorded: {e}")

        logger.info(f"✅ Certificate obtained for {domain}")
        record = self.inspect(domain) or CertificateRecord(domain, cert_path, key_path)
        return ObtainResult(ObtainOutcome.OBTAINED, f"Certificate obtained for {domain}", record=record)

    # ============ RENEW ============

    def renew(self, domain: Optional[str] = None) -> RenewResult:
        if self.deployment.is_development:
            logger.info("Development mode: certificate renewal skipped")
            return RenewResult(RenewOutcome.NOT_DUE, "Development mode; nothing to renew")

        command = ["renew"]
        if domain:
            command += ["--cert-name", domain]
        result = self.compose.run("certbot", *command, entrypoint="certbot", timeout=300)
        if not result.ok:
            return RenewResult(RenewOutcome.FAILED, f"Renewal failed: {result.stderr.strip()}")

        output = result.stdout + result.stderr
        renewed = (
            "renewals succeeded" in output
            or "have been renewed" in output
            or "Congratulations" in output
        )
        if not renewed:
            logger.info("Certificates not due for renewal")
            return RenewResult(RenewOutcome.NOT_DUE, "No certificate was due for renewal")

        reload = self.compose.exec("nginx", "nginx", "-s", "reload", timeout=30)
        if not reload.ok:
            logger.warning(f"⚠️  Certificate renewed but nginx reload failed: {reload.stderr.strip()}")
        else:
            logger.info("✅ Certificate renewed and nginx reloaded")
        return RenewResult(RenewOutcome.RENEWED, "Certificate renewed", proxy_reloaded=reload.ok)

    def setup_auto_renewal(self) -> Outcome:
        result = self.compose.up(["certbot"], profile="production")
        if not result.ok:
            logger.error(f"❌ Could not start certbot renewal service: {result.stderr.strip()}")
            return Outcome.RECOVERABLE
        logger.info("✅ Automatic certificate renewal enabled")
        return Outcome.SUCCESS

    # ============ REVERSE PROXY ============

    def configure_proxy(self) -> ProxyConfigResult:
        """Switch the proxy to HTTPS when a certificate exists; otherwise stay HTTP-only."""
        host = self.deployment.service_host
        record = self.inspect(host) if is_eligible_domain(host) else None

        if record is None:
            logger.warning(f"No certificate for {host}; nginx will serve HTTP only on port 80")
            return ProxyConfigResult(Outcome.SUCCESS, ssl_enabled=False, message="HTTP-only")

        try:
            self.root_store.set_many({"SSL_CERT_PATH": record.cert_path, "SSL_KEY_PATH": record.key_path})
        except CredentialStoreError as e:
            return ProxyConfigResult(Outcome.FATAL, ssl_enabled=False, message=str(e))

        config_path = None
        if self.nginx_dir is not None:
            config_path = self.nginx_dir / "nginx-ssl.conf"
            try:
                self.nginx_dir.mkdir(parents=True, exist_ok=True)
                config_path.write_text(render_ssl_config(host), encoding="utf-8")
            except OSError as e:
                return ProxyConfigResult(Outcome.FATAL, ssl_enabled=False, message=f"Cannot write {config_path}: {e}")
            logger.info(f"SSL configuration written to {config_path}")

        return ProxyConfigResult(Outcome.SUCCESS, ssl_enabled=True, message="HTTPS enabled", config_path=config_path)
