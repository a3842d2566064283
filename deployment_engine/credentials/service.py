# deployment_engine/credentials/service.py
"""
Credential Lifecycle Manager.

Generates, validates and mirrors secrets across the per-service
configuration files. Every multi-location write is re-read and compared
byte-for-byte before it is reported as done.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from deployment_engine.core.errors import CredentialStoreError
from deployment_engine.core.models import (
    Credential,
    CredentialLocation,
    Deployment,
    Outcome,
    StrengthClass,
)
from deployment_engine.credentials.generator import (
    DEFAULT_SECRET_LENGTH,
    generate_hex_secret,
    generate_secret,
)
from deployment_engine.credentials.strength import classify_strength
from deployment_engine.infrastructure.envfile.store import CredentialStores

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("deployment_engine.security")

WEBHOOK_SECRET_KEY = "WEBHOOK_CLIENT_SECRET"
WEBHOOK_SECRET_MIN_LENGTH = 32
DEFAULT_DB_USER = "trustanchor"
DEFAULT_DB_NAME = "trustanchor"

APP_SERVICE = "app"

# Services that hold the webhook secret in memory and must be restarted on rotation
WEBHOOK_DEPENDENTS = (APP_SERVICE, "ta-node")

KEYPAIR_SCRIPT = (
    "const ethers = require('ethers');"
    "const w = ethers.Wallet.createRandom();"
    "console.log(JSON.stringify({address: w.address, privateKey: w.privateKey.replace(/^0x/, '')}));"
)
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_PRIVATE_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class UpsertAction(Enum):
    CREATED = "created"
    PRESERVED = "preserved"
    REPLACED = "replaced"
    REJECTED = "rejected"


class SyncVerification(Enum):
    VERIFIED_OK = "verified_ok"
    VERIFICATION_FAILED = "verification_failed"


@dataclass
class UpsertResult:
    key: str
    action: UpsertAction
    previous_existed: bool
    value: Optional[str] = field(default=None, repr=False)
    error: Optional[str] = None


@dataclass
class ScopeSyncResult:
    key: str
    verification: SyncVerification
    failures: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.verification == SyncVerification.VERIFIED_OK


@dataclass
class CredentialOperationResult:
    outcome: Outcome
    message: str
    sync: Optional[ScopeSyncResult] = None
    restarted: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS


class CredentialLifecycleManager:

    def __init__(self, deployment: Deployment, stores: CredentialStores, compose=None):
        self.deployment = deployment
        self.stores = stores
        self.compose = compose

    # ============ PRIMITIVES ============

    def classify(self, value: Optional[str]) -> StrengthClass:
        return classify_strength(value, self.deployment.mode)

    def upsert_credential(self, store_name: str, key: str, value: str, create: bool = False) -> UpsertResult:
        """
        Write ``value`` under ``key`` unless a good value is already there.

        A strong (or, in development, acceptable) existing value is kept so
        repeated runs never downgrade or churn a secret. A weak existing
        value is replaced and the replacement is logged as a security event.
        """
        store = self.stores[store_name]
        try:
            current = store.get(key)
        except CredentialStoreError as e:
            return UpsertResult(key, UpsertAction.REJECTED, False, error=str(e))
        existed = current is not None and current != ""

        if existed and self.classify(current) != StrengthClass.WEAK:
            logger.info(f"Preserving existing {key} in {store_name} ({len(current)} chars)")
            return UpsertResult(key, UpsertAction.PRESERVED, True, value=current)

        if self.classify(value) == StrengthClass.WEAK:
            logger.error(f"Refusing to write weak value for {key} to {store_name}")
            return UpsertResult(key, UpsertAction.REJECTED, existed, error="new value is weak")

        try:
            store.set(key, value, create=create)
        except CredentialStoreError as e:
            return UpsertResult(key, UpsertAction.REJECTED, existed, error=str(e))

        if existed:
            security_logger.warning(f"Weak credential {key} in {store_name} replaced with a generated value")
            return UpsertResult(key, UpsertAction.REPLACED, True, value=value)

        logger.info(f"Created {key} in {store_name}")
        return UpsertResult(key, UpsertAction.CREATED, False, value=value)

    def synchronize_across_scopes(self, credential: Credential, create_missing: bool = False) -> ScopeSyncResult:
        """
        Write the credential to every scoped location, then re-read and compare.

        A location that could not be written or reads back differently makes
        the whole operation VERIFICATION_FAILED.
        """
        failures = []

        for location in credential.scope:
            try:
                self.stores[location.store].set(location.key, credential.value, create=create_missing)
            except CredentialStoreError as e:
                logger.error(f"Write of {credential.key} to {location} failed: {e}")
                failures.append(f"{location}: write failed ({e.message})")

        expected = credential.value.encode("utf-8")
        for location in credential.scope:
            try:
                actual = self.stores[location.store].get(location.key)
            except CredentialStoreError as e:
                actual = None
                logger.error(f"Read-back of {location} failed: {e}")
            if actual is None or actual.encode("utf-8") != expected:
                failures.append(f"{location}: value mismatch after write")

        if failures:
            logger.error(f"❌ {credential.key} not consistent across {len(credential.scope)} locations")
            return ScopeSyncResult(credential.key, SyncVerification.VERIFICATION_FAILED, failures)

        logger.info(f"✅ {credential.key} verified in {len(credential.scope)} locations")
        return ScopeSyncResult(credential.key, SyncVerification.VERIFIED_OK)

    # ============ DATABASE ============

    def ensure_database_credentials(self) -> CredentialOperationResult:
        """Generate or keep the database password and point the dashboard at it."""
        root = self.stores[CredentialStores.ROOT]
        dashboard = self.stores[CredentialStores.DASHBOARD]

        upsert = self.upsert_credential(
            CredentialStores.ROOT,
            "POSTGRES_PASSWORD",
            generate_secret(DEFAULT_SECRET_LENGTH),
            create=True,
        )
        if upsert.action == UpsertAction.REJECTED:
            return CredentialOperationResult(Outcome.FATAL, f"POSTGRES_PASSWORD not written: {upsert.error}")

        try:
            user = root.get("POSTGRES_USER") or DEFAULT_DB_USER
            db = root.get("POSTGRES_DB") or DEFAULT_DB_NAME
            root.set_many({"POSTGRES_USER": user, "POSTGRES_DB": db})
        except CredentialStoreError as e:
            return CredentialOperationResult(Outcome.FATAL, str(e))

        sync = self.synchronize_across_scopes(
            Credential(
                key="POSTGRES_PASSWORD",
                value=upsert.value,
                scope=(
                    CredentialLocation(CredentialStores.ROOT, "POSTGRES_PASSWORD"),
                    CredentialLocation(CredentialStores.DASHBOARD, "DB_PASSWORD"),
                ),
            ),
            create_missing=True,
        )
        if not sync.ok:
            return CredentialOperationResult(Outcome.FATAL, "Database password verification failed", sync=sync)

        try:
            dashboard.set_many({
                "DB_CONNECTION": "pgsql",
                "DB_HOST": "postgres",
                "DB_PORT": "5432",
                "DB_DATABASE": db,
                "DB_USERNAME": user,
                "REDIS_HOST": "redis",
                "APP_URL": self.deployment.app_url,
            })
        except CredentialStoreError as e:
            return CredentialOperationResult(Outcome.FATAL, str(e), sync=sync)

        return CredentialOperationResult(
            Outcome.SUCCESS,
            f"Database credentials {upsert.action.value}",
            sync=sync,
        )

    # ============ WEBHOOK SECRET ============

    def _webhook_scope(self):
        return (
            CredentialLocation(CredentialStores.NODE, WEBHOOK_SECRET_KEY),
            CredentialLocation(CredentialStores.DASHBOARD, WEBHOOK_SECRET_KEY),
        )

    def sync_webhook_secret(self) -> CredentialOperationResult:
        """
        Make the TA node and dashboard share one webhook secret.

        Source of truth: the node's value, then the dashboard's, then a new one.
        """
        secret, source = None, None
        for store_name in (CredentialStores.NODE, CredentialStores.DASHBOARD):
            try:
                candidate = self.stores[store_name].get(WEBHOOK_SECRET_KEY)
            except CredentialStoreError as e:
                logger.warning(f"Cannot read {store_name} store: {e}")
                continue
            if candidate and len(candidate) >= WEBHOOK_SECRET_MIN_LENGTH:
                secret, source = candidate, store_name
                break
            if candidate:
                security_logger.warning(f"Ignoring short {WEBHOOK_SECRET_KEY} in {store_name} ({len(candidate)} chars)")

        if secret is None:
            secret, source = generate_hex_secret(), "generated"
        logger.info(f"Webhook secret source: {source}")

        sync = self.synchronize_across_scopes(Credential(WEBHOOK_SECRET_KEY, secret, self._webhook_scope()))
        if not sync.ok:
            return CredentialOperationResult(Outcome.FATAL, "Webhook secret verification failed", sync=sync)
        return CredentialOperationResult(Outcome.SUCCESS, f"Webhook secret synchronized (source: {source})", sync=sync)

    def regenerate_webhook_secret(self) -> CredentialOperationResult:
        """Rotate the webhook secret and restart its consumers once it is verified."""
        secret = generate_hex_secret()
        sync = self.synchronize_across_scopes(Credential(WEBHOOK_SECRET_KEY, secret, self._webhook_scope()))

        if not sync.ok:
            # Restarting now would bring services up with mismatched secrets
            return CredentialOperationResult(
                Outcome.FATAL,
                "Webhook secret rotation could not be verified; services were not restarted",
                sync=sync,
            )

        security_logger.warning("Webhook secret rotated")

        restarted = []
        if self.compose is not None:
            for service in WEBHOOK_DEPENDENTS:
                if not self.compose.is_running(service):
                    continue
                result = self.compose.restart(service)
                if result.ok:
                    restarted.append(service)
                else:
                    logger.warning(f"⚠️  Restart of {service} failed: {result.stderr.strip()}")

        return CredentialOperationResult(Outcome.SUCCESS, "Webhook secret regenerated", sync=sync, restarted=restarted)

    # ============ ENCRYPTION KEY ============

    def regenerate_encryption_key(self, confirmed: bool = False) -> CredentialOperationResult:
        """
        Generate a new application encryption key.

        Data encrypted with the old key becomes unreadable, so nothing runs
        unless ``confirmed`` is set.
        """
        if not confirmed:
            logger.info("Encryption key regeneration not confirmed; nothing changed")
            return CredentialOperationResult(Outcome.RECOVERABLE, "Encryption key regeneration not confirmed")
        if self.compose is None:
            return CredentialOperationResult(Outcome.FATAL, "No compose client to reach the app service")

        security_logger.warning("Regenerating application encryption key; previously encrypted data is lost")
        result = self.compose.exec(
            APP_SERVICE, "php", "artisan", "encrypt:generate", input_text="yes\n", timeout=120,
        )
        if not result.ok:
            detail = result.stderr.strip() or result.failure_kind.value
            return CredentialOperationResult(Outcome.FATAL, f"encrypt:generate failed: {detail}")

        logger.info("✅ Encryption key regenerated")
        return CredentialOperationResult(Outcome.SUCCESS, "Encryption key regenerated")

    # ============ SEALER KEYPAIR ============

    def ensure_sealer_keypair(self) -> CredentialOperationResult:
        """Generate the Trust Anchor keypair once, then sync the webhook secret."""
        node = self.stores[CredentialStores.NODE]
        if not node.exists():
            return CredentialOperationResult(Outcome.FATAL, f"TA node configuration missing: {node.path}")

        account = node.get("TRUST_ANCHOR_ACCOUNT")
        private_key = node.get("TRUST_ANCHOR_PK")

        if account and private_key:
            logger.info(f"Preserving existing sealer keypair ({account})")
            node.set("TRUST_ANCHOR_PREFNAME", self.deployment.common_name)
        else:
            generated = self._generate_keypair()
            if isinstance(generated, CredentialOperationResult):
                return generated
            account, private_key = generated
            node.set_many({
                "TRUST_ANCHOR_ACCOUNT": account,
                "TRUST_ANCHOR_PK": private_key,
                "TRUST_ANCHOR_PREFNAME": self.deployment.common_name,
            })
            security_logger.warning(f"New sealer keypair generated for {account}")

        webhook = self.sync_webhook_secret()
        if not webhook.ok:
            return webhook
        return CredentialOperationResult(Outcome.SUCCESS, f"Sealer keypair ready ({account})", sync=webhook.sync)

    def _generate_keypair(self):
        if self.compose is None:
            return CredentialOperationResult(Outcome.FATAL, "No container runtime available to generate keypair")

        result = self.compose.run("ta-node", "node", "-e", KEYPAIR_SCRIPT, no_deps=True, timeout=120)
        if not result.ok:
            return CredentialOperationResult(
                Outcome.FATAL,
                f"Keypair generation failed ({result.failure_kind.value}): {result.stderr.strip()}",
            )

        try:
            payload = json.loads(result.stdout.strip().splitlines()[-1])
            account = payload["address"]
            private_key = payload["privateKey"]
        except (ValueError, KeyError, IndexError, TypeError):
            return CredentialOperationResult(Outcome.FATAL, "Keypair generator returned malformed output")

        if not _ADDRESS_RE.match(account) or not _PRIVATE_KEY_RE.match(private_key):
            return CredentialOperationResult(Outcome.FATAL, "Keypair generator returned an invalid address or key")

        return account, private_key
