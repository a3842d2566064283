# deployment_engine/run_installer.py
"""Command-line entry point: full install and partial operations."""

import argparse
import logging
import sys

from deployment_engine.backups.service import (
    DEFAULT_RETENTION_DAYS,
    BackupKind,
    CleanupOutcome,
    RestoreOutcome,
)
from deployment_engine.certificates.service import ObtainOutcome, RenewOutcome
from deployment_engine.container import build_container
from deployment_engine.core.errors import ConfigurationError, DeploymentEngineError
from deployment_engine.core.models import Outcome, SyncState
from deployment_engine.infrastructure.settings import load_settings
from deployment_engine.orchestrator.phases import PhaseStatus
from deployment_engine.readiness.gate import ReadinessOutcome
from deployment_engine.resources.service import DestroyOutcome, DestroyScope

logger = logging.getLogger("deployment_engine")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
OPERATIONS_LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(message)s'

BACKUP_COMMANDS = (
    "backup-db", "backup-redis", "backup-files", "backup-full",
    "restore-db", "restore-redis", "restore-files",
    "list-backups", "clean-backups",
)


def configure_logging(level: str = "INFO", log_file=None) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(OPERATIONS_LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def attach_operations_log(path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(OPERATIONS_LOG_FORMAT))
    logging.getLogger("deployment_engine.backups.operations").addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deployment-engine",
        description="Provision and operate a Veriscope Trust Anchor deployment",
    )
    parser.add_argument("--project-root", default=None, help="Directory holding docker-compose.yml and .env")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("full-install", help="Run every install phase in order")

    phase = sub.add_parser("phase", help="Run a single install phase")
    phase.add_argument("phase", help="Phase number or name")

    sub.add_parser("list-phases", help="Show the install phases")

    reset = sub.add_parser("reset-volumes", help="Remove resettable volumes (database, cache, artifacts)")
    reset.add_argument("--yes", action="store_true", help="Confirm the reset")

    destroy = sub.add_parser("destroy", help="Destroy containers and volumes")
    destroy.add_argument("--scope", choices=[s.value for s in DestroyScope], required=True)
    destroy.add_argument("--confirm", default=None, help="Type DESTROY to confirm")

    sub.add_parser("obtain-ssl", help="Obtain a certificate for the service host")
    renew = sub.add_parser("renew-ssl", help="Renew certificates and reload nginx when renewed")
    renew.add_argument("--domain", default=None, help="Renew only this certificate")
    sub.add_parser("setup-auto-renewal", help="Start the certbot renewal service")
    sub.add_parser("setup-nginx", help="Configure nginx for HTTP or HTTPS")

    sub.add_parser("sync-webhook-secret", help="Mirror the webhook secret between node and dashboard")
    sub.add_parser("regenerate-webhook-secret", help="Rotate the webhook secret and restart its consumers")
    sub.add_parser("create-sealer", help="Generate the Trust Anchor keypair")
    encrypt = sub.add_parser("regenerate-encryption-key", help="Generate a new app encryption key (encrypted data is lost)")
    encrypt.add_argument("--yes", action="store_true", help="Confirm the regeneration")

    sub.add_parser("setup-chain", help="Configure the chain for the network target")
    refresh = sub.add_parser("refresh-static-nodes", help="Refresh static peers from ethstats")
    refresh.add_argument("--restart", action="store_true", help="Restart nethermind with a cleared peer cache")
    sub.add_parser("update-chainspec", help="Download the latest chainspec")

    sub.add_parser("health", help="Check services, sync status and certificate")
    sub.add_parser("sync-status", help="Show blockchain sync status")
    sub.add_parser("check-db", help="Wait for PostgreSQL to accept connections from the host")
    sub.add_parser("create-admin", help="Create the dashboard admin user interactively")

    sub.add_parser("backup-db", help="Back up the PostgreSQL database")
    sub.add_parser("backup-redis", help="Back up Redis data")
    sub.add_parser("backup-files", help="Back up the .env files")
    sub.add_parser("backup-full", help="Back up database, Redis and .env files")
    for name, target in (("restore-db", "database"), ("restore-redis", "Redis data"), ("restore-files", ".env files")):
        restore = sub.add_parser(name, help=f"Restore {target} from a backup file")
        restore.add_argument("file", help="Backup file")
        restore.add_argument("--yes", action="store_true", help="Confirm overwriting current data")
        restore.add_argument("--allow-outside", action="store_true", help="Accept a file outside the backup directory")
    sub.add_parser("list-backups", help="List available backups")
    clean = sub.add_parser("clean-backups", help="Delete old backups")
    clean.add_argument("--days", type=int, default=DEFAULT_RETENTION_DAYS, help="Age threshold in days")
    clean.add_argument("--confirm", default=None, help="Type DELETE to confirm")

    return parser


def _run_backup(backups, args) -> int:
    command = args.command
    if command != "list-backups":
        attach_operations_log(backups.operations_log)

    if command == "backup-full":
        result = backups.full_backup()
        for item in result.results:
            logger.info(f"{item.kind.value}: {item.message}")
        return 0 if result.ok else 1

    single = {
        "backup-db": backups.backup_database,
        "backup-redis": backups.backup_redis,
        "backup-files": backups.backup_app_files,
    }
    if command in single:
        result = single[command]()
        logger.info(result.message)
        return 0 if result.ok else 1

    restores = {
        "restore-db": backups.restore_database,
        "restore-redis": backups.restore_redis,
        "restore-files": backups.restore_app_files,
    }
    if command in restores:
        result = restores[command](args.file, confirmed=args.yes, allow_outside=args.allow_outside)
        if result.outcome == RestoreOutcome.CANCELLED:
            logger.error("Restore not confirmed; pass --yes")
        else:
            logger.info(result.message)
        return 0 if result.ok else 1

    if command == "list-backups":
        entries = backups.list_backups()
        print(f"Backups in {backups.backup_dir}:")
        for kind in BackupKind:
            print(f"  {kind.value}: {sum(1 for e in entries if e.kind == kind)}")
        for entry in entries:
            print(f"  {entry.path.name:<45} {entry.size_bytes:>12} {entry.modified:%Y-%m-%d %H:%M}")
        return 0

    result = backups.clean_old_backups(args.days, args.confirm)
    if result.outcome == CleanupOutcome.CANCELLED:
        logger.error(f"{len(result.candidates)} backup(s) older than {args.days} days kept; pass --confirm DELETE")
    else:
        logger.info(result.message)
    return 0 if result.ok else 1


def _run(container, args) -> int:
    command = args.command

    if command == "full-install":
        report = container.orchestrator.full_install()
        if report.halted_at:
            logger.error(f"Remediation: {report.halted_at.remediation}")
        return report.exit_code

    if command == "phase":
        key = int(args.phase) if args.phase.isdigit() else args.phase
        try:
            result = container.orchestrator.run_phase(key)
        except KeyError as e:
            logger.error(str(e))
            return 1
        return 1 if result.status == PhaseStatus.FAILED else 0

    if command == "list-phases":
        for phase in container.orchestrator.phases:
            flag = "required" if phase.required else "optional"
            print(f"{phase.ordinal:>2}. {phase.name:<22} {phase.description} ({flag})")
        return 0

    if command == "reset-volumes":
        if not args.yes:
            logger.error("Reset not confirmed; pass --yes")
            return 1
        result = container.resources.reset_resettable()
        return 0 if result.complete else 1

    if command == "destroy":
        result = container.resources.destroy_all(args.scope, args.confirm)
        if result.outcome == DestroyOutcome.ABORTED:
            logger.error(f"Destroy aborted: {result.reason}")
            return 1
        return 0 if not result.failed else 1

    if command == "obtain-ssl":
        result = container.certificates.obtain()
        logger.info(result.message)
        return 0 if result.outcome == ObtainOutcome.OBTAINED else 1

    if command == "renew-ssl":
        result = container.certificates.renew(args.domain)
        logger.info(result.message)
        return 1 if result.outcome == RenewOutcome.FAILED else 0

    if command == "setup-auto-renewal":
        return 0 if container.certificates.setup_auto_renewal() == Outcome.SUCCESS else 1

    if command == "setup-nginx":
        return 0 if container.certificates.configure_proxy().outcome == Outcome.SUCCESS else 1

    if command == "sync-webhook-secret":
        return 0 if container.credentials.sync_webhook_secret().ok else 1

    if command == "regenerate-webhook-secret":
        result = container.credentials.regenerate_webhook_secret()
        if result.restarted:
            logger.info(f"Restarted: {', '.join(result.restarted)}")
        return 0 if result.ok else 1

    if command == "create-sealer":
        node_env = container.chain.ensure_node_env()
        if node_env.outcome == Outcome.FATAL:
            logger.error(node_env.message)
            return 1
        return 0 if container.credentials.ensure_sealer_keypair().ok else 1

    if command == "setup-chain":
        return 0 if container.chain.setup_chain_config().ok else 1

    if command == "refresh-static-nodes":
        result = container.chain.refresh_static_nodes(restart=args.restart)
        return 0 if result.outcome == Outcome.SUCCESS else 1

    if command == "update-chainspec":
        return 0 if container.chain.update_chainspec().ok else 1

    if command == "health":
        health = container.monitor.run_system_check(container.deployment.service_host)
        for name in health.services.up:
            print(f"  ✅ {name}")
        for name in health.services.down:
            print(f"  ❌ {name}")
        print(f"  sync: {health.sync.state.value}")
        if health.certificate:
            print(f"  certificate: {health.certificate.value}")
        return 0 if health.healthy else 1

    if command == "sync-status":
        status = container.monitor.derive_sync_status()
        print(f"state={status.state.value} block={status.current_block} "
              f"highest={status.highest_block} peers={status.peer_count} progress={status.progress_percent}")
        for warning in status.warnings:
            print(f"  ⚠️  {warning}")
        return 1 if status.state == SyncState.UNREACHABLE else 0

    if command == "check-db":
        outcome = container.readiness.await_ready(
            container.database_probe,
            interval_seconds=container.settings.readiness_interval_seconds,
            timeout_seconds=container.settings.readiness_timeout_seconds,
            name="PostgreSQL",
        )
        return 0 if outcome == ReadinessOutcome.READY else 1

    if command == "regenerate-encryption-key":
        result = container.credentials.regenerate_encryption_key(confirmed=args.yes)
        logger.info(result.message)
        return 0 if result.ok else 1

    if command in BACKUP_COMMANDS:
        return _run_backup(container.backups, args)

    if command == "create-admin":
        container.application.full_install = False
        return 0 if container.application.create_admin().outcome == Outcome.SUCCESS else 1

    logger.error(f"Unknown command: {command}")
    return 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.project_root)
    configure_logging(settings.log_level, settings.log_file)

    try:
        container = build_container(settings, full_install=args.command == "full-install")
        return _run(container, args)
    except ConfigurationError as e:
        logger.error(f"❌ {e}")
        for problem in e.problems:
            logger.error(f"   - {problem}")
        return 1
    except DeploymentEngineError as e:
        logger.error(f"❌ {args.command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())
