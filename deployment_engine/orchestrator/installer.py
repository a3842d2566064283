# deployment_engine/orchestrator/installer.py
"""
Installation Orchestrator.

Runs the fixed, numbered install phases strictly in order. A failing
optional phase is downgraded to a warning; a failing required phase
halts the run and names the phase to re-run. Completed phases are never
rolled back; every phase is idempotent so a re-run resumes safely.
"""

import logging
from typing import List

from deployment_engine.certificates.domain import is_eligible_domain
from deployment_engine.certificates.service import ObtainOutcome
from deployment_engine.core.errors import DeploymentEngineError
from deployment_engine.core.models import Deployment, Outcome
from deployment_engine.orchestrator.phases import (
    PHASE_TABLE,
    ActionResult,
    InstallPhase,
    InstallReport,
    PhaseResult,
    PhaseStatus,
)

logger = logging.getLogger(__name__)


class InstallationOrchestrator:

    def __init__(
        self,
        deployment: Deployment,
        preflight,
        credentials,
        resources,
        compose,
        readiness,
        services,
        certificates,
        chain,
        application,
        monitor,
        readiness_interval: float = 2,
        readiness_timeout: float = 120,
    ):
        self.deployment = deployment
        self.preflight = preflight
        self.credentials = credentials
        self.resources = resources
        self.compose = compose
        self.readiness = readiness
        self.services = list(services)
        self.certificates = certificates
        self.chain = chain
        self.application = application
        self.monitor = monitor
        self.readiness_interval = readiness_interval
        self.readiness_timeout = readiness_timeout

        actions = {
            "verify-dependencies": self._verify_dependencies,
            "generate-credentials": self._generate_credentials,
            "build-images": self._build_images,
            "generate-keypair": self._generate_keypair,
            "setup-certificate": self._setup_certificate,
            "configure-proxy": self._configure_proxy,
            "reset-volumes": self._reset_volumes,
            "start-services": self._start_services,
            "await-readiness": self._await_readiness,
            "configure-chain": self._configure_chain,
            "setup-application": self._setup_application,
            "install-optional": self._install_optional,
            "finalize": self._finalize,
        }
        self._phases: List[InstallPhase] = [
            InstallPhase(ordinal, name, description, required, actions[name])
            for ordinal, name, description, required in PHASE_TABLE
        ]

    @property
    def phases(self) -> List[InstallPhase]:
        return list(self._phases)

    def phase(self, key) -> InstallPhase:
        """Look a phase up by ordinal or name."""
        for phase in self._phases:
            if phase.ordinal == key or phase.name == key:
                return phase
        raise KeyError(f"No install phase {key!r}")

    # ============ EXECUTION ============

    def _execute(self, phase: InstallPhase) -> PhaseResult:
        logger.info("=" * 80)
        logger.info(f"[{phase.ordinal}/{len(self._phases)}] {phase.description}")
        logger.info("=" * 80)

        try:
            action = phase.action()
        except DeploymentEngineError as e:
            action = ActionResult.fatal(str(e))

        if action.outcome == Outcome.SUCCESS:
            logger.info(f"✅ Phase {phase.ordinal} ({phase.name}) complete {action.message}".rstrip())
            return PhaseResult(phase.ordinal, phase.name, phase.required, PhaseStatus.PASSED, action.message)

        # Only optional phases are downgraded; any non-success of a required phase halts
        if not phase.required:
            logger.warning(f"⚠️  Phase {phase.ordinal} ({phase.name}): {action.message}")
            return PhaseResult(phase.ordinal, phase.name, phase.required, PhaseStatus.WARNED, action.message)

        remediation = f"re-run phase {phase.ordinal} ({phase.name}) after fixing: {action.message}"
        logger.error(f"❌ Phase {phase.ordinal} ({phase.name}) failed: {action.message}")
        logger.error(f"   Remediation: {remediation}")
        return PhaseResult(
            phase.ordinal, phase.name, phase.required, PhaseStatus.FAILED, action.message, remediation,
        )

    def run_phase(self, key) -> PhaseResult:
        return self._execute(self.phase(key))

    def full_install(self) -> InstallReport:
        logger.info(f"🚀 Full install: {self.deployment.service_host} "
                    f"({self.deployment.network_target.value}, {self.deployment.mode.value})")
        report = InstallReport()

        for phase in self._phases:
            result = self._execute(phase)
            report.results.append(result)
            if result.status == PhaseStatus.FAILED:
                report.halted_at = result
                for remaining in self._phases[phase.ordinal:]:
                    report.results.append(PhaseResult(
                        remaining.ordinal, remaining.name, remaining.required, PhaseStatus.NOT_RUN,
                    ))
                logger.error(f"❌ Installation halted at phase {phase.ordinal} ({phase.name})")
                return report

        report.health = self.monitor.check_all(self.services)
        if report.health.all_up:
            logger.info("✅ Installation complete; all services up")
        else:
            logger.warning(f"⚠️  Installation complete but services down: {', '.join(report.health.down)}")
        if report.warnings:
            logger.warning(f"Phases with warnings: {', '.join(r.name for r in report.warnings)}")
        return report

    # ============ PHASE ACTIONS ============

    def _verify_dependencies(self) -> ActionResult:
        report = self.preflight.run()
        if not report.ok:
            return ActionResult.fatal("; ".join(c.message for c in report.blocking_failures))
        return ActionResult.success()

    def _generate_credentials(self) -> ActionResult:
        result = self.credentials.ensure_database_credentials()
        return ActionResult(result.outcome, result.message)

    def _build_images(self) -> ActionResult:
        result = self.compose.build()
        if not result.ok:
            return ActionResult.fatal(f"docker compose build failed: {result.stderr.strip()[-500:]}")
        return ActionResult.success()

    def _generate_keypair(self) -> ActionResult:
        node_env = self.chain.ensure_node_env()
        if node_env.outcome == Outcome.FATAL:
            return ActionResult.fatal(node_env.message)
        result = self.credentials.ensure_sealer_keypair()
        return ActionResult(result.outcome, result.message)

    def _setup_certificate(self) -> ActionResult:
        host = self.deployment.service_host
        if not is_eligible_domain(host):
            return ActionResult.recoverable(f"{host} is not eligible for a public certificate; serving HTTP only")
        result = self.certificates.obtain(host)
        if result.outcome == ObtainOutcome.OBTAINED:
            auto = self.certificates.setup_auto_renewal()
            if auto != Outcome.SUCCESS:
                return ActionResult.recoverable("certificate obtained but auto-renewal not enabled")
            return ActionResult.success(result.message)
        return ActionResult.recoverable(result.message)

    def _configure_proxy(self) -> ActionResult:
        result = self.certificates.configure_proxy()
        return ActionResult(result.outcome, result.message)

    def _reset_volumes(self) -> ActionResult:
        result = self.resources.reset_resettable()
        if not result.complete:
            return ActionResult.fatal(f"could not remove volumes: {', '.join(result.failed)}")
        return ActionResult.success(f"removed {len(result.removed)} volumes")

    def _start_services(self) -> ActionResult:
        result = self.compose.up()
        if not result.ok:
            return ActionResult.fatal(f"docker compose up failed: {result.stderr.strip()[-500:]}")
        return ActionResult.success()

    def _await_readiness(self) -> ActionResult:
        report = self.readiness.await_all(
            self.services,
            interval_seconds=self.readiness_interval,
            timeout_seconds=self.readiness_timeout,
        )
        if not report.all_ready:
            return ActionResult.fatal(f"services not ready: {', '.join(report.not_ready)}")
        return ActionResult.success()

    def _configure_chain(self) -> ActionResult:
        result = self.chain.setup_chain_config()
        return ActionResult(result.outcome, result.message)

    def _setup_application(self) -> ActionResult:
        result = self.application.setup_laravel()
        return ActionResult(result.outcome, result.message)

    def _install_optional(self) -> ActionResult:
        result = self.application.install_optional_components()
        return ActionResult(result.outcome, result.message)

    def _finalize(self) -> ActionResult:
        result = self.application.create_admin()
        return ActionResult(result.outcome, result.message)
