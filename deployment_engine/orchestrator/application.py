# deployment_engine/orchestrator/application.py
"""Laravel application steps run inside the ``app`` container."""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from deployment_engine.core.models import Outcome

logger = logging.getLogger(__name__)

APP_SERVICE = "app"
ADMIN_COMMAND = ("php", "artisan", "createuser:admin")


@dataclass(frozen=True)
class AppStep:
    name: str
    command: Tuple[str, ...]
    required: bool = True
    timeout: float = 600


@dataclass
class StepsResult:
    outcome: Outcome
    completed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    message: str = ""


def artisan(*args) -> Tuple[str, ...]:
    return ("php", "artisan", *args)


LARAVEL_STEPS = (
    AppStep("composer install", ("composer", "install", "--no-interaction", "--prefer-dist"), timeout=1200),
    AppStep("migrate", artisan("migrate", "--force"), required=False),
    AppStep("seed", artisan("db:seed", "--force"), required=False),
    AppStep("key:generate", artisan("key:generate", "--force")),
    AppStep("passport:install", artisan("passport:install", "--force")),
)

ENCRYPTION_STEP = AppStep("encrypt:generate", artisan("encrypt:generate"))

ASSET_STEPS = (
    AppStep("npm install", ("npm", "install", "--legacy-peer-deps"), timeout=1800),
    AppStep("npm run development", ("npm", "run", "development"), required=False, timeout=1800),
)

OPTIONAL_STEPS = (
    AppStep("horizon:install", artisan("horizon:install"), required=False),
    AppStep("horizon migrate", artisan("migrate", "--force"), required=False),
    AppStep("passportenv:link", artisan("passportenv:link"), required=False),
)

ADDRESS_PROOFS_STEP = AppStep("address proofs", artisan("download:addressproof"), required=False, timeout=1800)


class ApplicationSetup:

    def __init__(self, compose, dashboard_store, full_install: bool = True):
        self.compose = compose
        self.dashboard_store = dashboard_store
        self.full_install = full_install

    def _run_steps(self, steps) -> StepsResult:
        result = StepsResult(Outcome.SUCCESS)
        for step in steps:
            logger.info(f"[app] {step.name}")
            run = self.compose.exec(APP_SERVICE, *step.command, timeout=step.timeout)
            if run.ok:
                result.completed.append(step.name)
                continue

            detail = run.stderr.strip().splitlines()[-1] if run.stderr.strip() else run.failure_kind.value
            if step.required:
                logger.error(f"❌ {step.name} failed: {detail}")
                result.failed.append(step.name)
                result.outcome = Outcome.FATAL
                result.message = f"{step.name} failed: {detail}"
                return result

            logger.warning(f"⚠️  {step.name} failed (continuing): {detail}")
            result.warnings.append(step.name)
        return result

    def setup_laravel(self) -> StepsResult:
        steps = list(LARAVEL_STEPS)
        if not self.dashboard_store.get("ENCRYPTION_KEY"):
            steps.append(ENCRYPTION_STEP)
        else:
            logger.info("ENCRYPTION_KEY already set; not regenerating")
        steps.extend(ASSET_STEPS)

        result = self._run_steps(steps)
        if result.outcome == Outcome.SUCCESS:
            result.message = f"{len(result.completed)} steps completed, {len(result.warnings)} warnings"
        return result

    def install_optional_components(self) -> StepsResult:
        steps = list(OPTIONAL_STEPS)
        mkdir = self.compose.exec(APP_SERVICE, "mkdir", "-p", "storage/app/files")
        if not mkdir.ok:
            logger.warning("Could not create address proofs directory")

        if self.full_install:
            logger.info("Address proofs download skipped during full install; run it separately")
        else:
            steps.append(ADDRESS_PROOFS_STEP)

        result = self._run_steps(steps)
        if result.warnings:
            result.outcome = Outcome.RECOVERABLE
            result.message = f"optional components with warnings: {', '.join(result.warnings)}"
        else:
            result.message = "optional components installed"
        return result

    def create_admin(self) -> StepsResult:
        if self.full_install:
            command = " ".join(ADMIN_COMMAND)
            logger.info(f"Admin creation skipped during full install; run: docker compose exec app {command}")
            return StepsResult(Outcome.SUCCESS, message="admin creation deferred")

        run = self.compose.exec_interactive(APP_SERVICE, *ADMIN_COMMAND)
        if not run.ok:
            return StepsResult(Outcome.RECOVERABLE, failed=["createuser:admin"], message="admin user not created")
        return StepsResult(Outcome.SUCCESS, completed=["createuser:admin"], message="admin user created")
