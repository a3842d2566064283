# deployment_engine/resources/service.py
"""
Resource Lifecycle Manager.

Routine resets only ever touch resources the catalog classifies as
resettable, whatever list the caller passes. Full destruction requires a
scope choice and a literal confirmation phrase; any mismatch aborts
before anything is removed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Union

from deployment_engine.core.errors import DockerUnavailable
from deployment_engine.core.models import PersistentResource, ResourceClassification
from deployment_engine.resources.catalog import ResourceCatalog

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("deployment_engine.security")

CONFIRMATION_PHRASE = "DESTROY"


class DestroyScope(Enum):
    ALL = "all"
    RESETTABLE = "resettable"
    NONE = "none"


class DestroyOutcome(Enum):
    DESTROYED = "destroyed"
    ABORTED = "aborted"


@dataclass
class ResetResult:
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    skipped_preserved: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass
class DestroyResult:
    outcome: DestroyOutcome
    reason: Optional[str] = None
    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class ResourceLifecycleManager:

    def __init__(self, backend, compose=None, catalog: Optional[ResourceCatalog] = None):
        self.backend = backend
        self.compose = compose
        self.catalog = catalog or ResourceCatalog()
        self._project = None

    @property
    def project(self) -> str:
        if self._project is None:
            self._project = self.compose.project_name() if self.compose else "veriscope"
        return self._project

    def volume_name(self, resource_name: str) -> str:
        return f"{self.project}_{resource_name}"

    # -------------------------
    # RESET
    # -------------------------

    def reset_resettable(self, resources: Optional[Iterable[Union[str, PersistentResource]]] = None) -> ResetResult:
        """
        Remove every resettable resource among ``resources`` (default: all).

        Classification comes from the catalog, not from the caller; preserved
        or unknown names are skipped and reported.
        """
        names = [r.name if isinstance(r, PersistentResource) else r for r in
                 (resources if resources is not None else [r.name for r in self.catalog.all()])]

        result = ResetResult()
        candidates = []
        for name in dict.fromkeys(names):
            if self.catalog.classification_of(name) == ResourceClassification.RESETTABLE:
                candidates.append(name)
            else:
                result.skipped_preserved.append(name)

        if result.skipped_preserved:
            logger.info(f"Preserved (not reset): {', '.join(result.skipped_preserved)}")

        if not candidates:
            return result

        if self.compose is not None:
            down = self.compose.down()
            if not down.ok:
                logger.warning(f"⚠️  compose down failed, volumes may be in use: {down.stderr.strip()}")

        security_logger.warning(f"Resetting volumes: {', '.join(candidates)}")
        for name in candidates:
            removal = self.backend.remove(self.volume_name(name))
            if removal.removed:
                result.removed.append(name)
            elif removal.missing:
                result.missing.append(name)
            else:
                result.failed.append(name)

        if result.failed:
            logger.error(f"❌ Failed to remove: {', '.join(result.failed)}")
        return result

    # -------------------------
    # DESTROY
    # -------------------------

    def destroy_all(self, scope, confirmation_token: Optional[str]) -> DestroyResult:
        """
        Two-tier confirmed destruction.

        Args:
            scope: DestroyScope (or its value) selecting what to destroy
            confirmation_token: must equal "DESTROY" exactly
        """
        try:
            scope = DestroyScope(scope.value if isinstance(scope, DestroyScope) else scope)
        except ValueError:
            return DestroyResult(DestroyOutcome.ABORTED, reason=f"unknown scope '{scope}'")

        if scope == DestroyScope.NONE:
            return DestroyResult(DestroyOutcome.ABORTED, reason="no scope selected")

        if confirmation_token != CONFIRMATION_PHRASE:
            logger.info("Destroy aborted: confirmation phrase did not match")
            return DestroyResult(DestroyOutcome.ABORTED, reason="confirmation phrase mismatch")

        security_logger.warning(f"Destroying deployment resources (scope={scope.value})")

        if self.compose is not None:
            down = self.compose.down(remove_orphans=True)
            if not down.ok:
                logger.warning(f"⚠️  compose down failed: {down.stderr.strip()}")

        if scope == DestroyScope.ALL:
            targets = [r.name for r in self.catalog.all()]
        else:
            targets = [r.name for r in self.catalog.resettable()]

        result = DestroyResult(DestroyOutcome.DESTROYED)
        for name in targets:
            removal = self.backend.remove(self.volume_name(name))
            if removal.removed:
                result.removed.append(name)
            elif not removal.missing:
                result.failed.append(name)

        # Dangling project volumes the catalog does not name
        preserved_owners = {r.owner for r in self.catalog.preserved()}
        known = {self.volume_name(n) for n in targets}
        try:
            dangling = self.backend.list_names(name_filter=f"{self.project}_")
        except DockerUnavailable as e:
            logger.error(f"❌ Could not list project volumes: {e}")
            dangling = []
            result.failed.append(f"{self.project}_*")
        for volume in dangling:
            if volume in known or not volume.startswith(f"{self.project}_"):
                continue
            if scope == DestroyScope.RESETTABLE and any(owner in volume for owner in preserved_owners):
                continue
            removal = self.backend.remove(volume)
            if removal.removed:
                result.removed.append(volume)
            elif not removal.missing:
                result.failed.append(volume)

        if result.failed:
            logger.error(f"❌ Could not remove: {', '.join(result.failed)}")
        return result
