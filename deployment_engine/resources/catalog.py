# deployment_engine/resources/catalog.py
from typing import Dict, List, Optional

from deployment_engine.core.models import PersistentResource, ResourceClassification

R = ResourceClassification

DEFAULT_RESOURCES = (
    PersistentResource("postgres_data", R.RESETTABLE, owner="postgres"),
    PersistentResource("redis_data", R.RESETTABLE, owner="redis"),
    PersistentResource("app_data", R.RESETTABLE, owner="app"),
    PersistentResource("artifacts", R.RESETTABLE, owner="ta-node"),
    PersistentResource("nethermind_data", R.PRESERVED, owner="nethermind"),
    PersistentResource("certbot_conf", R.PRESERVED, owner="certbot"),
    PersistentResource("certbot_www", R.PRESERVED, owner="certbot"),
)


class ResourceCatalog:
    """Authoritative classification of persistent resources by name."""

    def __init__(self, resources=DEFAULT_RESOURCES):
        self._by_name: Dict[str, PersistentResource] = {r.name: r for r in resources}

    def get(self, name: str) -> Optional[PersistentResource]:
        return self._by_name.get(name)

    def classification_of(self, name: str) -> ResourceClassification:
        # Anything the catalog does not know about is never reset
        resource = self._by_name.get(name)
        return resource.classification if resource else R.PRESERVED

    def all(self) -> List[PersistentResource]:
        return list(self._by_name.values())

    def resettable(self) -> List[PersistentResource]:
        return [r for r in self._by_name.values() if r.classification == R.RESETTABLE]

    def preserved(self) -> List[PersistentResource]:
        return [r for r in self._by_name.values() if r.classification == R.PRESERVED]
