"""
Dependency Collector - Gathers dependency inventories from Ready providers.

Inventories are requested from every Ready provider concurrently. A provider
that fails is logged and skipped; the others still contribute. The result is
flattened to one DependencyItem per (provider, location) and sorted so the
output is identical across runs regardless of response order.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog

from ..providers.base_provider import BaseProvider


@dataclass(frozen=True)
class DependencyItem:
    """Full dependency list of one location, attributed to one provider"""
    provider: str
    file_uri: str
    dependencies: List[Dict[str, Any]] = field(default_factory=list)

    def sort_key(self):
        return (self.provider, self.file_uri)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the dependency artifact shape"""
        return {
            "provider": self.provider,
            "fileURI": self.file_uri,
            "dependencies": list(self.dependencies),
        }


@dataclass
class DependencyCollectionResult:
    """Outcome of a collection pass"""
    items: List[DependencyItem] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """Soft failure: nothing was collected from any provider"""
        return not self.items

    def to_list(self) -> List[Dict[str, Any]]:
        return [item.to_dict() for item in self.items]


class DependencyCollector:
    """
    Collects and orders dependency inventories.

    Example:
        >>> collector = DependencyCollector()
        >>> result = await collector.collect(lifecycle.ready_providers)
        >>> if result.is_empty:
        ...     ...  # no dependency artifact
    """

    def __init__(self):
        self.logger = structlog.get_logger(__name__)
        self.last_result: Optional[DependencyCollectionResult] = None

    async def collect(self, providers: Iterable[BaseProvider]) -> DependencyCollectionResult:
        """
        Collect dependencies from every Ready provider.

        Args:
            providers: Provider handles (non-Ready ones are ignored)

        Returns:
            Sorted items plus per-provider failures
        """
        ready = [p for p in providers if p.is_ready]
        self.logger.info("dependency_collection_started", providers=[p.name for p in ready])

        result = DependencyCollectionResult()
        fetched = await asyncio.gather(*(self._fetch(p, result) for p in ready))

        for items in fetched:
            result.items.extend(items)
        result.items.sort(key=DependencyItem.sort_key)

        if result.is_empty:
            self.logger.warning(
                "no_dependencies_collected",
                providers=[p.name for p in ready],
                failures=result.failures,
            )
        else:
            self.logger.info(
                "dependency_collection_complete",
                items=len(result.items),
                failed_providers=sorted(result.failures),
            )

        self.last_result = result
        return result

    async def _fetch(
        self, provider: BaseProvider, result: DependencyCollectionResult
    ) -> List[DependencyItem]:
        try:
            deps = await provider.get_dependencies()
        except Exception as e:
            # Graceful degradation: one provider does not abort the run
            self.logger.error(
                "dependency_fetch_failed",
                provider=provider.name,
                error=str(e),
            )
            result.failures[provider.name] = str(e)
            return []

        return [
            DependencyItem(provider=provider.name, file_uri=str(location), dependencies=list(dep_list or []))
            for location, dep_list in (deps or {}).items()
        ]
