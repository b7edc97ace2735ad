"""
Builtin Provider - Fallback provider for generic, location-based analysis.

The builtin provider serves every directory that is not claimed by a
specialized provider. Specialized providers may discover extra project
locations while they initialize; those are handed to the builtin provider,
which is therefore always initialized last.
"""

import os
from typing import Any, Dict, List

from .base_provider import BaseProvider, InitConfig, normalize_location


class BuiltinProvider(BaseProvider):
    """
    Fallback provider working directly on directories.

    It contributes no dependency inventory of its own.

    Example:
        >>> provider = BuiltinProvider(config)
        >>> await provider.init(extra_configs=discovered)
        >>> provider.locations
        ['/src/app', '/src/app/lib']
    """

    async def _initialize(self, init_configs: List[InitConfig]) -> List[InitConfig]:
        # Union of configured and contributed locations, first occurrence wins
        unique: Dict[str, InitConfig] = {}
        for init_config in init_configs:
            key = normalize_location(init_config.location)
            if key in unique:
                self.logger.debug("builtin_location_duplicate", location=init_config.location)
                continue
            unique[key] = init_config

        usable = []
        for key, init_config in unique.items():
            if os.path.isdir(key):
                usable.append(init_config)
            else:
                self.logger.warning("builtin_location_skipped", location=init_config.location)

        if unique and not usable:
            raise NotADirectoryError(
                "builtin provider has no usable location: "
                + ", ".join(c.location for c in unique.values())
            )

        self.init_configs = usable
        return []

    async def _fetch_dependencies(self) -> Dict[str, List[Dict[str, Any]]]:
        return {}

    @property
    def locations(self) -> List[str]:
        """Normalized locations served by this provider"""
        return [normalize_location(c.location) for c in self.init_configs]
