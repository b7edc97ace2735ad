"""
Config Merger - Builds the final provider configuration list for a run.

Every location referenced by any provider is also served by the fallback
("builtin") provider. This module folds those locations into a single builtin
config, deduplicated by normalized absolute path, and injects the run-wide
settings (proxy, context lines, analysis mode) into every init config.
"""

import os
from typing import Callable, Dict, List, Optional

import structlog

from ..providers.base_provider import (
    BUILTIN_PROVIDER_NAME,
    AnalysisMode,
    InitConfig,
    ProviderConfig,
    ProviderKind,
    Proxy,
    normalize_location,
)


class ConfigMerger:
    """
    Merges provider configurations into the final list for a run.

    Rules:
    1. Non-builtin configs pass through, with shared settings injected
    2. One builtin config is emitted last, holding the deduplicated union of
       every location referenced by any provider
    3. Builtin's own provider-specific config is kept for the locations it
       configured explicitly; implicit locations get none
    4. Locations that are not existing directories are left out of builtin

    Example:
        >>> merger = ConfigMerger(proxy=proxy, context_lines=100)
        >>> final_configs = merger.merge(configs)
    """

    def __init__(
        self,
        proxy: Optional[Proxy] = None,
        context_lines: Optional[int] = None,
        mode: Optional[AnalysisMode] = None,
        normalize: Callable[[str], str] = normalize_location,
    ):
        """
        Initialize the merger.

        Args:
            proxy: Proxy settings shared by every provider
            context_lines: Context line count shared by every provider
            mode: Run-wide analysis mode stamped on every init config
            normalize: Location normalizer used for the dedup key
        """
        self.proxy = proxy
        self.context_lines = context_lines
        self.mode = mode
        self.normalize = normalize

        self.logger = structlog.get_logger(__name__)

    def merge(self, configs: List[ProviderConfig]) -> List[ProviderConfig]:
        """
        Produce the final provider configurations.

        Args:
            configs: Provider configurations, possibly including "builtin"

        Returns:
            Non-builtin configs in input order, followed by one builtin config
        """
        explicit_builtin: Dict[str, InitConfig] = {}
        for config in configs:
            if config.is_fallback:
                for init_config in config.init_config:
                    key = self._location_key(init_config.location)
                    explicit_builtin.setdefault(key, init_config)

        final_configs: List[ProviderConfig] = []
        builtin_configs: Dict[str, InitConfig] = {}

        for config in configs:
            if not config.is_fallback:
                final_configs.append(
                    config.model_copy(
                        update={"init_config": [self._inject(c) for c in config.init_config]}
                    )
                )

            for init_config in config.init_config:
                if not init_config.location:
                    continue

                key = self._location_key(init_config.location)
                if key in builtin_configs:
                    continue
                if not os.path.isdir(key):
                    self.logger.debug(
                        "builtin_location_excluded",
                        provider=config.name,
                        location=init_config.location,
                    )
                    continue

                specific = None
                if key in explicit_builtin:
                    specific = explicit_builtin[key].provider_specific_config
                builtin_configs[key] = self._inject(
                    InitConfig(
                        location=key,
                        analysis_mode=init_config.analysis_mode,
                        provider_specific_config=specific,
                    )
                )

        final_configs.append(
            ProviderConfig(
                name=BUILTIN_PROVIDER_NAME,
                kind=ProviderKind.BUILTIN,
                init_config=list(builtin_configs.values()),
            )
        )

        self.logger.info(
            "provider_configs_merged",
            providers=[c.name for c in final_configs],
            builtin_locations=list(builtin_configs),
        )
        return final_configs

    def _location_key(self, location: str) -> str:
        try:
            return self.normalize(location)
        except (OSError, ValueError):
            return location

    def _inject(self, init_config: InitConfig) -> InitConfig:
        """Stamp the shared settings onto an init config"""
        update = {}
        if self.proxy is not None:
            update["proxy"] = self.proxy
        if self.context_lines is not None:
            update["context_lines"] = self.context_lines
        if self.mode is not None:
            update["analysis_mode"] = self.mode
        if not update:
            return init_config
        return init_config.model_copy(update=update)


def provider_locations(configs: List[ProviderConfig]) -> List[str]:
    """Every location of every provider config, in order"""
    return [c.location for config in configs for c in config.init_config]
