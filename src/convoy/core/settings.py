"""
Settings - Run configuration and provider-settings loading.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from ..providers.base_provider import (
    BUILTIN_PROVIDER_NAME,
    AnalysisMode,
    InitConfig,
    ProviderConfig,
    ProviderKind,
    Proxy,
)


DEFAULT_CONTEXT_LINES = 100


@dataclass
class AnalysisConfig:
    """Configuration for one analysis run"""
    input_path: str
    output_dir: str
    mode: AnalysisMode = AnalysisMode.FULL
    sources: List[str] = field(default_factory=list)
    targets: List[str] = field(default_factory=list)
    rules: List[str] = field(default_factory=list)
    provider_configs: List[ProviderConfig] = field(default_factory=list)
    context_lines: int = DEFAULT_CONTEXT_LINES
    http_proxy: Optional[str] = None
    https_proxy: Optional[str] = None
    no_proxy: Optional[str] = None
    analyze_known_libraries: bool = False
    json_output: bool = False
    skip_static_report: bool = False
    cancel_dependencies_on_failure: bool = False

    @property
    def proxy(self) -> Optional[Proxy]:
        """Shared proxy settings, only when an HTTP(S) proxy is configured"""
        if not self.http_proxy and not self.https_proxy:
            return None
        return Proxy(
            http_proxy=self.http_proxy,
            https_proxy=self.https_proxy,
            no_proxy=self.no_proxy,
        )

    @property
    def collects_dependencies(self) -> bool:
        return self.mode is AnalysisMode.FULL

    def validate(self):
        """
        Validate and normalize the configuration.

        Creates the output directory when missing and makes the input and
        output paths absolute.

        Raises:
            ConfigurationError: If the configuration cannot be used
        """
        try:
            self.mode = AnalysisMode(self.mode)
        except ValueError:
            raise ConfigurationError(
                f"mode must be one of 'full' or 'source-only', got {self.mode!r}"
            )

        if self.context_lines < 0:
            raise ConfigurationError("context lines must not be negative")

        output = Path(self.output_dir)
        if output.exists() and not output.is_dir():
            raise ConfigurationError(f"output path {output} is not a directory")
        try:
            output.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(f"failed to create output dir {output}: {e}") from e

        if not os.path.exists(self.input_path):
            raise ConfigurationError(f"failed to stat input path {self.input_path}")

        for rules_path in self.rules:
            if not os.path.exists(rules_path):
                raise ConfigurationError(f"failed to stat rules {rules_path}")

        self.output_dir = os.path.abspath(self.output_dir)
        self.input_path = os.path.abspath(self.input_path)

    def with_default_builtin(self) -> List[ProviderConfig]:
        """
        Provider configs, with a builtin entry for the input added if missing.

        A file input (e.g. a binary) is served by builtin through its
        directory.
        """
        configs = list(self.provider_configs)
        if any(c.name == BUILTIN_PROVIDER_NAME for c in configs):
            return configs

        location = self.input_path
        if not os.path.isdir(location):
            location = os.path.dirname(location)
        configs.append(
            ProviderConfig(
                name=BUILTIN_PROVIDER_NAME,
                kind=ProviderKind.BUILTIN,
                init_config=[InitConfig(location=location, analysis_mode=self.mode)],
            )
        )
        return configs


def load_provider_settings(path: str) -> List[ProviderConfig]:
    """
    Load provider configurations from a JSON or YAML settings document.

    Args:
        path: Path to the settings document (a list of provider configs)

    Returns:
        Provider configurations in document order

    Raises:
        ConfigurationError: If the document cannot be read or is invalid
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse provider settings {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read provider settings {path}: {e}") from e

    if data is None:
        return []
    if not isinstance(data, list):
        raise ConfigurationError(f"Provider settings {path} must be a list of providers")

    try:
        configs = [ProviderConfig.model_validate(item) for item in data]
    except ValidationError as e:
        raise ConfigurationError(f"Invalid provider settings in {path}: {e}") from e

    names = [c.name for c in configs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(
            f"Duplicate provider names in {path}: {', '.join(duplicates)}"
        )
    return configs


class ConfigurationError(Exception):
    """Raised for malformed or missing required configuration"""
    pass
