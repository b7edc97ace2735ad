"""
Output Aggregator - Writes the run's artifacts.

Artifacts (in the output directory):
- output.yaml          rule violations, ordered by ruleset name
- dependencies.yaml    dependencies, ordered by (provider, location)
- settings.json        final provider configuration

The dependency artifact exists only when at least one dependency item was
collected. Its presence is what the downstream report builder checks to
decide whether dependency data is included, so an empty collection removes
the file instead of writing an empty one.
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence

import structlog
import yaml

from ..providers.base_provider import ProviderConfig
from .dependency_collector import DependencyCollectionResult
from .rule_evaluation import RulesetResult, sort_results


ANALYSIS_OUTPUT_FILE = "output.yaml"
DEPENDENCY_OUTPUT_FILE = "dependencies.yaml"
ANALYSIS_JSON_FILE = "output.json"
DEPENDENCY_JSON_FILE = "dependencies.json"
PROVIDER_SETTINGS_FILE = "settings.json"


class ReportBuilder(Protocol):
    """Downstream report generation contract"""

    def build(self, analysis_output: Path, dependency_output: Optional[Path]) -> Any:
        ...


@dataclass
class AnalysisArtifacts:
    """Paths of the artifacts a run produced"""
    analysis_output: Path
    dependency_output: Optional[Path] = None
    json_outputs: List[Path] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "analysis_output": str(self.analysis_output),
            "dependency_output": str(self.dependency_output) if self.dependency_output else None,
            "json_outputs": [str(p) for p in self.json_outputs],
        }


class OutputAggregator:
    """
    Serializes rule results and dependencies to their artifacts.

    Example:
        >>> aggregator = OutputAggregator(output_dir, json_output=True)
        >>> artifacts = aggregator.write(rulesets, dependencies)
        >>> aggregator.build_report(artifacts)
    """

    def __init__(
        self,
        output_dir: Path,
        json_output: bool = False,
        report_builder: Optional[ReportBuilder] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            output_dir: Directory receiving the artifacts
            json_output: Also write JSON copies of the artifacts
            report_builder: Downstream report builder (None = no report)
        """
        self.output_dir = Path(output_dir)
        self.json_output = json_output
        self.report_builder = report_builder

        self.logger = structlog.get_logger(__name__)

    @property
    def analysis_output_path(self) -> Path:
        return self.output_dir / ANALYSIS_OUTPUT_FILE

    @property
    def dependency_output_path(self) -> Path:
        return self.output_dir / DEPENDENCY_OUTPUT_FILE

    def write(
        self,
        rulesets: Sequence[RulesetResult],
        dependencies: Optional[DependencyCollectionResult] = None,
    ) -> AnalysisArtifacts:
        """
        Write the rule-violation and dependency artifacts.

        Args:
            rulesets: Ruleset results (re-sorted by name here)
            dependencies: Collected dependencies (None = not collected)

        Returns:
            Paths of the written artifacts

        Raises:
            OutputWriteError: If an artifact could not be written
        """
        ruleset_data = [r.to_dict() for r in sort_results(rulesets)]
        artifacts = AnalysisArtifacts(analysis_output=self.analysis_output_path)

        self._write_yaml(self.analysis_output_path, ruleset_data)
        if self.json_output:
            artifacts.json_outputs.append(
                self._write_json(self.output_dir / ANALYSIS_JSON_FILE, ruleset_data)
            )

        if dependencies is None or dependencies.is_empty:
            self._remove_stale(self.dependency_output_path)
            self._remove_stale(self.output_dir / DEPENDENCY_JSON_FILE)
            self.logger.info("dependency_output_omitted", reason="no_dependencies")
        else:
            dependency_data = [
                item.to_dict() for item in sorted(dependencies.items, key=lambda i: i.sort_key())
            ]
            self._write_yaml(self.dependency_output_path, dependency_data)
            artifacts.dependency_output = self.dependency_output_path
            if self.json_output:
                artifacts.json_outputs.append(
                    self._write_json(self.output_dir / DEPENDENCY_JSON_FILE, dependency_data)
                )

        self.logger.info("analysis_output_written", **artifacts.to_dict())
        return artifacts

    def remove_previous_artifacts(self):
        """Remove rule and dependency artifacts left by an earlier run"""
        for name in (
            ANALYSIS_OUTPUT_FILE,
            ANALYSIS_JSON_FILE,
            DEPENDENCY_OUTPUT_FILE,
            DEPENDENCY_JSON_FILE,
        ):
            self._remove_stale(self.output_dir / name)

    def write_provider_settings(self, configs: Sequence[ProviderConfig]) -> Path:
        """
        Write the provider-settings document.

        Args:
            configs: Final provider configurations

        Returns:
            Path of the settings document
        """
        path = self.output_dir / PROVIDER_SETTINGS_FILE
        self._write_json(path, [config.to_dict() for config in configs])
        self.logger.info("provider_settings_written", path=str(path))
        return path

    def build_report(self, artifacts: AnalysisArtifacts) -> Any:
        """
        Hand the artifacts to the downstream report builder.

        The dependency artifact is passed only if it exists on disk.
        """
        if self.report_builder is None:
            return None

        dependency_output = self.dependency_output_path
        if not dependency_output.exists():
            self.logger.info("report_without_dependencies")
            dependency_output = None

        self.logger.info("generating_report", analysis_output=str(artifacts.analysis_output))
        return self.report_builder.build(artifacts.analysis_output, dependency_output)

    def _write_yaml(self, path: Path, data: Any):
        text = yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
        self._atomic_write(path, text)

    def _write_json(self, path: Path, data: Any) -> Path:
        self._atomic_write(path, json.dumps(data, indent=2) + "\n")
        return path

    def _atomic_write(self, path: Path, text: str):
        """Write to a temporary sibling, then rename into place"""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.chmod(tmp_name, 0o644)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            self.logger.error("output_write_failed", path=str(path), error=str(e))
            raise OutputWriteError(f"Failed to write {path}: {e}") from e

    def _remove_stale(self, path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise OutputWriteError(f"Failed to remove stale artifact {path}: {e}") from e
        self.logger.info("stale_artifact_removed", path=str(path))


class OutputWriteError(Exception):
    """Raised when an artifact cannot be written"""
    pass
